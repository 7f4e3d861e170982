"""
Doubles de test partagés.
"""
