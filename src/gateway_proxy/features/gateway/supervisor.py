"""gateway_proxy.features.gateway.supervisor

Superviseur du processus gateway: garantit une instance unique, vérifiée joignable.

Arbre de décision de `ensure()`:
- Discover: cherche un processus dont la commande correspond au gateway
  (hors commandes CLI d'administration) et dont le statut est starting/running
- Verify: sonde complète avec le timeout de démarrage (un processus "running"
  peut encore booter s'il vient d'être lancé par une requête concurrente)
    - verified -> retourné
    - unreachable / loopback_only -> kill (best-effort) puis Launch
- Launch: kill des instances obsolètes, lancement, attente du port, sonde overlay
    - timeout -> GatewayStartupError(launch_timeout) avec le stderr du gateway
    - port ouvert mais overlay KO -> GatewayStartupError(launch_unreachable)

Aucune référence de processus n'est conservée entre deux appels: chaque appel
redécouvre l'état via la table de processus du runtime.

Concurrence: avec `single_flight`, les appels concurrents d'un même proxy partagent
une seule tâche en vol, protégée par `asyncio.shield` (un appelant qui abandonne
n'annule pas un lancement en cours). Entre plusieurs proxys, la course reste
possible et converge par redécouverte.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, Optional, Set

from ...config.settings import GatewaySettings
from ...core.exceptions import (
    GatewayProxyError,
    GatewayStartupError,
    PortTimeoutError,
    ProcessRuntimeError,
)
from ...core.models import ProcessLogs, ProcessStatus, Reachability
from ...proxy.client import SandboxNetwork
from ...services.process_runtime import ProcessHandle, ProcessRuntime
from .diagnostics import describe_processes, tail
from .probe import ConnectivityProbe

logger = logging.getLogger(__name__)

STATUS_LOG_TAIL = 500


class GatewayMatcher:
    """Politique allow/deny sur la ligne de commande des processus."""

    def __init__(self, match_patterns: Iterable[str], exclude_patterns: Iterable[str] = ()):
        self.match_patterns = list(match_patterns)
        self.exclude_patterns = list(exclude_patterns)

    def matches(self, command: str) -> bool:
        if not any(pattern in command for pattern in self.match_patterns):
            return False
        return not any(pattern in command for pattern in self.exclude_patterns)

    def is_live_gateway(self, proc: ProcessHandle) -> bool:
        return self.matches(proc.command) and proc.status.is_alive


class GatewaySupervisor:
    """Découverte, vérification et (re)lancement de l'instance unique du gateway."""

    def __init__(
        self,
        runtime: ProcessRuntime,
        network: SandboxNetwork,
        settings: GatewaySettings,
        probe: Optional[ConnectivityProbe] = None,
    ):
        self._runtime = runtime
        self._settings = settings
        self.matcher = GatewayMatcher(settings.match_patterns, settings.exclude_patterns)
        self.probe = probe or ConnectivityProbe(network, settings.port, settings.probe_timeout_s)
        self._inflight: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def settings(self) -> GatewaySettings:
        return self._settings

    # ------------------------------------------------------------------
    # Discover
    # ------------------------------------------------------------------
    async def _list_processes(self) -> list:
        try:
            return list(await self._runtime.list_processes())
        except (GatewayProxyError, OSError) as e:
            logger.warning("[GATEWAY] Listing des processus impossible: %s", e)
            return []

    async def find_existing(self) -> Optional[ProcessHandle]:
        """Retourne le processus gateway starting/running, ou None."""
        for proc in await self._list_processes():
            if self.matcher.is_live_gateway(proc):
                return proc
        return None

    async def is_ready(self) -> bool:
        """True si un gateway existe avec le statut `running` (sans sonde réseau)."""
        existing = await self.find_existing()
        return existing is not None and existing.status == ProcessStatus.RUNNING

    # ------------------------------------------------------------------
    # ensure()
    # ------------------------------------------------------------------
    async def ensure(self) -> ProcessHandle:
        """
        Retourne un processus gateway vérifié joignable.

        Raises:
            GatewayStartupError: si un lancement frais échoue (timeout ou injoignable)
        """
        if not self._settings.single_flight:
            return await self._ensure_once()

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.create_task(self._ensure_once())
            self._inflight.add_done_callback(_consume_task_exception)
        return await asyncio.shield(self._inflight)

    async def _ensure_once(self) -> ProcessHandle:
        existing = await self.find_existing()
        if existing is not None:
            logger.info(
                "[GATEWAY] Processus existant %s (statut: %s), attente du port %s (timeout %.0fs)",
                existing.id, existing.status.value, self._settings.port, self._settings.startup_timeout_s,
            )
            result = await self.probe.probe(existing, timeout=self._settings.startup_timeout_s)
            if result.ok:
                logger.info("[GATEWAY] Connectivité vérifiée pour %s", existing.id)
                return existing

            if result.reachability == Reachability.LOOPBACK_ONLY:
                logger.warning(
                    "[GATEWAY] Port ouvert mais injoignable via le réseau overlay (lié au loopback ?). Kill de %s",
                    existing.id,
                )
            else:
                logger.warning("[GATEWAY] %s injoignable après le timeout complet, kill et relance", existing.id)
            await self._kill_quietly(existing)

        return await self._launch()

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------
    async def _launch(self) -> ProcessHandle:
        logger.info("[GATEWAY] Démarrage d'un nouveau gateway...")
        await self.kill_stale()

        command = self._settings.command
        env = dict(self._settings.env)
        logger.info("[GATEWAY] Commande: %s", command)
        logger.info("[GATEWAY] Variables transmises: %s", sorted(env))

        try:
            process = await self._runtime.start_process(command, env or None)
        except ProcessRuntimeError as e:
            logger.error("[GATEWAY] Échec du lancement: %s", e)
            raise GatewayStartupError(f"Lancement du gateway impossible: {e.message}", reason="start_failed") from e

        logger.info("[GATEWAY] Processus %s lancé (statut: %s)", process.id, process.status.value)

        try:
            await process.wait_for_port(self._settings.port, timeout=self._settings.startup_timeout_s)
        except (PortTimeoutError, ProcessRuntimeError, asyncio.TimeoutError) as e:
            logger.error("[GATEWAY] Attente du port %s en échec: %s", self._settings.port, e)
            raise await self._startup_timeout_error(process, e) from e

        logger.info("[GATEWAY] Gateway prêt sur le port %s", self._settings.port)
        logs = await self._safe_logs(process)
        if logs is not None:
            if logs.stdout:
                logger.info("[GATEWAY] stdout: %s", tail(logs.stdout))
            if logs.stderr:
                logger.info("[GATEWAY] stderr: %s", tail(logs.stderr))

        logger.info("[GATEWAY] Vérification de la connectivité via le réseau overlay...")
        result = await self.probe.check_overlay()
        if not result.ok:
            logger.error("[GATEWAY] Nouveau gateway injoignable via le réseau overlay: %s", result.detail)
            raise GatewayStartupError(
                "Gateway démarré mais injoignable via le réseau du sandbox (probablement lié au loopback)",
                reason="launch_unreachable",
            )

        logger.info("[GATEWAY] Connectivité vérifiée")
        return process

    async def _startup_timeout_error(self, process: ProcessHandle, error: Exception) -> GatewayStartupError:
        logs = await self._safe_logs(process)
        if logs is None:
            return GatewayStartupError(f"Le gateway n'a pas démarré: {error}", reason="launch_timeout")

        logger.error("[GATEWAY] Échec du démarrage. stderr: %s", tail(logs.stderr))
        logger.error("[GATEWAY] Échec du démarrage. stdout: %s", tail(logs.stdout))
        stderr_tail = tail(logs.stderr)
        return GatewayStartupError(
            f"Le gateway n'a pas démarré. Stderr: {stderr_tail or '(vide)'}",
            reason="launch_timeout",
            stderr=stderr_tail,
            stdout=tail(logs.stdout),
        )

    async def kill_stale(self) -> int:
        """
        Kill de toute instance gateway starting/running (déploiements précédents,
        autres bind modes ou tokens). Best-effort: retourne le nombre de kills réussis.
        """
        killed = 0
        for proc in await self._list_processes():
            if not self.matcher.is_live_gateway(proc):
                continue
            logger.info("[GATEWAY] Kill du processus obsolète %s: %s", proc.id, proc.command[:60])
            if await self._kill_quietly(proc):
                killed += 1
        return killed

    async def _kill_quietly(self, proc: ProcessHandle) -> bool:
        try:
            await proc.kill()
            return True
        except (GatewayProxyError, OSError) as e:
            logger.warning("[GATEWAY] Kill de %s en échec (ignoré): %s", proc.id, e)
            return False

    async def _safe_logs(self, proc: ProcessHandle) -> Optional[ProcessLogs]:
        try:
            return await proc.get_logs()
        except (GatewayProxyError, OSError) as e:
            logger.warning("[GATEWAY] Lecture des logs de %s impossible: %s", proc.id, e)
            return None

    # ------------------------------------------------------------------
    # Arrière-plan et diagnostics
    # ------------------------------------------------------------------
    def ensure_in_background(self) -> asyncio.Task:
        """Lance `ensure()` sans l'attendre (page de chargement, /api/status)."""
        task = asyncio.create_task(self._background_ensure())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _background_ensure(self) -> None:
        try:
            await self.ensure()
        except GatewayStartupError as e:
            logger.error("[GATEWAY] Démarrage en arrière-plan échoué: %s", e)

    async def restart(self) -> int:
        """Kill de toutes les instances puis relance en arrière-plan."""
        killed = await self.kill_stale()
        logger.info("[GATEWAY] %s processus tué(s), relance en arrière-plan", killed)
        self.ensure_in_background()
        return killed

    async def status(self) -> Dict[str, Any]:
        """
        Instantané de diagnostic (ne tue jamais de processus).

        Si aucun gateway ne tourne, un démarrage est déclenché en arrière-plan.
        """
        processes = await self._list_processes()
        all_processes = describe_processes(processes)
        existing = next((p for p in processes if self.matcher.is_live_gateway(p)), None)

        if existing is None:
            logger.info("[DIAG] Aucun gateway actif, démarrage en arrière-plan")
            self.ensure_in_background()
            failed_logs = ""
            finished = [
                p for p in processes
                if self.matcher.matches(p.command)
                and p.status in (ProcessStatus.FAILED, ProcessStatus.COMPLETED)
            ]
            if finished:
                logs = await self._safe_logs(finished[-1])
                if logs is not None:
                    failed_logs = f"stdout: {tail(logs.stdout)}\nstderr: {tail(logs.stderr)}"
            return {
                "ok": False,
                "status": "not_running",
                "processes": all_processes,
                "failed_logs": failed_logs,
            }

        result = await self.probe.probe(existing, timeout=self._settings.status_probe_timeout_s)
        if result.reachability == Reachability.UNREACHABLE:
            logs = await self._safe_logs(existing) or ProcessLogs()
            return {
                "ok": False,
                "status": "not_responding",
                "process_id": existing.id,
                "processes": all_processes,
                **logs.tail(STATUS_LOG_TAIL).to_dict(),
            }

        return {
            "ok": result.ok,
            "status": "running" if result.ok else result.reachability.value,
            "process_id": existing.id,
            "processes": all_processes,
            "probe": result.to_dict(),
        }


def _consume_task_exception(task: asyncio.Task) -> None:
    # Évite "Task exception was never retrieved" si tous les appelants ont abandonné
    if not task.cancelled():
        task.exception()


def create_gateway_supervisor(
    runtime: ProcessRuntime,
    network: SandboxNetwork,
    settings: GatewaySettings,
) -> GatewaySupervisor:
    """
    Crée le superviseur du gateway.

    Args:
        runtime: Runtime de processus (local ou sandbox)
        network: Accès overlay au gateway
        settings: Section `[gateway]` de la configuration

    Returns:
        Instance de GatewaySupervisor
    """
    return GatewaySupervisor(runtime=runtime, network=network, settings=settings)
