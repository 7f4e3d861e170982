"""
Tests unitaires des diagnostics d'échec (indices actionnables).
"""
from fixtures.fake_sandbox import FakeProcess
from gateway_proxy.core.models import ProcessLogs, ProcessStatus
from gateway_proxy.features.gateway.diagnostics import (
    build_failure_hint,
    describe_processes,
    tail,
)


class TestBuildFailureHint:
    """Classement configuration / ressources / générique."""

    def test_missing_required_env_wins(self):
        hint = build_failure_hint("JavaScript heap out of memory", missing_env=["ANTHROPIC_API_KEY"])
        assert hint.kind == "configuration"
        assert "ANTHROPIC_API_KEY" in hint.hint

    def test_out_of_memory(self):
        assert build_failure_hint("FATAL ERROR: JavaScript heap out of memory").kind == "resource"
        assert build_failure_hint("container OOM killed").kind == "resource"

    def test_configuration_patterns(self):
        assert build_failure_hint("Error: ANTHROPIC_API_KEY not set").kind == "configuration"
        assert build_failure_hint("invalid api key provided").kind == "configuration"

    def test_generic(self):
        hint = build_failure_hint("segmentation fault")
        assert hint.kind == "generic"
        assert "/api/status" in hint.hint

    def test_empty_message(self):
        assert build_failure_hint("").kind == "generic"

    def test_to_dict(self):
        assert build_failure_hint("oom").to_dict()["kind"] == "generic"


class TestHelpers:
    """Extraits de logs et description des processus."""

    def test_tail(self):
        assert tail("abcdef", 3) == "def"
        assert tail("", 3) == ""
        assert tail(None) == ""
        assert tail("abc", 0) == ""

    def test_describe_processes(self):
        process = FakeProcess(command="openclaw gateway", status=ProcessStatus.STARTING)
        assert describe_processes([process]) == [
            {"id": process.id, "command": "openclaw gateway", "status": "starting"}
        ]

    def test_process_logs_tail(self):
        logs = ProcessLogs(stdout="abcdef", stderr="xyz")
        assert logs.tail(2).to_dict() == {"stdout": "ef", "stderr": "yz"}
        assert logs.tail(0).to_dict() == {"stdout": "", "stderr": ""}
