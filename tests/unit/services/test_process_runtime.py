"""
Tests du runtime de processus local (vrais sous-processus Python).
"""
import asyncio
import shlex
import socket
import sys

import pytest

from gateway_proxy.core.exceptions import PortTimeoutError, ProcessRuntimeError
from gateway_proxy.core.models import ProcessStatus
from gateway_proxy.services.process_runtime import (
    LocalProcessRuntime,
    create_process_runtime,
)


def python_command(*args: str) -> str:
    return shlex.join([sys.executable, *args])


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


async def wait_finished(process, timeout: float = 10.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while process.status.is_alive:
        if loop.time() > deadline:
            raise AssertionError(f"{process.id} toujours vivant")
        await asyncio.sleep(0.05)


class TestLocalProcessRuntime:
    """Cycle de vie des processus."""

    @pytest.mark.asyncio
    async def test_captures_output_and_completes(self):
        runtime = create_process_runtime()
        code = "import sys; print('hello'); sys.stderr.write('oops')"

        process = await runtime.start_process(python_command("-c", code))
        await wait_finished(process)
        logs = await process.get_logs()

        assert process.status == ProcessStatus.COMPLETED
        assert logs.stdout.strip() == "hello"
        assert logs.stderr == "oops"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_failed(self):
        runtime = create_process_runtime()

        process = await runtime.start_process(python_command("-c", "raise SystemExit(3)"))
        await wait_finished(process)

        assert process.status == ProcessStatus.FAILED
        assert process.exit_code == 3

    @pytest.mark.asyncio
    async def test_env_passed_to_process(self):
        runtime = LocalProcessRuntime(base_env={"PATH": "/usr/bin:/bin"})
        code = "import os; print(os.environ['GATEWAY_TOKEN'])"

        process = await runtime.start_process(python_command("-c", code), {"GATEWAY_TOKEN": "S"})
        await wait_finished(process)

        assert (await process.get_logs()).stdout.strip() == "S"

    @pytest.mark.asyncio
    async def test_log_buffer_bounded(self):
        runtime = create_process_runtime(log_limit=16)

        process = await runtime.start_process(python_command("-c", "print('x' * 500 + 'END')"))
        await wait_finished(process)
        logs = await process.get_logs()

        assert len(logs.stdout) <= 16
        assert logs.stdout.strip().endswith("END")

    @pytest.mark.asyncio
    async def test_missing_binary_raises_and_is_listed_failed(self):
        runtime = create_process_runtime()

        with pytest.raises(ProcessRuntimeError) as exc_info:
            await runtime.start_process("/nonexistent/start-gateway.sh")

        processes = await runtime.list_processes()
        assert exc_info.value.code == "process_runtime_error"
        assert processes[0].status == ProcessStatus.FAILED

    @pytest.mark.asyncio
    async def test_empty_command_rejected(self):
        runtime = create_process_runtime()

        with pytest.raises(ProcessRuntimeError):
            await runtime.start_process("   ")

        processes = await runtime.list_processes()
        assert processes[0].status == ProcessStatus.FAILED


class TestPortAndKill:
    """Attente de port et kill du groupe de processus."""

    @pytest.mark.asyncio
    async def test_wait_for_port_then_kill(self):
        runtime = create_process_runtime()
        port = free_port()

        process = await runtime.start_process(
            python_command("-m", "http.server", str(port), "--bind", "127.0.0.1")
        )
        try:
            await process.wait_for_port(port, timeout=15.0)
            assert process.status == ProcessStatus.RUNNING
        finally:
            await process.kill(grace_s=2.0)

        assert process.status == ProcessStatus.KILLED
        assert not process.status.is_alive

    @pytest.mark.asyncio
    async def test_wait_for_port_process_exits(self):
        runtime = create_process_runtime()

        process = await runtime.start_process(python_command("-c", "pass"))

        with pytest.raises(PortTimeoutError):
            await process.wait_for_port(free_port(), timeout=10.0)

    @pytest.mark.asyncio
    async def test_wait_for_port_timeout(self):
        runtime = create_process_runtime()
        process = await runtime.start_process(python_command("-c", "import time; time.sleep(30)"))

        try:
            with pytest.raises(PortTimeoutError) as exc_info:
                await process.wait_for_port(free_port(), timeout=0.5)
            assert exc_info.value.code == "port_timeout"
        finally:
            await process.kill(grace_s=2.0)

    @pytest.mark.asyncio
    async def test_shutdown_kills_live_processes(self):
        runtime = create_process_runtime()
        process = await runtime.start_process(python_command("-c", "import time; time.sleep(30)"))

        await runtime.shutdown()

        assert process.status == ProcessStatus.KILLED

    @pytest.mark.asyncio
    async def test_kill_finished_process_is_noop(self):
        runtime = create_process_runtime()
        process = await runtime.start_process(python_command("-c", "pass"))
        await wait_finished(process)

        await process.kill()

        assert process.status == ProcessStatus.COMPLETED
