"""gateway_proxy.services.process_runtime

Runtime de processus local (asyncio) pour héberger le gateway.

Le superviseur ne dépend que des protocoles `ProcessRuntime` / `ProcessHandle`:
un runtime de sandbox distant peut être branché à la place de `LocalProcessRuntime`.

Propriétés:
- stdout/stderr capturés dans des buffers bornés (les octets les plus anciens sont perdus)
- chaque processus a son propre groupe: kill() termine aussi les enfants du script de démarrage
- l'historique des processus terminés est conservé (borné) pour les diagnostics
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import shlex
import signal
from collections import OrderedDict
from typing import Mapping, Protocol, Sequence

from ..core.constants import PROCESS_LOG_LIMIT
from ..core.exceptions import PortTimeoutError, ProcessRuntimeError
from ..core.models import ProcessLogs, ProcessStatus

logger = logging.getLogger(__name__)

PORT_POLL_INTERVAL_S = 0.25
KILL_GRACE_S = 5.0
MAX_FINISHED_HISTORY = 20


class ProcessHandle(Protocol):
    """Handle d'un processus géré par le runtime d'hébergement."""

    id: str
    command: str
    status: ProcessStatus

    async def wait_for_port(self, port: int, *, timeout: float) -> None: ...

    async def kill(self) -> None: ...

    async def get_logs(self) -> ProcessLogs: ...


class ProcessRuntime(Protocol):
    """Contrôle des processus fourni par le runtime d'hébergement."""

    async def list_processes(self) -> Sequence[ProcessHandle]: ...

    async def start_process(self, command: str, env: Mapping[str, str] | None = None) -> ProcessHandle: ...


class LocalProcess:
    """Processus local lancé via `asyncio.create_subprocess_exec`."""

    def __init__(self, process_id: str, command: str, *, log_limit: int = PROCESS_LOG_LIMIT):
        self.id = process_id
        self.command = command
        self.status = ProcessStatus.STARTING
        self.exit_code: int | None = None
        self._log_limit = log_limit
        self._proc: asyncio.subprocess.Process | None = None
        self._stdout = bytearray()
        self._stderr = bytearray()
        self._tasks: list[asyncio.Task] = []
        self._killed = False

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    async def start(self, env: Mapping[str, str]) -> None:
        argv = shlex.split(self.command)
        if not argv:
            self.status = ProcessStatus.FAILED
            raise ProcessRuntimeError("Commande vide", operation="start", process_id=self.id)

        self._proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env),
            start_new_session=True,
        )
        self.status = ProcessStatus.RUNNING
        self._tasks = [
            asyncio.create_task(self._capture(self._proc.stdout, self._stdout)),
            asyncio.create_task(self._capture(self._proc.stderr, self._stderr)),
        ]
        self._tasks.append(asyncio.create_task(self._watch()))

    async def _capture(self, stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            buffer.extend(chunk)
            overflow = len(buffer) - self._log_limit
            if overflow > 0:
                del buffer[:overflow]

    async def _watch(self) -> None:
        assert self._proc is not None
        exit_code = await self._proc.wait()
        # Laisse les lecteurs vider les pipes (un petit-enfant peut les garder ouverts)
        await asyncio.wait(self._tasks[:2], timeout=1.0)
        self.exit_code = exit_code
        if self._killed:
            self.status = ProcessStatus.KILLED
        elif exit_code == 0:
            self.status = ProcessStatus.COMPLETED
        else:
            self.status = ProcessStatus.FAILED
        logger.info("[RUNTIME] Processus %s terminé (code=%s, statut=%s)", self.id, exit_code, self.status.value)

    async def wait_for_port(self, port: int, *, timeout: float, host: str = "127.0.0.1") -> None:
        """
        Attend que `host:port` accepte une connexion TCP.

        Raises:
            PortTimeoutError: délai dépassé, ou processus terminé avant l'ouverture du port
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            if not self.status.is_alive:
                raise PortTimeoutError(
                    f"Processus {self.id} terminé ({self.status.value}) avant l'ouverture du port {port}",
                    port=port,
                    timeout_s=timeout,
                )
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise PortTimeoutError(
                    f"Port {port} toujours fermé après {timeout:.1f}s",
                    port=port,
                    timeout_s=timeout,
                )
            try:
                _, writer = await asyncio.wait_for(
                    asyncio.open_connection(host, port),
                    timeout=min(remaining, 1.0),
                )
            except (OSError, asyncio.TimeoutError):
                await asyncio.sleep(min(PORT_POLL_INTERVAL_S, max(deadline - loop.time(), 0)))
                continue

            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
            return

    async def kill(self, grace_s: float = KILL_GRACE_S) -> None:
        """SIGTERM au groupe de processus, SIGKILL après `grace_s`."""
        if self._proc is None or self._proc.returncode is not None:
            if self.status.is_alive:
                self.status = ProcessStatus.KILLED
            return

        self._killed = True
        self._signal_group(signal.SIGTERM)
        try:
            await asyncio.wait_for(self._proc.wait(), timeout=grace_s)
        except asyncio.TimeoutError:
            logger.warning("[RUNTIME] %s ignore SIGTERM, envoi de SIGKILL", self.id)
            self._signal_group(signal.SIGKILL)
            await self._proc.wait()
        self.status = ProcessStatus.KILLED

    def _signal_group(self, sig: int) -> None:
        assert self._proc is not None
        try:
            os.killpg(os.getpgid(self._proc.pid), sig)
        except ProcessLookupError:
            pass
        except PermissionError as e:
            raise ProcessRuntimeError(
                f"Impossible de signaler le processus: {e}",
                operation="kill",
                process_id=self.id,
            ) from e

    async def get_logs(self) -> ProcessLogs:
        return ProcessLogs(
            stdout=self._stdout.decode("utf-8", errors="replace"),
            stderr=self._stderr.decode("utf-8", errors="replace"),
        )


class LocalProcessRuntime:
    """Table de processus locale, propriétaire des processus qu'elle lance."""

    def __init__(self, *, log_limit: int = PROCESS_LOG_LIMIT, base_env: Mapping[str, str] | None = None):
        self._log_limit = log_limit
        self._base_env = dict(os.environ if base_env is None else base_env)
        self._processes: OrderedDict[str, LocalProcess] = OrderedDict()
        self._counter = itertools.count(1)

    async def list_processes(self) -> list[LocalProcess]:
        return list(self._processes.values())

    async def start_process(self, command: str, env: Mapping[str, str] | None = None) -> LocalProcess:
        process_id = f"proc-{os.getpid()}-{next(self._counter)}"
        process = LocalProcess(process_id, command, log_limit=self._log_limit)
        # Enregistré avant le spawn: visible "starting" par les requêtes concurrentes
        self._processes[process_id] = process
        self._prune_history()

        try:
            await process.start({**self._base_env, **(env or {})})
        except (OSError, ValueError) as e:
            process.status = ProcessStatus.FAILED
            raise ProcessRuntimeError(
                f"Échec du lancement de '{command}': {e}",
                operation="start",
                process_id=process_id,
            ) from e

        logger.info("[RUNTIME] Processus %s lancé (pid=%s): %s", process_id, process.pid, command)
        return process

    async def shutdown(self) -> None:
        """Termine tous les processus encore vivants."""
        alive = [p for p in self._processes.values() if p.status.is_alive]
        for process in alive:
            try:
                await process.kill()
            except ProcessRuntimeError as e:
                logger.warning("[RUNTIME] Arrêt de %s impossible: %s", process.id, e)

    def _prune_history(self) -> None:
        finished = [pid for pid, p in self._processes.items() if not p.status.is_alive]
        excess = len(finished) - MAX_FINISHED_HISTORY
        for pid in finished[:max(excess, 0)]:
            del self._processes[pid]


def create_process_runtime(log_limit: int = PROCESS_LOG_LIMIT) -> LocalProcessRuntime:
    """
    Crée le runtime de processus local.

    Args:
        log_limit: Taille max (octets) des buffers stdout/stderr par processus

    Returns:
        Instance de LocalProcessRuntime
    """
    return LocalProcessRuntime(log_limit=log_limit)
