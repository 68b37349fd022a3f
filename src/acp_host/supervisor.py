from __future__ import annotations

import asyncio
import logging
import os
import signal
from contextlib import suppress
from typing import Optional, Tuple

from .config import LaunchConfig, initialize_request
from .core import Connection
from .events import Connected, Disconnected, Event, EventEmitter, StatusChanged, StderrLine, Stopped
from .exceptions import ProcessExitedError, ProcessNotRunningError, ProcessStartError, StartupError
from .framing import iter_lines
from .meta import AGENT_METHODS
from .schema import InitializeRequest, InitializeResponse

logger = logging.getLogger(__name__)

MAX_START_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 2.0
EXIT_DRAIN_TIMEOUT_SECONDS = 1.0
STOP_TIMEOUT_SECONDS = 2.0


def describe_exit(returncode: int) -> Tuple[Optional[int], Optional[str]]:
    """Split an asyncio return code into (exit code, signal name)."""
    if returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, str(-returncode)
    return returncode, None


def build_launch_command(config: LaunchConfig) -> str:
    """The shell command line for ``config``; see :meth:`LaunchConfig.resolve_command`."""
    return config.resolve_command()


class ProcessSupervisor:
    """Owns the agent child process and keeps a :class:`Connection` wired to it.

    The connection object outlives individual processes: listeners subscribe
    once and see ``connected``/``disconnected``/``stopped`` as the child comes
    and goes. Every exit rejects the requests still in flight.
    """

    def __init__(
        self,
        connection: Optional[Connection] = None,
        *,
        config: Optional[LaunchConfig] = None,
        initialize_params: Optional[InitializeRequest] = None,
        max_attempts: int = MAX_START_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
        handshake_timeout: Optional[float] = None,
    ) -> None:
        self.connection = connection or Connection()
        self.config = config or LaunchConfig()
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.handshake_timeout = handshake_timeout
        self.status = "disconnected"
        self.initialized = False
        self.init_response: Optional[InitializeResponse] = None
        self._initialize_params = initialize_params or initialize_request()
        self._process: Optional[asyncio.subprocess.Process] = None
        self._watch_task: Optional[asyncio.Task[None]] = None
        self._stderr_task: Optional[asyncio.Task[None]] = None
        self._start_lock: Optional[asyncio.Lock] = None

    @property
    def events(self) -> EventEmitter:
        return self.connection.events

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    async def _emit(self, event: Event) -> None:
        await self.connection.events.emit(event)

    # --- Process lifetime ----------------------------------------------------------

    async def spawn(self, config: Optional[LaunchConfig] = None) -> None:
        """Start the child process and attach its pipes; no handshake."""
        if config is not None:
            self.config = config
        await self.stop()

        command = build_launch_command(self.config)
        cwd = self.config.resolve_cwd()
        env = {**os.environ, **self.config.env} if self.config.env else None
        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
                start_new_session=os.name != "nt",
            )
        except OSError as exc:
            reason = f"ACP process error: {exc}"
            logger.error(reason)
            await self._emit(Disconnected(reason))
            raise ProcessStartError(reason) from exc

        if process.stdin is None or process.stdout is None or process.stderr is None:
            self._terminate(process)
            raise ProcessStartError("ACP process error: stdio pipes were not created")
        self._process = process
        self.initialized = False
        self.init_response = None
        self.connection.attach(process.stdin, process.stdout)
        self._stderr_task = asyncio.create_task(self._forward_stderr(process.stderr), name="acp_host.stderr")
        self._watch_task = asyncio.create_task(self._watch(process), name="acp_host.watch")
        logger.info("Spawned ACP process %s: %s (cwd=%s)", process.pid, command, cwd)
        await self._emit(Connected(command=command, cwd=cwd))

    async def stop(self) -> None:
        """Kill the child if there is one. Safe to call repeatedly."""
        process = self._process
        if process is None:
            return
        self._process = None
        self.initialized = False
        self.init_response = None
        self.connection.detach(ProcessNotRunningError("ACP process stopped"))
        if self.status != "error":
            self.status = "disconnected"
        for task in (self._stderr_task, self._watch_task):
            if task is not None and not task.done():
                task.cancel()
        self._stderr_task = None
        self._watch_task = None
        self._terminate(process)
        logger.info("Stopped ACP process %s", process.pid)
        await self._emit(Stopped())
        await self._reap(process)

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        with suppress(ProcessLookupError):
            if os.name != "nt":
                os.killpg(process.pid, signal.SIGTERM)
            else:
                process.terminate()

    async def _reap(self, process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(process.wait(), STOP_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("ACP process %s ignored SIGTERM; killing", process.pid)
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    async def _forward_stderr(self, stream: asyncio.StreamReader) -> None:
        try:
            async for line in iter_lines(stream):
                await self._emit(StderrLine(line))
        except asyncio.CancelledError:
            return

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        # Deliver whatever the child wrote before dying.
        await self.connection.drain(EXIT_DRAIN_TIMEOUT_SECONDS)
        if self._process is not process:
            return
        code, sig = describe_exit(returncode)
        error = ProcessExitedError(code, sig)
        self._process = None
        self.initialized = False
        self.init_response = None
        self.connection.detach(error)
        if self.status != "error":
            self.status = "disconnected"
        logger.warning("%s", error)
        await self._emit(Disconnected(str(error)))

    # --- Handshake & startup -------------------------------------------------------

    def _lock(self) -> asyncio.Lock:
        if self._start_lock is None:
            self._start_lock = asyncio.Lock()
        return self._start_lock

    async def _handshake(self) -> InitializeResponse:
        result = await self.connection.request(
            AGENT_METHODS["initialize"],
            self._initialize_params,
            timeout=self.handshake_timeout,
        )
        response = InitializeResponse.model_validate(result)
        self.initialized = True
        self.init_response = response
        self.status = "connected"
        logger.info(
            "ACP agent initialized (protocol %s, agent %s)",
            response.protocolVersion,
            response.agentInfo.name if response.agentInfo else "unknown",
        )
        await self._emit(StatusChanged("connected"))
        return response

    async def ensure_started(self, config: Optional[LaunchConfig] = None) -> InitializeResponse:
        """Spawn and initialize once; later calls return the cached handshake."""
        if self.status == "error":
            raise StartupError("ACP agent failed to start; call start() to try again")
        async with self._lock():
            if self.is_running and self.initialized and self.init_response is not None:
                return self.init_response
            if not self.is_running:
                await self.spawn(config)
            return await self._handshake()

    async def start(self, config: Optional[LaunchConfig] = None) -> InitializeResponse:
        """Explicit start. Clears a previous terminal error.

        With ``auto_start`` configured, up to ``max_attempts`` attempts are
        made ``retry_delay`` seconds apart; otherwise a single one.
        """
        if config is not None:
            self.config = config
        attempts = self.max_attempts if self.config.auto_start else 1
        async with self._lock():
            self.status = "starting"
            await self._emit(StatusChanged("starting", attempt=1))
            last_error: Optional[BaseException] = None
            for attempt in range(1, attempts + 1):
                try:
                    await self.spawn()
                    return await self._handshake()
                except Exception as exc:
                    last_error = exc
                    logger.warning("ACP start attempt %s/%s failed: %s", attempt, attempts, exc)
                if attempt < attempts:
                    await self._emit(
                        StatusChanged(
                            "starting",
                            reason=f"Attempt {attempt}/{attempts} failed: {last_error}",
                            attempt=attempt + 1,
                        )
                    )
                    await asyncio.sleep(self.retry_delay)

            await self.stop()
            self.status = "error"
            reason = f"ACP agent failed to start after {attempts} attempt(s): {last_error}"
            logger.error(reason)
            await self._emit(StatusChanged("error", reason=reason, attempt=attempts))
            raise StartupError(reason) from last_error
