"""Host-side facade: one agent process, its sessions and its permission prompts."""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional, Sequence, Union

from .config import HostSettings, LaunchConfig, initialize_request
from .core import Connection
from .events import EventEmitter, Listener
from .meta import AGENT_METHODS
from .permissions import Outcome, PermissionNegotiator
from .schema import (
    AuthenticateRequest,
    CancelNotification,
    ContentBlock,
    Implementation,
    InitializeResponse,
    LoadSessionRequest,
    LoadSessionResponse,
    NewSessionRequest,
    NewSessionResponse,
    PromptRequest,
    PromptResponse,
    SetSessionModelRequest,
    SetSessionModeRequest,
    TextContentBlock,
)
from .session import SessionEngine
from .supervisor import MAX_START_ATTEMPTS, RETRY_DELAY_SECONDS, ProcessSupervisor

logger = logging.getLogger(__name__)

PromptInput = Union[str, Sequence[Union[ContentBlock, dict]]]


class AcpClient:
    """
    Drives an ACP agent from the host side.

    - ``supervisor`` owns the child process and the ``initialize`` handshake
    - ``sessions`` folds ``session/update`` notifications into per-session views
    - ``permissions`` answers ``session/request_permission`` calls

    Every call starts the agent on demand. Opening or loading a session resets
    the conversation view: session views and remembered permission choices.
    """

    def __init__(
        self,
        config: Optional[LaunchConfig] = None,
        *,
        client_info: Optional[Implementation] = None,
        auto_allow: bool = False,
        max_attempts: int = MAX_START_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_SECONDS,
    ) -> None:
        self.connection = Connection()
        self.supervisor = ProcessSupervisor(
            self.connection,
            config=config,
            initialize_params=initialize_request(client_info),
            max_attempts=max_attempts,
            retry_delay=retry_delay,
        )
        self.sessions = SessionEngine(self.connection)
        self.permissions = PermissionNegotiator(self.connection, auto_allow=auto_allow)

    @classmethod
    def from_settings(cls, settings: HostSettings, **kwargs: Any) -> "AcpClient":
        kwargs.setdefault("auto_allow", settings.autoAllow)
        return cls(settings.launch_config(), **kwargs)

    async def __aenter__(self) -> "AcpClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def events(self) -> EventEmitter:
        return self.connection.events

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.connection.events.subscribe(listener)

    # --- Process -------------------------------------------------------------------

    async def start(self, config: Optional[LaunchConfig] = None) -> InitializeResponse:
        """Spawn and initialize, retrying when the config asks for auto-start."""
        return await self.supervisor.start(config)

    async def connect(self, config: Optional[LaunchConfig] = None) -> InitializeResponse:
        """Reuse the running agent or start one with a single attempt."""
        return await self.supervisor.ensure_started(config)

    async def stop(self) -> None:
        await self.supervisor.stop()

    async def close(self) -> None:
        await self.supervisor.stop()
        self.sessions.close()
        self.permissions.close()
        await self.connection.close()

    # --- Agent methods ---------------------------------------------------------------

    async def _request(self, method: str, params: Any) -> Any:
        await self.supervisor.ensure_started()
        return await self.connection.request(method, params)

    async def initialize(self) -> InitializeResponse:
        return await self.supervisor.ensure_started()

    async def authenticate(self, method_id: str) -> Any:
        return await self._request(AGENT_METHODS["authenticate"], AuthenticateRequest(methodId=method_id))

    def reset_view(self) -> None:
        self.sessions.reset()
        self.permissions.reset()

    async def new_session(self, cwd: Optional[str] = None, mcp_servers: Optional[List[Any]] = None) -> NewSessionResponse:
        cwd = cwd or self.supervisor.config.resolve_cwd()
        self.reset_view()
        result = await self._request(
            AGENT_METHODS["session_new"],
            NewSessionRequest(cwd=cwd, mcpServers=mcp_servers or []),
        )
        response = NewSessionResponse.model_validate(result)
        self.sessions.open(response.sessionId, cwd, response)
        logger.info("Opened session %s", response.sessionId)
        return response

    async def load_session(
        self,
        session_id: str,
        cwd: Optional[str] = None,
        mcp_servers: Optional[List[Any]] = None,
    ) -> LoadSessionResponse:
        """Load a stored session; its history arrives as updates before the reply."""
        cwd = cwd or self.supervisor.config.resolve_cwd()
        self.reset_view()
        result = await self._request(
            AGENT_METHODS["session_load"],
            LoadSessionRequest(sessionId=session_id, cwd=cwd, mcpServers=mcp_servers or []),
        )
        response = LoadSessionResponse.model_validate(result or {})
        self.sessions.open(session_id, cwd, response)
        logger.info("Loaded session %s", session_id)
        return response

    async def prompt(self, session_id: str, prompt: PromptInput) -> PromptResponse:
        blocks = [TextContentBlock(text=prompt)] if isinstance(prompt, str) else list(prompt)
        result = await self._request(
            AGENT_METHODS["session_prompt"],
            PromptRequest(sessionId=session_id, prompt=blocks),
        )
        return PromptResponse.model_validate(result)

    async def cancel(self, session_id: str) -> None:
        await self.connection.notify(AGENT_METHODS["session_cancel"], CancelNotification(sessionId=session_id))

    async def set_mode(self, session_id: str, mode_id: str) -> Any:
        return await self._request(
            AGENT_METHODS["session_set_mode"],
            SetSessionModeRequest(sessionId=session_id, modeId=mode_id),
        )

    async def set_model(self, session_id: str, model_id: str) -> Any:
        return await self._request(
            AGENT_METHODS["session_set_model"],
            SetSessionModelRequest(sessionId=session_id, modelId=model_id),
        )

    async def respond_permission(self, request_id: str, outcome: Outcome, *, remember: bool = False) -> None:
        await self.permissions.respond(request_id, outcome, remember=remember)
