from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Protocol

from .core import Connection
from .exceptions import RequestError
from .meta import AGENT_METHODS, CLIENT_METHODS
from .schema import (
    AuthenticateRequest,
    CancelNotification,
    InitializeRequest,
    InitializeResponse,
    LoadSessionRequest,
    LoadSessionResponse,
    NewSessionRequest,
    NewSessionResponse,
    PromptRequest,
    PromptResponse,
    RequestPermissionRequest,
    RequestPermissionResponse,
    SessionNotification,
    SetSessionModeRequest,
    SetSessionModelRequest,
)


class Agent(Protocol):
    async def initialize(self, params: InitializeRequest) -> InitializeResponse: ...

    async def newSession(self, params: NewSessionRequest) -> NewSessionResponse: ...

    async def loadSession(self, params: LoadSessionRequest) -> Optional[LoadSessionResponse]: ...

    async def authenticate(self, params: AuthenticateRequest) -> None: ...

    async def prompt(self, params: PromptRequest) -> PromptResponse: ...

    async def cancel(self, params: CancelNotification) -> None: ...


# method name -> (agent attribute, params model); the optional ones may be missing
_ROUTES = {
    AGENT_METHODS["initialize"]: ("initialize", InitializeRequest),
    AGENT_METHODS["session_new"]: ("newSession", NewSessionRequest),
    AGENT_METHODS["session_load"]: ("loadSession", LoadSessionRequest),
    AGENT_METHODS["authenticate"]: ("authenticate", AuthenticateRequest),
    AGENT_METHODS["session_prompt"]: ("prompt", PromptRequest),
    AGENT_METHODS["session_cancel"]: ("cancel", CancelNotification),
    AGENT_METHODS["session_set_mode"]: ("setSessionMode", SetSessionModeRequest),
    AGENT_METHODS["session_set_model"]: ("setSessionModel", SetSessionModelRequest),
}


class AgentSideConnection:
    """
    Agent-side connection. Use when you implement the Agent and need to talk to a host.

    Parameters:
    - to_agent: factory that receives this connection and returns your Agent implementation
    - input: asyncio.StreamWriter (local -> peer)
    - output: asyncio.StreamReader (peer -> local)
    """

    def __init__(
        self,
        to_agent: Callable[["AgentSideConnection"], Agent],
        input: Any,
        output: Any,
    ) -> None:
        agent = to_agent(self)

        async def handler(method: str, params: Any) -> Any:
            route = _ROUTES.get(method)
            if route is None:
                raise RequestError.method_not_found(method)
            name, model = route
            fn = getattr(agent, name, None)
            if fn is None:
                raise RequestError.method_not_found(method)
            return await fn(model.model_validate(params))

        if not isinstance(input, asyncio.StreamWriter) or not isinstance(output, asyncio.StreamReader):
            raise TypeError("AgentSideConnection requires asyncio StreamWriter/StreamReader")
        self._conn = Connection(handler, input, output)

    @property
    def connection(self) -> Connection:
        return self._conn

    # host-bound methods (agent -> host)
    async def sessionUpdate(self, params: SessionNotification) -> None:
        await self._conn.notify(CLIENT_METHODS["session_update"], params)

    async def requestPermission(self, params: RequestPermissionRequest) -> RequestPermissionResponse:
        resp = await self._conn.request(CLIENT_METHODS["session_request_permission"], params)
        return RequestPermissionResponse.model_validate(resp)

    async def listen(self) -> None:
        """Serve until the host closes the pipe."""
        await self._conn.wait_closed()

    async def close(self) -> None:
        await self._conn.close()
