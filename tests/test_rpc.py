import asyncio
import json
from dataclasses import dataclass
from typing import Any, List, Optional

import pytest

from acp_host import (
    AgentSideConnection,
    AllowedOutcome,
    CancelNotification,
    Connection,
    InitializeRequest,
    InitializeResponse,
    NewSessionRequest,
    NewSessionResponse,
    NotificationReceived,
    PermissionNegotiator,
    PermissionRequested,
    ProcessNotRunningError,
    PromptRequest,
    PromptResponse,
    ProtocolLog,
    RequestError,
    RequestPermissionRequest,
    SessionEngine,
    SessionNotification,
    UnknownPermissionRequestError,
)
from acp_host.framing import encode_frame


# --------------------- Test Utilities ---------------------

class _Server:
    def __init__(self) -> None:
        self._server: Optional[asyncio.AbstractServer] = None
        self.server_reader: Optional[asyncio.StreamReader] = None
        self.server_writer: Optional[asyncio.StreamWriter] = None
        self.client_reader: Optional[asyncio.StreamReader] = None
        self.client_writer: Optional[asyncio.StreamWriter] = None

    async def __aenter__(self):
        async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
            self.server_reader = reader
            self.server_writer = writer

        self._server = await asyncio.start_server(handle, host="127.0.0.1", port=0)
        host, port = self._server.sockets[0].getsockname()[:2]
        self.client_reader, self.client_writer = await asyncio.open_connection(host, port)

        # wait until server side is set
        for _ in range(100):
            if self.server_reader and self.server_writer:
                break
            await asyncio.sleep(0.01)
        assert self.server_reader and self.server_writer
        assert self.client_reader and self.client_writer
        return self

    async def __aexit__(self, exc_type, exc, tb):
        for writer in (self.client_writer, self.server_writer):
            if writer:
                writer.close()
                try:
                    await writer.wait_closed()
                except (ConnectionError, OSError):
                    pass
        if self._server:
            self._server.close()
            await self._server.wait_closed()

    # The "agent" end, driven by hand as raw JSON lines.
    async def read(self) -> dict:
        assert self.server_reader is not None
        line = await asyncio.wait_for(self.server_reader.readline(), 2)
        return json.loads(line)

    async def send(self, obj: Any) -> None:
        assert self.server_writer is not None
        self.server_writer.write(obj if isinstance(obj, bytes) else encode_frame(obj))
        await self.server_writer.drain()


async def _until(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    assert predicate()


# --------------------- Dispatcher -------------------------

@pytest.mark.asyncio
async def test_responses_resolve_by_id_in_any_order():
    async with _Server() as s:
        conn = Connection(writer=s.client_writer, reader=s.client_reader)
        first = asyncio.create_task(conn.request("session/new", {"cwd": "/a"}))
        second = asyncio.create_task(conn.request("session/new", {"cwd": "/b"}))

        req_a = await s.read()
        req_b = await s.read()
        assert (req_a["id"], req_b["id"]) == (1, 2)
        assert req_a["jsonrpc"] == "2.0"
        assert req_a["params"] == {"cwd": "/a"}

        await s.send({"jsonrpc": "2.0", "id": req_b["id"], "result": {"sessionId": "b"}})
        await s.send({"jsonrpc": "2.0", "id": req_a["id"], "result": {"sessionId": "a"}})

        assert await first == {"sessionId": "a"}
        assert await second == {"sessionId": "b"}
        assert conn.pending_count == 0
        await conn.close()


@pytest.mark.asyncio
async def test_error_response_without_message_gets_default():
    async with _Server() as s:
        conn = Connection(writer=s.client_writer, reader=s.client_reader)
        task = asyncio.create_task(conn.request("session/prompt", {}))
        req = await s.read()
        await s.send({"jsonrpc": "2.0", "id": req["id"], "error": {"code": -32000, "data": {"x": 1}}})

        with pytest.raises(RequestError) as excinfo:
            await task
        assert excinfo.value.code == -32000
        assert str(excinfo.value) == "Unknown JSON-RPC error"
        assert excinfo.value.data == {"x": 1}
        await conn.close()


@pytest.mark.asyncio
async def test_unknown_request_gets_method_not_found_and_is_published():
    async with _Server() as s:
        conn = Connection(writer=s.client_writer, reader=s.client_reader)
        seen: List[Any] = []
        conn.events.subscribe(seen.append)

        await s.send({"jsonrpc": "2.0", "id": "x-1", "method": "fs/read_text_file", "params": {"path": "/etc"}})
        reply = await s.read()
        assert reply["id"] == "x-1"
        assert reply["error"]["code"] == -32601
        assert reply["error"]["data"] == {"method": "fs/read_text_file"}
        assert any(isinstance(e, NotificationReceived) and e.payload["method"] == "fs/read_text_file" for e in seen)
        await conn.close()


@pytest.mark.asyncio
async def test_garbage_lines_become_protocol_logs():
    async with _Server() as s:
        conn = Connection(writer=s.client_writer, reader=s.client_reader)
        seen: List[Any] = []
        conn.events.subscribe(seen.append)
        task = asyncio.create_task(conn.request("initialize", {"protocolVersion": 1}))
        req = await s.read()

        await s.send(b"warning: telemetry disabled\n\n")
        await s.send({"jsonrpc": "2.0", "id": req["id"], "result": {"protocolVersion": 1}})

        assert await task == {"protocolVersion": 1}
        assert [e.text for e in seen if isinstance(e, ProtocolLog)] == ["warning: telemetry disabled"]
        await conn.close()


@pytest.mark.asyncio
async def test_request_without_process_fails_fast():
    conn = Connection()
    with pytest.raises(ProcessNotRunningError, match="not running"):
        await conn.request("session/new", {"cwd": "/"})
    with pytest.raises(ProcessNotRunningError):
        await conn.notify("session/cancel", {"sessionId": "s"})


@pytest.mark.asyncio
async def test_detach_rejects_pending_and_ids_keep_counting():
    async with _Server() as s:
        conn = Connection(writer=s.client_writer, reader=s.client_reader)
        task = asyncio.create_task(conn.request("session/prompt", {}))
        req = await s.read()
        assert req["id"] == 1

        conn.detach(ProcessNotRunningError("gone"))
        with pytest.raises(ProcessNotRunningError, match="gone"):
            await task
        assert conn.pending_count == 0

        # A late answer for the old id is ignored after re-attaching.
        conn.attach(s.client_writer, s.client_reader)
        late = asyncio.create_task(conn.request("session/prompt", {}))
        req2 = await s.read()
        assert req2["id"] == 2
        await s.send({"jsonrpc": "2.0", "id": 1, "result": {"stopReason": "end_turn"}})
        await s.send({"jsonrpc": "2.0", "id": 2, "result": {"stopReason": "cancelled"}})
        assert await late == {"stopReason": "cancelled"}
        await conn.close()


@pytest.mark.asyncio
async def test_drain_times_out_and_honours_cancellation():
    async with _Server() as s:
        conn = Connection(writer=s.client_writer, reader=s.client_reader)

        # the peer never closes, so drain gives up but the loop keeps reading
        await conn.drain(0.05)
        task = asyncio.create_task(conn.request("session/new", {"cwd": "/"}))
        req = await s.read()
        await s.send({"jsonrpc": "2.0", "id": req["id"], "result": {"sessionId": "s"}})
        assert await task == {"sessionId": "s"}

        draining = asyncio.create_task(conn.drain(10))
        await asyncio.sleep(0.05)
        draining.cancel()
        with pytest.raises(asyncio.CancelledError):
            await draining
        assert draining.cancelled()
        assert conn.is_attached

        # a detach mid-drain ends the wait without an error
        draining = asyncio.create_task(conn.drain(10))
        await asyncio.sleep(0.05)
        conn.detach(ProcessNotRunningError("gone"))
        await asyncio.wait_for(draining, 2)
        await conn.close()


@pytest.mark.asyncio
async def test_permission_request_is_answered_once():
    async with _Server() as s:
        conn = Connection(writer=s.client_writer, reader=s.client_reader)
        requests: List[PermissionRequested] = []
        conn.events.subscribe(lambda e: requests.append(e) if isinstance(e, PermissionRequested) else None)

        params = {"sessionId": "s1", "toolCall": {"toolCallId": "t1", "kind": "edit"}, "options": []}
        await s.send({"jsonrpc": "2.0", "id": 7, "method": "session/request_permission", "params": params})
        await _until(lambda: requests)
        assert requests[0].request_id == "7"
        assert requests[0].params == params
        assert conn.pending_permission_ids == ["7"]

        await conn.respond_permission("7", AllowedOutcome(optionId="allow-once"))
        reply = await s.read()
        assert reply == {"jsonrpc": "2.0", "id": 7, "result": {"outcome": {"outcome": "selected", "optionId": "allow-once"}}}

        with pytest.raises(UnknownPermissionRequestError, match="Unknown permission request id: 7"):
            await conn.respond_permission("7", AllowedOutcome(optionId="allow-once"))
        with pytest.raises(UnknownPermissionRequestError):
            await conn.respond_permission("nope", {"outcome": "cancelled"})
        await conn.close()


# --------------------- Agent side --------------------------

@dataclass
class TestAgent:
    __test__ = False  # prevent pytest from collecting this class
    conn: AgentSideConnection
    prompts: List[PromptRequest]
    cancellations: List[str]
    permission_outcomes: List[Any]

    def __init__(self, conn: AgentSideConnection) -> None:
        self.conn = conn
        self.prompts = []
        self.cancellations = []
        self.permission_outcomes = []

    async def initialize(self, params: InitializeRequest) -> InitializeResponse:
        return InitializeResponse(protocolVersion=params.protocolVersion, authMethods=[])

    async def newSession(self, params: NewSessionRequest) -> NewSessionResponse:
        return NewSessionResponse(sessionId="test-session-123")

    async def authenticate(self, params) -> None:  # noqa: ANN001
        return None

    async def prompt(self, params: PromptRequest) -> PromptResponse:
        self.prompts.append(params)
        await self.conn.sessionUpdate(
            SessionNotification.model_validate(
                {
                    "sessionId": params.sessionId,
                    "update": {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": "Hel"}},
                }
            )
        )
        await self.conn.sessionUpdate(
            SessionNotification.model_validate(
                {
                    "sessionId": params.sessionId,
                    "update": {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": "lo"}},
                }
            )
        )
        resp = await self.conn.requestPermission(
            RequestPermissionRequest.model_validate(
                {
                    "sessionId": params.sessionId,
                    "toolCall": {"toolCallId": "call-1", "kind": "execute", "title": "ls"},
                    "options": [
                        {"optionId": "reject", "name": "Reject", "kind": "reject_once"},
                        {"optionId": "allow", "name": "Allow", "kind": "allow_once"},
                    ],
                }
            )
        )
        self.permission_outcomes.append(resp.outcome)
        return PromptResponse(stopReason="end_turn")

    async def cancel(self, params: CancelNotification) -> None:
        self.cancellations.append(params.sessionId)


@pytest.mark.asyncio
async def test_host_and_agent_round_trip():
    async with _Server() as s:
        agents: List[TestAgent] = []

        def make_agent(conn: AgentSideConnection) -> TestAgent:
            agents.append(TestAgent(conn))
            return agents[0]

        agent_conn = AgentSideConnection(make_agent, s.server_writer, s.server_reader)
        host = Connection(writer=s.client_writer, reader=s.client_reader)
        sessions = SessionEngine(host)
        PermissionNegotiator(host, auto_allow=True)

        init = InitializeResponse.model_validate(await host.request("initialize", InitializeRequest(protocolVersion=1)))
        assert init.protocolVersion == 1

        new = NewSessionResponse.model_validate(await host.request("session/new", NewSessionRequest(cwd="/test")))
        assert new.sessionId == "test-session-123"

        result = await host.request(
            "session/prompt",
            PromptRequest(sessionId=new.sessionId, prompt=[{"type": "text", "text": "hi"}]),
        )
        assert result == {"stopReason": "end_turn"}

        agent = agents[0]
        assert agent.prompts[0].prompt[0].text == "hi"
        assert agent.permission_outcomes[0].optionId == "allow"
        state = sessions.get("test-session-123")
        assert state is not None
        assert [(m.role, m.text) for m in state.messages] == [("assistant", "Hello")]

        await host.notify("session/cancel", CancelNotification(sessionId=new.sessionId))
        await _until(lambda: agent.cancellations)
        assert agent.cancellations == ["test-session-123"]

        await host.close()
        await agent_conn.close()


@pytest.mark.asyncio
async def test_agent_side_reports_bad_params_and_unknown_methods():
    async with _Server() as s:
        AgentSideConnection(TestAgent, s.server_writer, s.server_reader)
        host = Connection(writer=s.client_writer, reader=s.client_reader)

        with pytest.raises(RequestError) as excinfo:
            await host.request("session/new", {"mcpServers": []})
        assert excinfo.value.code == -32602

        # TestAgent has no loadSession / setSessionMode
        with pytest.raises(RequestError) as excinfo:
            await host.request("session/load", {"sessionId": "s", "cwd": "/"})
        assert excinfo.value.code == -32601

        with pytest.raises(RequestError) as excinfo:
            await host.request("terminal/create", {})
        assert excinfo.value.code == -32601
        await host.close()
