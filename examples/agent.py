import asyncio
import sys

from acp_host import (
    AgentSideConnection,
    AuthenticateRequest,
    CancelNotification,
    Implementation,
    InitializeRequest,
    InitializeResponse,
    NewSessionRequest,
    NewSessionResponse,
    PromptRequest,
    PromptResponse,
    SessionNotification,
    stdio_streams,
)


class EchoAgent:
    def __init__(self, conn: AgentSideConnection) -> None:
        self._conn = conn
        self._sessions = 0

    async def initialize(self, params: InitializeRequest) -> InitializeResponse:
        return InitializeResponse(
            protocolVersion=params.protocolVersion,
            agentInfo=Implementation(name="echo-agent", version="0.1.0"),
            authMethods=[],
        )

    async def newSession(self, params: NewSessionRequest) -> NewSessionResponse:
        self._sessions += 1
        return NewSessionResponse(sessionId=f"sess-{self._sessions}")

    async def authenticate(self, params: AuthenticateRequest) -> None:
        return None

    async def prompt(self, params: PromptRequest) -> PromptResponse:
        text = "".join(getattr(block, "text", "") for block in params.prompt)
        # Stream the reply back word by word
        for word in text.split():
            await self._conn.sessionUpdate(
                SessionNotification.model_validate(
                    {
                        "sessionId": params.sessionId,
                        "update": {"sessionUpdate": "agent_message_chunk", "content": {"type": "text", "text": word + " "}},
                    }
                )
            )
        return PromptResponse(stopReason="end_turn")

    async def cancel(self, params: CancelNotification) -> None:
        print(f"cancelled {params.sessionId}", file=sys.stderr)


async def main() -> None:
    reader, writer = await stdio_streams()
    conn = AgentSideConnection(EchoAgent, writer, reader)
    await conn.listen()


if __name__ == "__main__":
    asyncio.run(main())
