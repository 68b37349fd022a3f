"""Launch an ACP agent, open a session and print what it streams back.

    python examples/client.py [launch command]

Without an argument the echo agent next to this file is started.
"""

import asyncio
import logging
import os
import shlex
import sys

from acp_host import AcpClient, LaunchConfig, StderrLine


async def main(launch_command: str) -> None:
    async with AcpClient(LaunchConfig(launch_command=launch_command), auto_allow=True) as client:
        client.subscribe(lambda e: print(f"[agent] {e.text}", file=sys.stderr) if isinstance(e, StderrLine) else None)
        client.sessions.subscribe(lambda state, update: print(f"update: {update.sessionUpdate}", file=sys.stderr))

        init = await client.start()
        print(f"Initialized with protocol version: {init.protocolVersion}", file=sys.stderr)

        session = await client.new_session(os.getcwd())
        response = await client.prompt(session.sessionId, "Hello from the host")
        for message in client.sessions.get(session.sessionId).messages:
            print(f"{message.role}: {message.text}")
        print(f"stop reason: {response.stopReason}", file=sys.stderr)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    agent = os.path.join(os.path.dirname(os.path.abspath(__file__)), "agent.py")
    default = f"{shlex.quote(sys.executable)} {shlex.quote(agent)}"
    asyncio.run(main(" ".join(sys.argv[1:]) or default))
