from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from pydantic import BaseModel, ValidationError

from .events import (
    EventEmitter,
    NotificationReceived,
    PermissionRequested,
    ProtocolLog,
    SessionUpdateReceived,
)
from .exceptions import ProcessNotRunningError, RequestError, UnknownPermissionRequestError
from .framing import FrameWriter, UnparsedLine, read_frames
from .meta import CLIENT_METHODS

logger = logging.getLogger(__name__)

JsonValue = Any
MethodHandler = Callable[[str, Optional[JsonValue]], Awaitable[Optional[JsonValue]]]

DEFAULT_ERROR_MESSAGE = "Unknown JSON-RPC error"


def to_wire(value: Any) -> JsonValue:
    """Dump pydantic models to plain JSON data; pass anything else through."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    return value


@dataclass(slots=True)
class _Pending:
    method: str
    future: asyncio.Future[Any]


def _discard(future: asyncio.Future[Any]) -> None:
    # Mark an abandoned future's exception as retrieved.
    if future.done() and not future.cancelled():
        future.exception()


class Connection:
    """
    JSON-RPC 2.0 dispatcher over newline-delimited JSON frames.

    - Outgoing requests get ids 1, 2, 3, ... that are never reused, even across
      re-attachment to a new process
    - Incoming responses resolve pending requests by id, in whatever order they
      arrive
    - ``session/update`` and ``session/request_permission`` become events on
      :attr:`events`; other calls are published as notifications and, when
      they carry an id, answered by ``handler`` (``-32601`` without one)
    - Unparseable lines become ``protocol_log`` events and never break the
      connection
    """

    def __init__(
        self,
        handler: Optional[MethodHandler] = None,
        writer: Optional[asyncio.StreamWriter] = None,
        reader: Optional[asyncio.StreamReader] = None,
    ) -> None:
        self._handler = handler
        self.events = EventEmitter()
        self._writer: Optional[FrameWriter] = None
        self._recv_task: Optional[asyncio.Task[None]] = None
        self._handler_tasks: Set[asyncio.Task[None]] = set()
        self._next_request_id = 1
        self._pending: Dict[Any, _Pending] = {}
        self._permission_ids: Dict[str, JsonValue] = {}
        if writer is not None and reader is not None:
            self.attach(writer, reader)

    # --- Lifecycle ---------------------------------------------------------------

    @property
    def is_attached(self) -> bool:
        return self._writer is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending_permission_ids(self) -> list[str]:
        return list(self._permission_ids)

    def attach(self, writer: asyncio.StreamWriter, reader: asyncio.StreamReader) -> None:
        """Start talking over a fresh stream pair (typically a new child process)."""
        if self._writer is not None:
            raise RuntimeError("Connection is already attached")
        self._writer = FrameWriter(writer)
        self._recv_task = asyncio.create_task(self._receive_loop(reader), name="acp_host.Connection.receive")

    def detach(self, error: BaseException) -> None:
        """Drop the streams and reject every pending request with ``error``.

        The pending map and permission lookup are cleared before this returns,
        so nothing resolved later can leak into the next attachment.
        """
        self._writer = None
        pending, self._pending = self._pending, {}
        self._permission_ids.clear()
        for record in pending.values():
            if not record.future.done():
                record.future.set_exception(error)
        if self._recv_task is not None and not self._recv_task.done():
            self._recv_task.cancel()
        self._recv_task = None
        for task in list(self._handler_tasks):
            task.cancel()

    async def drain(self, timeout: float = 1.0) -> None:
        """Wait for the receive loop to consume whatever the peer already wrote."""
        task = self._recv_task
        if task is None or task.done():
            return
        # Only the caller's own cancellation escapes; the task keeps running on timeout.
        await asyncio.wait({task}, timeout=timeout)

    async def wait_closed(self) -> None:
        """Block until the peer closes its end of the stream."""
        task = self._recv_task
        if task is not None:
            await asyncio.wait({task})

    async def close(self) -> None:
        writer = self._writer
        recv_task = self._recv_task
        self.detach(ProcessNotRunningError("Connection closed"))
        if writer is not None:
            writer.close()
        if recv_task is not None:
            await asyncio.wait({recv_task})

    # --- IO loops ----------------------------------------------------------------

    async def _receive_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            async for frame in read_frames(reader):
                try:
                    await self._process_frame(frame)
                except Exception:
                    logger.exception("Error processing message")
        except asyncio.CancelledError:
            return
        except Exception:
            logger.exception("Receive loop failed")

    async def _process_frame(self, frame: Any) -> None:
        if isinstance(frame, UnparsedLine):
            logger.warning("Ignoring non JSON-RPC line: %s", frame.text[:200])
            await self.events.emit(ProtocolLog(frame.text))
            return
        await self._process_message(frame)

    async def _process_message(self, message: dict) -> None:
        method = message.get("method")
        has_id = message.get("id") is not None

        if method is None:
            if has_id and message["id"] in self._pending:
                self._handle_response(message)
            else:
                logger.debug("Dropping unmatched message: %s", message)
            return

        if method == CLIENT_METHODS["session_update"]:
            await self.events.emit(SessionUpdateReceived(message.get("params")))
            return

        if method == CLIENT_METHODS["session_request_permission"] and has_id:
            request_id = str(message["id"])
            self._permission_ids[request_id] = message["id"]
            await self.events.emit(PermissionRequested(request_id, message.get("params")))
            return

        await self.events.emit(NotificationReceived(message))
        if not has_id:
            if self._handler is not None:
                try:
                    await self._handler(method, message.get("params"))
                except Exception:
                    # Best-effort; notifications do not produce responses
                    logger.exception("Notification handler failed for %s", method)
            return

        if self._handler is None:
            await self._send_quietly(
                {
                    "jsonrpc": "2.0",
                    "id": message["id"],
                    "error": RequestError.method_not_found(method).to_error_obj(),
                }
            )
            return
        task = asyncio.create_task(
            self._run_request(self._handler, message), name=f"acp_host.Connection.request.{method}"
        )
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_tasks.discard)

    def _handle_response(self, message: dict) -> None:
        record = self._pending.pop(message["id"])
        if record.future.done():
            return
        if "error" in message and message["error"] is not None:
            err = message["error"] if isinstance(message["error"], dict) else {}
            record.future.set_exception(
                RequestError(
                    err.get("code", -32603),
                    err.get("message") or DEFAULT_ERROR_MESSAGE,
                    err.get("data"),
                )
            )
        else:
            record.future.set_result(message.get("result"))

    async def _run_request(self, handler: MethodHandler, message: dict) -> None:
        method = message["method"]
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": message["id"]}
        try:
            result = await handler(method, message.get("params"))
            payload["result"] = to_wire(result)
        except RequestError as exc:
            payload["error"] = exc.to_error_obj()
        except ValidationError as exc:
            payload["error"] = RequestError.invalid_params(
                {"errors": json.loads(exc.json(include_url=False))}
            ).to_error_obj()
        except asyncio.CancelledError:
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("Handler for %s failed", method)
            payload["error"] = RequestError.internal_error({"details": str(exc)}).to_error_obj()
        await self._send_quietly(payload)

    async def _send_quietly(self, payload: dict) -> None:
        writer = self._writer
        if writer is None or not writer.writable:
            logger.debug("Dropping reply to %s: process is gone", payload.get("id"))
            return
        try:
            await writer.write(payload)
        except (ConnectionError, RuntimeError):
            logger.debug("Peer closed before reply to %s", payload.get("id"))

    def _require_writer(self) -> FrameWriter:
        writer = self._writer
        if writer is None or not writer.writable:
            raise ProcessNotRunningError()
        return writer

    async def _write(self, writer: FrameWriter, payload: dict) -> None:
        try:
            await writer.write(payload)
        except (ConnectionError, RuntimeError) as exc:
            raise ProcessNotRunningError() from exc

    # --- Public API --------------------------------------------------------------

    async def request(
        self,
        method: str,
        params: Optional[JsonValue] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        writer = self._require_writer()
        request_id = self._next_request_id
        self._next_request_id += 1
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = _Pending(method, future)
        logger.debug("-> request %s %s", request_id, method)
        try:
            await self._write(
                writer,
                {"jsonrpc": "2.0", "id": request_id, "method": method, "params": to_wire(params)},
            )
        except ProcessNotRunningError:
            self._pending.pop(request_id, None)
            _discard(future)
            raise
        if timeout is None:
            return await future
        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self._pending.pop(request_id, None)
            raise

    async def notify(self, method: str, params: Optional[JsonValue] = None) -> None:
        writer = self._require_writer()
        logger.debug("-> notification %s", method)
        await self._write(writer, {"jsonrpc": "2.0", "method": method, "params": to_wire(params)})

    async def respond_permission(self, request_id: str, outcome: Any) -> None:
        """Answer a ``session/request_permission`` call exactly once."""
        key = str(request_id)
        if key not in self._permission_ids:
            raise UnknownPermissionRequestError(key)
        rpc_id = self._permission_ids.pop(key)
        writer = self._require_writer()
        await self._write(writer, {"jsonrpc": "2.0", "id": rpc_id, "result": {"outcome": to_wire(outcome)}})
