# backend/llm/bridge.py
"""
Call session bridge: Twilio media stream <-> OpenAI Realtime.

One CallSessionBridge per accepted media-stream websocket. It opens the realtime
connection before reading any audio, relays audio both ways untouched, runs tool
calls off the relay path, and tears everything down exactly once.
"""
import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from data.models import REALTIME_CONNECTED, SESSION_ERROR, TRANSPORT_EVENT
from errors import StorageError
from .prompt import build_instructions
from .realtime_openai import BackendDisconnected, RealtimeConnection
from .tools import ToolContext, invoke_tool, tool_schemas

logger = logging.getLogger(__name__)

Connector = Callable[[], Awaitable[RealtimeConnection]]

AUDIO_DELTA_TYPES = ("response.output_audio.delta", "response.audio.delta")
# one of these arrives every 20ms per direction; only logged on request
AUDIO_EVENT_TYPES = frozenset({"media", "input_audio_buffer.append", *AUDIO_DELTA_TYPES})


class SessionState(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    ENDED = "ended"
    FAILED = "failed"


class Subscription:
    """Handle for one listener; unsubscribe() is idempotent."""

    def __init__(self, listeners: List[Callable[[Any], None]], callback: Callable[[Any], None]):
        self._listeners = listeners
        self._callback = callback
        self._listeners.append(callback)
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._listeners.remove(self._callback)


def _describe_error(err: Any) -> str:
    if isinstance(err, dict):
        return err.get("message") or json.dumps(err, default=str)
    return str(err)


def _is_request_error(err: Any) -> bool:
    # rejected client event: the session itself is still usable
    return isinstance(err, dict) and err.get("type") == "invalid_request_error"


class CallSessionBridge:
    def __init__(self, channel, tools: ToolContext, connect: Connector):
        self.channel = channel
        self.tools = tools
        self.settings = tools.settings
        self.events = tools.events
        self._connect = connect

        self.state = SessionState.CONNECTING
        self.backend: Optional[RealtimeConnection] = None
        self.subscriptions: List[Subscription] = []
        self._listeners: Dict[str, List[Callable[[Any], None]]] = {"transport_event": [], "error": []}
        self._tool_tasks: Set[asyncio.Task] = set()
        self._backend_failed = False
        self._closed = False
        # the server rejects response.create while a response is in progress
        self._response_active = False
        self._response_wanted = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def call_sid(self) -> Optional[str]:
        return getattr(self.channel, "call_sid", None)

    # -- listeners -----------------------------------------------------------

    def on(self, kind: str, callback: Callable[[Any], None]) -> Subscription:
        return Subscription(self._listeners[kind], callback)

    def _emit(self, kind: str, payload: Any) -> None:
        for callback in list(self._listeners[kind]):
            callback(payload)

    def _append_event(self, event_type: str, **payload: Any) -> None:
        # the event log is a side channel: a sink fault must not end the call
        try:
            self.events.append_event(event_type, callSid=self.call_sid, **payload)
        except StorageError:
            logger.exception("Event log write failed (type=%s call=%s)", event_type, self.call_sid)

    def _log_transport_event(self, event: Dict[str, Any]) -> None:
        evt_type = event.get("type") or "unknown"
        if evt_type in AUDIO_EVENT_TYPES and not self.settings.log_audio_events:
            return
        self._append_event(TRANSPORT_EVENT, source=event.get("source"), evtType=evt_type)

    def _log_session_error(self, err: Any) -> None:
        logger.warning("Session error call=%s: %s", self.call_sid, _describe_error(err))
        self._append_event(SESSION_ERROR, err=_describe_error(err))

    # -- lifecycle -----------------------------------------------------------

    async def open(self) -> bool:
        """Connect and configure the realtime session. Returns False if the session failed."""
        self.subscriptions = [
            self.on("transport_event", self._log_transport_event),
            self.on("error", self._log_session_error),
        ]
        try:
            self.backend = await self._connect()
            await self.backend.configure(
                instructions=build_instructions(self.settings.business_name),
                tools=tool_schemas(),
                voice=self.settings.voice,
            )
        except Exception as exc:
            logger.exception("Realtime connect failed")
            self._emit("error", exc)
            await self.close(error=True)
            return False

        self.state = SessionState.ACTIVE
        self._append_event(REALTIME_CONNECTED)
        return True

    async def run(self) -> SessionState:
        """Open the session and relay until either side ends. Returns the final state."""
        pumps: List[asyncio.Task] = []
        try:
            if not await self.open():
                return self.state

            pumps = [
                asyncio.create_task(self._pump_caller(), name="twilio->realtime"),
                asyncio.create_task(self._pump_backend(), name="realtime->twilio"),
            ]
            done, pending = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            failed = self._backend_failed
            for task in done:
                if task.cancelled():
                    continue
                exc = task.exception()
                if exc is not None:
                    self._emit("error", exc)
                    failed = True
            await self.close(error=failed)
        finally:
            for task in pumps:
                task.cancel()
            await self.close()
            await self._drain_tools()
        return self.state

    async def close(self, error: bool = False) -> None:
        """Release listeners, the realtime connection and the channel. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self.state = SessionState.FAILED if error else SessionState.ENDED

        for sub in self.subscriptions:
            sub.unsubscribe()

        if self.backend is not None:
            try:
                await self.backend.close()
            except Exception:
                logger.warning("Realtime close raised; ignoring", exc_info=True)
        await self.channel.close()
        logger.info("Session closed call=%s state=%s", self.call_sid, self.state.value)

    # -- relay ---------------------------------------------------------------

    async def _pump_caller(self) -> None:
        async for frame in self.channel.frames():
            kind = frame.get("event") or "unknown"
            self._emit("transport_event", {"source": "twilio", "type": kind})

            if kind == "media":
                payload = (frame.get("media") or {}).get("payload")
                if payload:
                    await self.backend.append_audio(payload)
            elif kind == "stop":
                logger.info("Twilio stream stopped call=%s", self.call_sid)
                return

    async def _pump_backend(self) -> None:
        async for event in self.backend:
            etype = event.get("type") or "unknown"
            self._emit("transport_event", {"source": "realtime", "type": etype})

            if etype in AUDIO_DELTA_TYPES:
                delta = event.get("delta")
                if delta:
                    await self.channel.send_audio(delta)
            elif etype == "input_audio_buffer.speech_started":
                # caller barged in: drop assistant audio Twilio has queued
                await self.channel.clear()
            elif etype == "response.created":
                self._response_active = True
            elif etype == "response.done":
                self._response_active = False
                if self._response_wanted:
                    await self._request_response()
            elif etype == "response.function_call_arguments.done":
                self._spawn_tool(event)
            elif etype == "error":
                error = event.get("error") or event
                self._emit("error", error)
                if not _is_request_error(error):
                    self._backend_failed = True
                    return

    # -- tools ---------------------------------------------------------------

    def _spawn_tool(self, event: Dict[str, Any]) -> None:
        name = event.get("name") or ""
        if self._closed:
            logger.info("Ignoring tool call %s after session end", name)
            return
        task = asyncio.create_task(
            self._run_tool(event.get("call_id"), name, event.get("arguments")),
            name=f"tool:{name}",
        )
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_tasks.discard)

    async def _run_tool(self, call_id: Optional[str], name: str, arguments: Any) -> None:
        logger.info("Tool call %s call=%s", name, self.call_sid)
        result = await invoke_tool(name, arguments, self.tools)

        if self._closed:
            logger.info("Session ended; discarding %s result (%s)", name, result.status.value)
            return

        try:
            await self.backend.send_tool_output(call_id, result.to_output())
            # successes stay silent; failures get a turn so the model can recover
            if not result.ok:
                await self._request_response()
        except BackendDisconnected as exc:
            logger.warning("Could not deliver %s result: %s", name, exc)

    async def _request_response(self) -> None:
        """Ask for a model turn now, or once the response in progress is done."""
        if self._response_active:
            self._response_wanted = True
            return
        self._response_wanted = False
        self._response_active = True
        await self.backend.request_response()

    async def _drain_tools(self) -> None:
        if not self._tool_tasks:
            return
        done, pending = await asyncio.wait(set(self._tool_tasks), timeout=self.settings.tool_grace_seconds)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Abandoned %d tool call(s) still running after session end", len(pending))
