# backend/transport/twilio_fastapi.py
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional
from xml.sax.saxutils import quoteattr

from fastapi import APIRouter, Request, Response, WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from llm.bridge import CallSessionBridge

logger = logging.getLogger(__name__)

twilio_router = APIRouter(tags=["twilio"])

# Twilio may offer either subprotocol; we echo whichever it asked for
TWILIO_SUBPROTOCOLS = ("twilio", "audio")

DISCLOSURE = "This call may be recorded for quality and service."
PROMPT = "OK, you can start talking."


def incoming_call_twiml(host: str) -> str:
    ws_url = f"wss://{host}/media-stream"
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Response>
  <Say>{DISCLOSURE}</Say>
  <Say>{PROMPT}</Say>
  <Connect>
    <Stream url={quoteattr(ws_url)} />
  </Connect>
</Response>"""


class TwilioMediaChannel:
    """
    Twilio Media Stream websocket seen as an audio channel.
    Frames in: {"event": "connected"|"start"|"media"|"mark"|"stop", ...}
    Frames out: media (base64 u-law on the active streamSid) and clear.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.stream_sid: Optional[str] = None
        self.call_sid: Optional[str] = None
        self._closed = False

    async def frames(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                return

            text = message.get("text")
            if text is None:
                logger.warning("Dropping binary Twilio frame (%d bytes)", len(message.get("bytes") or b""))
                continue
            try:
                frame = json.loads(text)
            except ValueError:
                logger.warning("Dropping non-JSON Twilio frame")
                continue

            if frame.get("event") == "start":
                start = frame.get("start") or {}
                self.stream_sid = start.get("streamSid") or frame.get("streamSid")
                self.call_sid = start.get("callSid")
                logger.info("Twilio stream started call=%s stream=%s", self.call_sid, self.stream_sid)

            yield frame

    async def send_audio(self, payload: str) -> None:
        if self.stream_sid is None:
            # no start frame yet: nowhere to play it
            return
        await self._send({"event": "media", "streamSid": self.stream_sid, "media": {"payload": payload}})

    async def clear(self) -> None:
        if self.stream_sid is None:
            return
        await self._send({"event": "clear", "streamSid": self.stream_sid})

    async def _send(self, message: Dict[str, Any]) -> None:
        if self._closed:
            return
        try:
            await self.websocket.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError):
            self._closed = True
            logger.info("Twilio socket gone; dropping outbound frames call=%s", self.call_sid)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if (
            self.websocket.application_state == WebSocketState.CONNECTED
            and self.websocket.client_state == WebSocketState.CONNECTED
        ):
            try:
                await self.websocket.close()
            except RuntimeError:
                logger.debug("Twilio socket already closed call=%s", self.call_sid)


# --- TwiML: answer, begin Media Stream ---
@twilio_router.api_route("/incoming-call", methods=["GET", "POST"])
async def incoming_call(request: Request):
    settings = request.app.state.settings
    host = settings.public_host or request.headers.get("host") or request.url.netloc
    logger.info("Incoming call; streaming to wss://%s/media-stream", host)
    return Response(content=incoming_call_twiml(host), media_type="text/xml")


# --- WebSocket: Twilio Media Stream ---
@twilio_router.websocket("/media-stream")
async def media_stream(websocket: WebSocket):
    requested = websocket.scope.get("subprotocols") or []
    subprotocol = next((p for p in requested if p in TWILIO_SUBPROTOCOLS), None)
    await websocket.accept(subprotocol=subprotocol)

    state = websocket.app.state
    channel = TwilioMediaChannel(websocket)
    bridge = CallSessionBridge(channel, state.tool_context, state.connect_realtime)
    final_state = await bridge.run()
    logger.info("Media stream finished call=%s state=%s", channel.call_sid, final_state.value)
