# backend/llm/realtime_openai.py
import json
import logging
from typing import Any, AsyncIterator, Dict, List

import websockets
from websockets.exceptions import ConnectionClosedError, WebSocketException

from errors import VoiceAgentError

logger = logging.getLogger(__name__)

OPENAI_REALTIME_URL = "wss://api.openai.com/v1/realtime?model={model}"

# Twilio media streams carry 8 kHz G.711 u-law; the realtime API accepts it as-is
AUDIO_FORMAT = {"type": "audio/pcmu"}


class BackendDisconnected(VoiceAgentError):
    """The realtime websocket closed abnormally or could not be opened."""


class RealtimeConnection:
    """
    One websocket to the OpenAI Realtime API.
    Sends client events as JSON and yields decoded server events.
    """

    def __init__(self, ws):
        self._ws = ws
        self._closed = False

    @classmethod
    async def open(cls, api_key: str, model: str) -> "RealtimeConnection":
        headers = [("Authorization", f"Bearer {api_key}")]
        try:
            ws = await websockets.connect(OPENAI_REALTIME_URL.format(model=model), additional_headers=headers)
        except (OSError, WebSocketException) as exc:
            raise BackendDisconnected(f"could not connect to realtime API: {exc}") from exc
        logger.info("Connected to OpenAI Realtime model=%s", model)
        return cls(ws)

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, event: Dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps(event))
        except WebSocketException as exc:
            raise BackendDisconnected(f"send failed: {exc}") from exc

    async def configure(self, instructions: str, tools: List[Dict[str, Any]], voice: str) -> None:
        # Configure the session: instructions + audio formats + tools
        await self.send({
            "type": "session.update",
            "session": {
                "type": "realtime",
                "instructions": instructions,
                "output_modalities": ["audio"],
                "audio": {
                    "input": {
                        "format": AUDIO_FORMAT,
                        "turn_detection": {"type": "server_vad"},
                    },
                    "output": {"format": AUDIO_FORMAT, "voice": voice},
                },
                "tools": tools,
                "tool_choice": "auto",
            },
        })

    async def append_audio(self, payload: str) -> None:
        await self.send({"type": "input_audio_buffer.append", "audio": payload})

    async def send_tool_output(self, call_id: str, output: str) -> None:
        await self.send({
            "type": "conversation.item.create",
            "item": {"type": "function_call_output", "call_id": call_id, "output": output},
        })

    async def request_response(self) -> None:
        await self.send({"type": "response.create"})

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        return self._events()

    async def _events(self) -> AsyncIterator[Dict[str, Any]]:
        try:
            async for raw in self._ws:
                try:
                    yield json.loads(raw)
                except ValueError:
                    logger.warning("Dropping non-JSON realtime frame (%d bytes)", len(raw))
        except ConnectionClosedError as exc:
            if not self._closed:
                raise BackendDisconnected(f"realtime connection lost: {exc}") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._ws.close()
