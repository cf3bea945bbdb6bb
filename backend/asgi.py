import logging
import sys
from datetime import datetime, timezone
from functools import partial
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from config import Settings, load_settings
from data.store import EventLog, LeadStore
from errors import ConfigError
from llm.bridge import Connector
from llm.realtime_openai import RealtimeConnection
from llm.tools import ToolContext
from logging_config import setup_logging
from transport.sms import SmsGateway
from transport.twilio_fastapi import twilio_router

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------
# App factory: settings, sinks and the SMS gateway are built once here and
# shared by every call session through app.state.
# ------------------------------------------------------------------------------


def create_app(
    settings: Optional[Settings] = None,
    *,
    gateway: Optional[SmsGateway] = None,
    connect_realtime: Optional[Connector] = None,
) -> FastAPI:
    settings = settings or load_settings()
    gateway = gateway or SmsGateway.from_settings(settings)
    if not gateway.configured:
        logger.warning("Twilio SMS not configured: send_sms_to_number and escalate_to_oncall will report skipped")

    app = FastAPI(title="After-hours voice intake: Twilio <-> OpenAI Realtime bridge")
    app.state.settings = settings
    app.state.tool_context = ToolContext(
        settings=settings,
        leads=LeadStore(settings.leads_file),
        events=EventLog(settings.events_file),
        gateway=gateway,
    )
    app.state.connect_realtime = connect_realtime or partial(
        RealtimeConnection.open, settings.openai_api_key, settings.realtime_model
    )

    app.include_router(twilio_router)

    # Healthcheck: simple GET so you can test local/public reachability quickly
    @app.get("/")
    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "service": settings.service_name,
            "time": datetime.now(timezone.utc).isoformat(),
        }

    return app


def main() -> None:
    load_dotenv()
    try:
        settings = load_settings()
    except ConfigError as exc:
        setup_logging()
        logger.error("%s", exc)
        sys.exit(1)

    setup_logging(settings.log_level)
    app = create_app(settings)

    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
