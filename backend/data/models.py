from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Urgency = Literal["low", "normal", "emergency"]

LEAD_SOURCE = "twilio_call"

# Event.type values
SMS_ATTEMPT = "sms_attempt"
ESCALATION = "escalation"
CALL_SUMMARY = "call_summary"
TRANSPORT_EVENT = "transport_event"
SESSION_ERROR = "session_error"
REALTIME_CONNECTED = "realtime_connected"

EVENT_TYPES = frozenset({
    SMS_ATTEMPT, ESCALATION, CALL_SUMMARY, TRANSPORT_EVENT, SESSION_ERROR, REALTIME_CONNECTED,
})


class Lead(BaseModel):
    """One captured intake. Serialized with camelCase keys; unset optionals are omitted."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    created_at: str = Field(alias="createdAt")
    business_name: str = Field(alias="businessName")
    caller_phone: Optional[str] = Field(default=None, alias="callerPhone")
    caller_name: Optional[str] = Field(default=None, alias="callerName")
    service_address: Optional[str] = Field(default=None, alias="serviceAddress")
    issue: Optional[str] = None
    urgency: Urgency = "normal"
    preferred_time: Optional[str] = Field(default=None, alias="preferredTime")
    notes: Optional[str] = None
    source: str = LEAD_SOURCE

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
