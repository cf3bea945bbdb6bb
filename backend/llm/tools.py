# backend/llm/tools.py
"""
Tools the realtime model may call during a call.

Each tool validates its arguments with a pydantic model before any side effect,
performs exactly one durable write (plus at most one SMS), and returns a
ToolResult that is never spoken to the caller.
"""
import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config import Settings, is_e164
from data.models import CALL_SUMMARY, ESCALATION, SMS_ATTEMPT, Lead, Urgency
from data.store import EventLog, LeadStore, utc_now_iso
from errors import GatewayError, StorageError
from transport.sms import SmsGateway

logger = logging.getLogger(__name__)

SMS_MAX_LENGTH = 480
SUMMARY_MAX_LENGTH = 2000
SMS_PREVIEW_LENGTH = 80
OPT_OUT_SUFFIX = "\n\nReply STOP to opt out."


class ToolStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILURE = "failure"


@dataclass(frozen=True)
class ToolResult:
    status: ToolStatus
    message: str

    @classmethod
    def success(cls, message: str) -> "ToolResult":
        return cls(ToolStatus.SUCCESS, message)

    @classmethod
    def skipped(cls, message: str) -> "ToolResult":
        return cls(ToolStatus.SKIPPED, message)

    @classmethod
    def failure(cls, message: str) -> "ToolResult":
        return cls(ToolStatus.FAILURE, message)

    @property
    def ok(self) -> bool:
        return self.status is not ToolStatus.FAILURE

    def to_output(self) -> str:
        return json.dumps({"status": self.status.value, "message": self.message})


@dataclass(frozen=True)
class ToolContext:
    settings: Settings
    leads: LeadStore
    events: EventLog
    gateway: SmsGateway


# ---------------------------------------------------------------------------
# Argument schemas
# ---------------------------------------------------------------------------

class _ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateLeadArgs(_ToolArgs):
    caller_phone: Optional[str] = Field(default=None, alias="callerPhone")
    caller_name: Optional[str] = Field(default=None, alias="callerName")
    service_address: Optional[str] = Field(default=None, alias="serviceAddress")
    issue: Optional[str] = None
    urgency: Urgency = "normal"
    preferred_time: Optional[str] = Field(default=None, alias="preferredTime")
    notes: Optional[str] = None


class SendSmsArgs(_ToolArgs):
    to: str = Field(description="E.164 phone number, e.g. +15551234567")
    message: str = Field(max_length=SMS_MAX_LENGTH)

    @field_validator("to")
    @classmethod
    def _check_e164(cls, value: str) -> str:
        if not is_e164(value):
            raise ValueError("Phone must be E.164 format like +15551234567")
        return value


class EscalateArgs(_ToolArgs):
    caller_phone: Optional[str] = Field(default=None, alias="callerPhone")
    service_address: Optional[str] = Field(default=None, alias="serviceAddress")
    issue: Optional[str] = None
    reason: str = "emergency"


class LogSummaryArgs(_ToolArgs):
    summary: str = Field(max_length=SUMMARY_MAX_LENGTH)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------

async def create_lead(args: CreateLeadArgs, ctx: ToolContext) -> ToolResult:
    lead = Lead(
        id=str(uuid.uuid4()),
        created_at=utc_now_iso(),
        business_name=ctx.settings.business_name,
        **args.model_dump(exclude_none=True),
    )
    await asyncio.to_thread(ctx.leads.append_lead, lead)
    logger.info("Lead stored id=%s urgency=%s", lead.id, lead.urgency)
    return ToolResult.success(f"Lead stored with id {lead.id}")


async def send_sms_to_number(args: SendSmsArgs, ctx: ToolContext) -> ToolResult:
    await asyncio.to_thread(
        ctx.events.append_event, SMS_ATTEMPT, to=args.to, messagePreview=args.message[:SMS_PREVIEW_LENGTH]
    )

    if not ctx.gateway.configured:
        return ToolResult.skipped("SMS gateway not configured; SMS skipped.")

    sid = await ctx.gateway.send(args.to, f"{args.message}{OPT_OUT_SUFFIX}")
    return ToolResult.success(f"SMS sent: sid={sid}")


def format_escalation(business_name: str, args: EscalateArgs) -> str:
    lines = [f"🚨 EMERGENCY LEAD ({business_name})", f"Reason: {args.reason}"]
    if args.issue:
        lines.append(f"Issue: {args.issue}")
    if args.service_address:
        lines.append(f"Address: {args.service_address}")
    if args.caller_phone:
        lines.append(f"Caller: {args.caller_phone}")
    return "\n".join(lines) + "\n"


async def escalate_to_oncall(args: EscalateArgs, ctx: ToolContext) -> ToolResult:
    await asyncio.to_thread(
        ctx.events.append_event,
        ESCALATION,
        reason=args.reason,
        callerPhone=args.caller_phone,
        serviceAddress=args.service_address,
        issue=args.issue,
    )

    if not ctx.gateway.configured:
        return ToolResult.skipped("SMS gateway not configured; escalation SMS skipped.")

    body = format_escalation(ctx.settings.business_name, args)
    sid = await ctx.gateway.send(ctx.settings.oncall_phone, body)
    return ToolResult.success(f"Escalation SMS sent: sid={sid}")


async def log_call_summary(args: LogSummaryArgs, ctx: ToolContext) -> ToolResult:
    await asyncio.to_thread(ctx.events.append_event, CALL_SUMMARY, summary=args.summary)
    return ToolResult.success("Summary logged.")


# ---------------------------------------------------------------------------
# Registry + dispatch
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    params: Type[_ToolArgs]
    execute: Callable[[Any, ToolContext], Awaitable[ToolResult]]

    def schema(self) -> Dict[str, Any]:
        """Function definition in the shape the realtime session.update expects."""
        parameters = self.params.model_json_schema(by_alias=True)
        parameters.pop("title", None)
        for prop in parameters.get("properties", {}).values():
            prop.pop("title", None)
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": parameters,
        }


TOOLS: Dict[str, Tool] = {
    tool.name: tool
    for tool in (
        Tool(
            name="create_lead",
            description=(
                "Create a new plumbing service lead from call details. "
                "Use after collecting address, issue, urgency, and callback number."
            ),
            params=CreateLeadArgs,
            execute=create_lead,
        ),
        Tool(
            name="send_sms_to_number",
            description=(
                "Send an informational SMS confirmation (never promotional). "
                "Use after caller confirms they can receive a text."
            ),
            params=SendSmsArgs,
            execute=send_sms_to_number,
        ),
        Tool(
            name="escalate_to_oncall",
            description="Escalate an emergency lead to the on-call person via SMS.",
            params=EscalateArgs,
            execute=escalate_to_oncall,
        ),
        Tool(
            name="log_call_summary",
            description="Log the final call summary for internal tracking.",
            params=LogSummaryArgs,
            execute=log_call_summary,
        ),
    )
}


def tool_schemas() -> List[Dict[str, Any]]:
    return [tool.schema() for tool in TOOLS.values()]


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


async def invoke_tool(name: str, arguments: Union[str, Dict[str, Any], None], ctx: ToolContext) -> ToolResult:
    """
    Look up `name` in the registry, validate `arguments`, run the tool.
    Every failure comes back as a FAILURE result so one bad call never ends the session.
    """
    tool = TOOLS.get(name)
    if tool is None:
        logger.warning("Unknown tool requested: %s", name)
        return ToolResult.failure(f"Unknown tool: {name}")

    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments) if arguments.strip() else {}
        except ValueError:
            return ToolResult.failure(f"{name}: arguments are not valid JSON")
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        return ToolResult.failure(f"{name}: arguments must be a JSON object")

    try:
        args = tool.params.model_validate(arguments)
    except ValidationError as exc:
        detail = _describe_validation_error(exc)
        logger.info("Tool %s rejected arguments: %s", name, detail)
        return ToolResult.failure(f"{name}: invalid arguments: {detail}")

    try:
        return await tool.execute(args, ctx)
    except (StorageError, GatewayError) as exc:
        logger.warning("Tool %s failed: %s", name, exc)
        return ToolResult.failure(f"{name} failed: {exc}")
    except Exception:
        logger.exception("Tool %s raised unexpectedly", name)
        return ToolResult.failure(f"{name} failed: internal error")
