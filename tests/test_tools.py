import asyncio
import json
import threading

from data.store import LeadStore
from errors import GatewayError
from llm.tools import TOOLS, ToolContext, ToolStatus, invoke_tool, tool_schemas
from fakes import ONCALL_PHONE, FakeGateway


def call(ctx, name, args):
    return asyncio.run(invoke_tool(name, args, ctx))


# --- create_lead ---

def test_create_lead_writes_one_lead(ctx, leads):
    result = call(ctx, "create_lead", {
        "callerName": "Dana",
        "callerPhone": "+15551234567",
        "serviceAddress": "12 Elm St",
        "issue": "leaky faucet",
    })

    stored = leads.read_leads()
    assert len(stored) == 1
    lead = stored[0]
    assert result.status is ToolStatus.SUCCESS
    assert lead.id in result.message
    assert lead.urgency == "normal"
    assert lead.business_name == "Test Plumbing"
    assert lead.source == "twilio_call"
    assert lead.created_at


def test_create_lead_record_omits_fields_never_supplied(ctx, leads):
    call(ctx, "create_lead", {"issue": "no hot water", "urgency": "low"})
    raw = leads.read()[0]
    assert raw["issue"] == "no hot water"
    assert raw["urgency"] == "low"
    for key in ("callerPhone", "callerName", "serviceAddress", "preferredTime", "notes"):
        assert key not in raw


def test_create_lead_rejects_unknown_urgency(ctx, leads):
    result = call(ctx, "create_lead", {"issue": "clog", "urgency": "whenever"})
    assert result.status is ToolStatus.FAILURE
    assert "urgency" in result.message
    assert leads.read() == []


def test_create_lead_assigns_distinct_ids(ctx, leads):
    call(ctx, "create_lead", {"issue": "a"})
    call(ctx, "create_lead", {"issue": "a"})
    ids = {lead.id for lead in leads.read_leads()}
    assert len(ids) == 2


def test_create_lead_writes_off_the_event_loop_thread(settings, events, gateway):
    writer_threads = []

    class RecordingLeadStore(LeadStore):
        def append(self, record):
            writer_threads.append(threading.get_ident())
            super().append(record)

    leads = RecordingLeadStore(settings.leads_file)
    ctx = ToolContext(settings=settings, leads=leads, events=events, gateway=gateway)
    assert call(ctx, "create_lead", {"issue": "clog"}).ok
    assert len(writer_threads) == 1
    assert writer_threads[0] != threading.get_ident()
    assert len(leads.read_leads()) == 1


def test_create_lead_storage_fault_is_a_tool_failure(settings, events, gateway, tmp_path):
    broken = ToolContext(settings=settings, leads=LeadStore(tmp_path), events=events, gateway=gateway)
    result = call(broken, "create_lead", {"issue": "clog"})
    assert result.status is ToolStatus.FAILURE
    assert "create_lead failed" in result.message


# --- send_sms_to_number ---

def test_send_sms_logs_attempt_then_sends(ctx, events, gateway):
    message = "Thanks for calling. A technician will call you back within the hour to confirm a time."
    result = call(ctx, "send_sms_to_number", {"to": "+15551234567", "message": message})

    attempts = events.read_events("sms_attempt")
    assert len(attempts) == 1
    assert attempts[0]["to"] == "+15551234567"
    assert attempts[0]["messagePreview"] == message[:80]
    assert len(attempts[0]["messagePreview"]) == 80

    assert gateway.sent == [("+15551234567", message + "\n\nReply STOP to opt out.")]
    assert result.status is ToolStatus.SUCCESS
    assert "sid=SM" in result.message


def test_send_sms_without_plus_fails_before_any_side_effect(ctx, events, gateway):
    result = call(ctx, "send_sms_to_number", {"to": "5551234567", "message": "hi"})
    assert result.status is ToolStatus.FAILURE
    assert "E.164" in result.message
    assert events.read() == []
    assert gateway.sent == []


def test_send_sms_padded_number_is_rejected_not_trimmed(ctx, events, gateway):
    result = call(ctx, "send_sms_to_number", {"to": "  +15551234567  ", "message": "hi"})
    assert result.status is ToolStatus.FAILURE
    assert "E.164" in result.message
    assert events.read() == []
    assert gateway.sent == []


def test_send_sms_message_is_sent_as_given(ctx, events, gateway):
    call(ctx, "send_sms_to_number", {"to": "+15551234567", "message": "  hi   "})
    assert events.read_events("sms_attempt")[0]["messagePreview"] == "  hi   "
    assert gateway.sent == [("+15551234567", "  hi   \n\nReply STOP to opt out.")]


def test_send_sms_trailing_whitespace_counts_toward_length(ctx, gateway):
    result = call(ctx, "send_sms_to_number", {"to": "+15551234567", "message": "x" * 478 + "   "})
    assert result.status is ToolStatus.FAILURE
    assert gateway.sent == []


def test_send_sms_too_long_fails_validation(ctx, events, gateway):
    result = call(ctx, "send_sms_to_number", {"to": "+15551234567", "message": "x" * 481})
    assert result.status is ToolStatus.FAILURE
    assert events.read() == []
    assert gateway.sent == []


def test_send_sms_skipped_when_gateway_not_configured(settings, leads, events):
    gateway = FakeGateway(configured=False)
    ctx = ToolContext(settings=settings, leads=leads, events=events, gateway=gateway)
    result = call(ctx, "send_sms_to_number", {"to": "+15551234567", "message": "hi"})

    assert result.status is ToolStatus.SKIPPED
    assert "skipped" in result.message
    assert gateway.sent == []
    assert len(events.read_events("sms_attempt")) == 1


def test_send_sms_gateway_failure_is_reported_after_attempt(settings, leads, events):
    gateway = FakeGateway(error=GatewayError("Twilio rejected message"))
    ctx = ToolContext(settings=settings, leads=leads, events=events, gateway=gateway)
    result = call(ctx, "send_sms_to_number", {"to": "+15551234567", "message": "hi"})

    assert result.status is ToolStatus.FAILURE
    assert "Twilio rejected message" in result.message
    assert len(events.read_events("sms_attempt")) == 1


# --- escalate_to_oncall ---

def test_escalation_logs_and_texts_oncall(ctx, events, gateway):
    result = call(ctx, "escalate_to_oncall", {
        "callerPhone": "+15551234567",
        "serviceAddress": "12 Elm St",
        "issue": "burst pipe",
    })

    escalations = events.read_events("escalation")
    assert len(escalations) == 1
    assert escalations[0]["reason"] == "emergency"
    assert escalations[0]["issue"] == "burst pipe"
    assert escalations[0]["serviceAddress"] == "12 Elm St"

    assert len(gateway.sent) == 1
    to, body = gateway.sent[0]
    assert to == ONCALL_PHONE
    assert body.splitlines() == [
        "🚨 EMERGENCY LEAD (Test Plumbing)",
        "Reason: emergency",
        "Issue: burst pipe",
        "Address: 12 Elm St",
        "Caller: +15551234567",
    ]
    assert result.status is ToolStatus.SUCCESS
    assert result.message.startswith("Escalation SMS sent")


def test_escalation_body_skips_missing_details(ctx, gateway):
    call(ctx, "escalate_to_oncall", {"reason": "gas smell"})
    _, body = gateway.sent[0]
    assert body.splitlines() == ["🚨 EMERGENCY LEAD (Test Plumbing)", "Reason: gas smell"]


def test_escalation_skipped_without_gateway(settings, leads, events):
    ctx = ToolContext(settings=settings, leads=leads, events=events, gateway=FakeGateway(configured=False))
    result = call(ctx, "escalate_to_oncall", {"issue": "flooding"})
    assert result.status is ToolStatus.SKIPPED
    assert len(events.read_events("escalation")) == 1


# --- log_call_summary ---

def test_log_call_summary(ctx, events):
    result = call(ctx, "log_call_summary", {"summary": "Burst pipe at 12 Elm St, escalated."})
    assert result.status is ToolStatus.SUCCESS
    assert [e["summary"] for e in events.read_events("call_summary")] == ["Burst pipe at 12 Elm St, escalated."]


def test_log_call_summary_length_limit(ctx, events):
    result = call(ctx, "log_call_summary", {"summary": "x" * 2001})
    assert result.status is ToolStatus.FAILURE
    assert events.read() == []


# --- dispatch ---

def test_unknown_tool(ctx):
    result = call(ctx, "transfer_call", {})
    assert result.status is ToolStatus.FAILURE
    assert "Unknown tool" in result.message


def test_arguments_as_json_string(ctx, leads):
    result = call(ctx, "create_lead", json.dumps({"issue": "clog"}))
    assert result.ok
    assert leads.read_leads()[0].issue == "clog"


def test_arguments_empty_string_means_no_arguments(ctx, leads):
    assert call(ctx, "create_lead", "").ok
    assert len(leads.read()) == 1


def test_malformed_json_arguments(ctx, leads):
    result = call(ctx, "create_lead", "{issue: clog")
    assert result.status is ToolStatus.FAILURE
    assert leads.read() == []


def test_result_output_is_machine_readable():
    result = asyncio.run(invoke_tool("nope", {}, None))
    assert json.loads(result.to_output()) == {"status": "failure", "message": "Unknown tool: nope"}


def test_tool_schemas_use_wire_names():
    schemas = {s["name"]: s for s in tool_schemas()}
    assert set(schemas) == set(TOOLS) == {
        "create_lead", "send_sms_to_number", "escalate_to_oncall", "log_call_summary",
    }
    lead_params = schemas["create_lead"]["parameters"]
    assert "serviceAddress" in lead_params["properties"]
    assert lead_params["properties"]["urgency"]["enum"] == ["low", "normal", "emergency"]
    assert lead_params["properties"]["urgency"]["default"] == "normal"
    assert schemas["send_sms_to_number"]["parameters"]["required"] == ["to", "message"]
    assert all(s["type"] == "function" for s in schemas.values())
