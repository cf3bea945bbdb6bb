import pytest

from config import Settings
from data.store import EventLog, LeadStore
from llm.tools import ToolContext
from fakes import ONCALL_PHONE, FakeGateway


@pytest.fixture
def settings(tmp_path):
    return Settings(
        oncall_phone=ONCALL_PHONE,
        openai_api_key="sk-test",
        business_name="Test Plumbing",
        data_dir=tmp_path,
        tool_grace_seconds=1.0,
    )


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def leads(settings):
    return LeadStore(settings.leads_file)


@pytest.fixture
def events(settings):
    return EventLog(settings.events_file)


@pytest.fixture
def ctx(settings, leads, events, gateway):
    return ToolContext(settings=settings, leads=leads, events=events, gateway=gateway)
