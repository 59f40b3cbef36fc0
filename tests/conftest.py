import pytest
from unittest.mock import AsyncMock

from hotline.classification import Classifier
from hotline.session import CallSession
from hotline.session_store import SessionStore
from hotline.state_machine import StageMachine


@pytest.fixture
def session():
    return CallSession(call_id="CA_test_123", caller="+41445551234")


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def llm():
    """Remote classifier stub; tests check complete_json.await_count."""
    client = AsyncMock()
    client.configured = True
    client.complete_json.return_value = {
        "urgency": "urgent",
        "confidence": 0.8,
        "issue_type": "system_down",
        "response": "That sounds serious.",
    }
    return client


@pytest.fixture
def classifier(llm):
    return Classifier(llm=llm, timeout=0.5)


@pytest.fixture
def machine(classifier):
    return StageMachine(classifier)
