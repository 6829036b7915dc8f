"""Shared fixtures: throwaway SQLite database, API client, seeded RFP/vendor, webhook payloads."""

import json
import os
import tempfile
import uuid
from pathlib import Path

# Configure before rfpdesk is imported: the engine and providers read the environment at import/call time.
_TMP_DIR = Path(tempfile.mkdtemp(prefix="rfpdesk-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR / 'test.db'}"
os.environ["OLLAMA_BASE_URL"] = ""
os.environ["RESEND_API_KEY"] = ""
os.environ["RESEND_WEBHOOK_SECRET"] = ""

import pytest
from fastapi.testclient import TestClient

from rfpdesk.database import engine, SessionLocal
from rfpdesk.models.base import Base
import rfpdesk.models  # noqa: F401
from rfpdesk.models.rfp import RFP, RFPStatus, RFPVendor, RFPVendorStatus
from rfpdesk.models.vendor import Vendor
from rfpdesk.main import app


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def vendor(db):
    v = Vendor(name="Acme Computers", email="sales@acme.example", contact_name="Jane Doe")
    db.add(v)
    db.commit()
    db.refresh(v)
    return v


@pytest.fixture
def other_vendor(db):
    v = Vendor(name="Beta Hardware", email="quotes@beta.example")
    db.add(v)
    db.commit()
    db.refresh(v)
    return v


@pytest.fixture
def sent_rfp(db, vendor, other_vendor):
    """RFP already emailed to both vendors."""
    rfp = RFP(
        title="Office laptops",
        description="20 laptops with 16GB RAM",
        items=json.dumps([{"name": "Laptop", "quantity": 20, "specifications": {"ram": "16GB"}}]),
        budget=50000,
        delivery_days=30,
        payment_terms="Net 30",
        warranty_years=1,
        status=RFPStatus.SENT,
    )
    db.add(rfp)
    db.flush()
    for v in (vendor, other_vendor):
        db.add(RFPVendor(rfp_id=rfp.id, vendor_id=v.id, status=RFPVendorStatus.SENT))
    db.commit()
    db.refresh(rfp)
    return rfp


def make_webhook(rfp_id=None, sender="Jane Doe <sales@acme.example>", text=None, html=None,
                 email_id=None, subject=None, event_type="email.received"):
    """Inbound webhook payload in the provider's email.received shape."""
    if subject is None:
        subject = f"Re: RFP ID: {rfp_id}" if rfp_id else "Our quotation"
    data = {
        "email_id": email_id or str(uuid.uuid4()),
        "from": sender,
        "to": ["procurement@example.com"],
        "subject": subject,
    }
    if text is not None:
        data["text"] = text
    if html is not None:
        data["html"] = html
    return {"type": event_type, "created_at": "2026-01-17T12:00:00Z", "data": data}


QUOTE_TEXT = (
    "Hello,\n\nPlease find our quotation.\n"
    "Total: $42,000\nDelivery: 21 days\nWarranty: 2 years\nPayment terms: Net 45\n\nRegards,\nJane"
)


@pytest.fixture
def ai_ok(monkeypatch):
    """LLM stubs that succeed: fixed extraction and score."""
    from rfpdesk.services import ai_service

    calls = {"extract": 0, "score": 0}

    def fake_extract(body, rfp_data):
        calls["extract"] += 1
        return {
            "items": [{"name": "Laptop", "quantity": 20, "specifications": {}, "unit_price": 2100.0}],
            "total_price": 42000.0,
            "delivery_days": 21,
            "payment_terms": "Net 45",
            "warranty": "2 years",
            "additional_services": ["Installation"],
            "notes": None,
            "confidence": 90.0,
        }

    def fake_score(rfp_data, proposal_data, vendor_name):
        calls["score"] += 1
        return {"score": 82.0, "evaluation": "Competitive price within budget."}

    monkeypatch.setattr(ai_service, "extract_proposal", fake_extract)
    monkeypatch.setattr(ai_service, "score_proposal", fake_score)
    return calls


@pytest.fixture
def ai_down(monkeypatch):
    """LLM stubs that fail like an unreachable provider."""
    from rfpdesk.services import ai_service

    def fail(*args, **kwargs):
        raise ai_service.AIServiceError("LLM request failed: connection refused")

    monkeypatch.setattr(ai_service, "extract_proposal", fail)
    monkeypatch.setattr(ai_service, "score_proposal", fail)
