"""RFP endpoints: creation, editing rules, dispatch to vendors, comparison and recommendation."""

import json
import uuid

import pytest

from rfpdesk.models.proposal import Proposal
from rfpdesk.models.rfp import RFP, RFPStatus, RFPVendor, RFPVendorStatus
from rfpdesk.services import ai_service, email_service
from rfpdesk.services.ai_service import AIServiceError
from rfpdesk.services.email_service import EmailDeliveryError

RFP_BODY = {
    "title": "Office laptops",
    "description": "Laptops for the new office",
    "items": [{"name": "Laptop", "quantity": 20, "specifications": {"ram": "16GB"}}],
    "budget": 50000,
    "delivery_days": 30,
    "payment_terms": "Net 30",
    "warranty_years": 1,
    "additional_requirements": ["On-site install"],
}


def _add_proposal(db, rfp, vendor, score, price, days):
    p = Proposal(
        rfp_id=rfp.id,
        vendor_id=vendor.id,
        raw_email_body="quote",
        extracted_data=json.dumps({"total_price": price, "delivery_days": days}),
        total_price=price,
        delivery_days=days,
        ai_score=score,
    )
    db.add(p)
    db.commit()
    return p


class TestCreateAndEdit:

    def test_create_and_get(self, client):
        r = client.post("/rfps", json=RFP_BODY)
        assert r.status_code == 200
        rfp = r.json()
        assert rfp["status"] == "draft"
        assert rfp["items"] == RFP_BODY["items"]
        assert rfp["additional_requirements"] == ["On-site install"]
        assert len(rfp["id"]) == 36

        fetched = client.get(f"/rfps/{rfp['id']}").json()
        assert fetched["title"] == "Office laptops"
        assert [x["id"] for x in client.get("/rfps").json()] == [rfp["id"]]

    def test_unknown_rfp(self, client):
        assert client.get(f"/rfps/{uuid.uuid4()}").status_code == 404

    def test_from_prompt(self, client, monkeypatch):
        seen = []

        def fake_structure(prompt):
            seen.append(prompt)
            return {
                "title": "Conference chairs",
                "description": "Chairs for the conference room",
                "items": [{"name": "Chair", "quantity": 12, "specifications": {}}],
                "budget": 3000.0,
                "delivery_days": 14,
                "payment_terms": None,
                "warranty_years": None,
                "additional_requirements": [],
            }

        monkeypatch.setattr(ai_service, "structure_rfp", fake_structure)
        r = client.post("/rfps/from-prompt", json={"prompt": "  12 chairs within 2 weeks, budget 3000 "})
        assert r.status_code == 200
        rfp = r.json()
        assert seen == ["12 chairs within 2 weeks, budget 3000"]
        assert rfp["title"] == "Conference chairs"
        assert rfp["original_prompt"] == "12 chairs within 2 weeks, budget 3000"
        assert rfp["items"][0]["quantity"] == 12
        assert rfp["status"] == "draft"

    def test_from_prompt_ai_failure_is_502(self, client, db, monkeypatch):
        def fail(prompt):
            raise AIServiceError("LLM request failed: timed out")

        monkeypatch.setattr(ai_service, "structure_rfp", fail)
        r = client.post("/rfps/from-prompt", json={"prompt": "12 chairs"})
        assert r.status_code == 502
        assert "timed out" in r.json()["detail"]
        assert db.query(RFP).count() == 0

    def test_from_prompt_blank_is_422(self, client):
        assert client.post("/rfps/from-prompt", json={"prompt": "   "}).status_code == 422

    def test_patch_draft(self, client):
        rfp_id = client.post("/rfps", json=RFP_BODY).json()["id"]
        r = client.patch(f"/rfps/{rfp_id}", json={"budget": 45000, "items": [{"name": "Monitor", "quantity": 5}]})
        assert r.status_code == 200
        assert r.json()["budget"] == 45000
        assert r.json()["items"] == [{"name": "Monitor", "quantity": 5, "specifications": {}}]
        assert r.json()["title"] == "Office laptops"

    def test_sent_rfp_is_locked(self, client, sent_rfp):
        assert client.patch(f"/rfps/{sent_rfp.id}", json={"title": "New"}).status_code == 400
        assert client.delete(f"/rfps/{sent_rfp.id}").status_code == 400

    def test_delete_draft(self, client, db):
        rfp_id = client.post("/rfps", json=RFP_BODY).json()["id"]
        assert client.delete(f"/rfps/{rfp_id}").json() == {"status": "ok", "rfp_id": rfp_id}
        assert db.query(RFP).count() == 0


class TestSend:

    def test_send_in_log_mode(self, client, db, vendor, other_vendor):
        rfp_id = client.post("/rfps", json=RFP_BODY).json()["id"]
        r = client.post(f"/rfps/{rfp_id}/send", json={"vendor_ids": [vendor.id, other_vendor.id]})
        assert r.status_code == 200
        body = r.json()
        assert body["rfp_status"] == "sent"
        assert [res["status"] for res in body["results"]] == ["logged", "logged"]
        assert all(rfp_id in res["subject"] for res in body["results"])

        links = client.get(f"/rfps/{rfp_id}/vendors").json()
        assert {link["vendor_email"] for link in links} == {"sales@acme.example", "quotes@beta.example"}
        assert all(link["status"] == RFPVendorStatus.SENT for link in links)
        assert all(link["sent_at"] for link in links)

    def test_email_body_carries_rfp_id(self, client, vendor, monkeypatch):
        sent = []

        def fake_send(to, subject, body):
            sent.append((to, subject, body))
            return {"status": "sent", "id": "msg_1"}

        monkeypatch.setattr(email_service, "send_email", fake_send)
        rfp_id = client.post("/rfps", json=RFP_BODY).json()["id"]
        client.post(f"/rfps/{rfp_id}/send", json={"vendor_ids": [vendor.id]})
        to, subject, body = sent[0]
        assert to == "sales@acme.example"
        assert f"RFP ID: {rfp_id}" in body
        assert rfp_id in subject

    def test_failed_send_leaves_vendor_pending(self, client, db, vendor, other_vendor, monkeypatch):
        def fake_send(to, subject, body):
            if to == "quotes@beta.example":
                raise EmailDeliveryError("Provider returned HTTP 422")
            return {"status": "sent", "id": "msg_ok"}

        monkeypatch.setattr(email_service, "send_email", fake_send)
        rfp_id = client.post("/rfps", json=RFP_BODY).json()["id"]
        body = client.post(f"/rfps/{rfp_id}/send", json={"vendor_ids": [vendor.id, other_vendor.id]}).json()
        by_vendor = {res["vendor_id"]: res for res in body["results"]}
        assert by_vendor[vendor.id]["status"] == "sent"
        assert by_vendor[other_vendor.id]["status"] == "failed"
        assert "422" in by_vendor[other_vendor.id]["error"]
        assert body["rfp_status"] == "sent"

        db.expire_all()
        links = {link.vendor_id: link for link in db.query(RFPVendor).all()}
        assert links[vendor.id].status == RFPVendorStatus.SENT
        assert links[vendor.id].email_message_id == "msg_ok"
        assert links[other_vendor.id].status == RFPVendorStatus.PENDING

    def test_all_sends_failing_keeps_draft(self, client, vendor, monkeypatch):
        def fake_send(to, subject, body):
            raise EmailDeliveryError("down")

        monkeypatch.setattr(email_service, "send_email", fake_send)
        rfp_id = client.post("/rfps", json=RFP_BODY).json()["id"]
        body = client.post(f"/rfps/{rfp_id}/send", json={"vendor_ids": [vendor.id]}).json()
        assert body["rfp_status"] == "draft"

    def test_unknown_vendor_404(self, client, vendor):
        rfp_id = client.post("/rfps", json=RFP_BODY).json()["id"]
        missing = str(uuid.uuid4())
        r = client.post(f"/rfps/{rfp_id}/send", json={"vendor_ids": [vendor.id, missing]})
        assert r.status_code == 404
        assert missing in r.json()["detail"]

    def test_empty_vendor_list_422(self, client):
        rfp_id = client.post("/rfps", json=RFP_BODY).json()["id"]
        assert client.post(f"/rfps/{rfp_id}/send", json={"vendor_ids": []}).status_code == 422

    def test_resend_keeps_responded(self, client, db, sent_rfp, vendor):
        link = db.query(RFPVendor).filter(RFPVendor.vendor_id == vendor.id).one()
        link.status = RFPVendorStatus.RESPONDED
        db.commit()
        client.post(f"/rfps/{sent_rfp.id}/send", json={"vendor_ids": [vendor.id]})
        db.expire_all()
        assert db.query(RFPVendor).filter(RFPVendor.vendor_id == vendor.id).one().status == RFPVendorStatus.RESPONDED

    def test_closed_rfp_cannot_be_sent(self, client, db, sent_rfp, vendor):
        sent_rfp.status = RFPStatus.CLOSED
        db.commit()
        r = client.post(f"/rfps/{sent_rfp.id}/send", json={"vendor_ids": [vendor.id]})
        assert r.status_code == 400


class TestComparison:

    @pytest.fixture
    def two_proposals(self, db, sent_rfp, vendor, other_vendor):
        low = _add_proposal(db, sent_rfp, vendor, score=71.0, price=39000.0, days=20)
        high = _add_proposal(db, sent_rfp, other_vendor, score=88.5, price=44000.0, days=25)
        return low, high

    def test_proposals_ranked_by_score(self, client, sent_rfp, two_proposals):
        low, high = two_proposals
        rows = client.get(f"/rfps/{sent_rfp.id}/proposals").json()
        assert [(r["id"], r["rank"]) for r in rows] == [(high.id, 1), (low.id, 2)]
        assert rows[0]["vendor_name"] == "Beta Hardware"
        assert rows[0]["extracted_data"] == {"total_price": 44000.0, "delivery_days": 25}

    def test_comparative_matrix(self, client, sent_rfp, two_proposals):
        rows = client.get(f"/rfps/{sent_rfp.id}/comparative").json()
        assert [r["vendor_name"] for r in rows] == ["Beta Hardware", "Acme Computers"]
        assert rows[1] == {
            "rank": 2,
            "proposal_id": two_proposals[0].id,
            "vendor_id": two_proposals[0].vendor_id,
            "vendor_name": "Acme Computers",
            "status": "received",
            "ai_score": 71.0,
            "total_price": 39000.0,
            "delivery_days": 20,
            "payment_terms": None,
            "warranty": None,
            "used_fallback_parsing": False,
        }

    def test_recommendation_falls_back_to_ranking(self, client, sent_rfp, other_vendor, two_proposals):
        body = client.post(f"/rfps/{sent_rfp.id}/recommendation").json()
        assert body["source"] == "ranking"
        assert body["recommended_vendor_id"] == other_vendor.id
        assert body["recommended_vendor_name"] == "Beta Hardware"
        assert len(body["proposals"]) == 2

    def test_recommendation_from_llm(self, client, sent_rfp, vendor, two_proposals, monkeypatch):
        seen = {}

        def fake_compare(rfp_data, proposals):
            seen["vendors"] = [p["vendor_name"] for p in proposals]
            return {
                "recommended_vendor_id": vendor.id,
                "reasoning": "Lowest price, fastest delivery.",
                "comparison_summary": "Acme is cheaper; Beta scored higher.",
                "source": "ollama",
            }

        monkeypatch.setattr(ai_service, "compare_proposals", fake_compare)
        body = client.post(f"/rfps/{sent_rfp.id}/recommendation").json()
        assert seen["vendors"] == ["Beta Hardware", "Acme Computers"]
        assert body["source"] == "ollama"
        assert body["recommended_vendor_name"] == "Acme Computers"

    def test_recommendation_without_proposals(self, client, sent_rfp):
        body = client.post(f"/rfps/{sent_rfp.id}/recommendation").json()
        assert body["recommended_vendor_id"] is None
        assert body["proposals"] == []

    def test_rfp_with_proposals_cannot_be_deleted(self, client, db, sent_rfp, two_proposals):
        sent_rfp.status = RFPStatus.DRAFT
        db.commit()
        assert client.delete(f"/rfps/{sent_rfp.id}").status_code == 400
