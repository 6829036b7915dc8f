"""Proposal persistence shared by the inbound email pipeline and the proposal endpoints."""
import json
import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from rfpdesk.models.rfp import RFP, RFPStatus, RFPVendor, RFPVendorStatus
from rfpdesk.models.vendor import Vendor
from rfpdesk.models.proposal import Proposal, ProposalStatus
from rfpdesk.models.inbound_email import InboundEmail

logger = logging.getLogger(__name__)


def load_json(value: str | None, default: Any = None) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except (TypeError, json.JSONDecodeError):
        return default


def rfp_to_dict(rfp: RFP) -> dict[str, Any]:
    """RFP fields as handed to the LLM and email templates."""
    return {
        "id": rfp.id,
        "title": rfp.title,
        "description": rfp.description,
        "items": load_json(rfp.items, []),
        "budget": rfp.budget,
        "delivery_days": rfp.delivery_days,
        "payment_terms": rfp.payment_terms,
        "warranty_years": rfp.warranty_years,
        "additional_requirements": load_json(rfp.additional_requirements, []),
    }


def _warranty_text(extracted: dict[str, Any]) -> str | None:
    if extracted.get("warranty"):
        return str(extracted["warranty"])[:255]
    years = extracted.get("warranty_years")
    if years is not None:
        return f"{years:g} year" + ("" if years == 1 else "s")
    return None


def apply_extraction(proposal: Proposal, extracted: dict[str, Any], used_fallback: bool) -> None:
    """Store the extraction payload and its ranking columns on the proposal."""
    proposal.extracted_data = json.dumps(extracted)
    proposal.total_price = extracted.get("total_price")
    proposal.delivery_days = extracted.get("delivery_days")
    terms = extracted.get("payment_terms")
    proposal.payment_terms = str(terms)[:255] if terms else None
    proposal.warranty = _warranty_text(extracted)
    proposal.used_fallback_parsing = used_fallback


def apply_score(proposal: Proposal, result: dict[str, Any] | None) -> None:
    if result is None:
        proposal.ai_score = None
        proposal.ai_evaluation = None
        return
    proposal.ai_score = float(result["score"])
    proposal.ai_evaluation = result.get("evaluation") or None


def mark_vendor_responded(db: Session, rfp: RFP, vendor: Vendor) -> None:
    """RFPVendor -> RESPONDED (created if the vendor replied without being sent the RFP); RFP sent -> evaluating."""
    link = db.query(RFPVendor).filter(RFPVendor.rfp_id == rfp.id, RFPVendor.vendor_id == vendor.id).first()
    if link is None:
        link = RFPVendor(rfp_id=rfp.id, vendor_id=vendor.id)
        db.add(link)
    link.status = RFPVendorStatus.RESPONDED
    if rfp.status == RFPStatus.SENT:
        rfp.status = RFPStatus.EVALUATING


def create_proposal(
    db: Session,
    rfp: RFP,
    vendor: Vendor,
    raw_body: str,
    extracted: dict[str, Any],
    used_fallback: bool,
    score: dict[str, Any] | None = None,
) -> Proposal:
    """Add a proposal and update vendor/RFP status. Flushes but does not commit."""
    proposal = Proposal(rfp_id=rfp.id, vendor_id=vendor.id, raw_email_body=raw_body)
    apply_extraction(proposal, extracted, used_fallback)
    apply_score(proposal, score)
    db.add(proposal)
    mark_vendor_responded(db, rfp, vendor)
    db.flush()
    return proposal


def delete_proposal(db: Session, proposal: Proposal) -> None:
    """
    Delete, put the vendor back to SENT, and return the source email to the unprocessed state so it
    can be reprocessed. Deleting the accepted proposal withdraws the award and reopens the RFP. Commits.
    """
    db.query(InboundEmail).filter(InboundEmail.proposal_id == proposal.id).update(
        {
            InboundEmail.proposal_id: None,
            InboundEmail.processed: False,
            InboundEmail.processed_at: None,
            InboundEmail.processing_started_at: None,
        },
        synchronize_session=False,
    )
    db.query(RFPVendor).filter(
        RFPVendor.rfp_id == proposal.rfp_id, RFPVendor.vendor_id == proposal.vendor_id
    ).update({RFPVendor.status: RFPVendorStatus.SENT}, synchronize_session=False)
    rfp = proposal.rfp
    if proposal.status == ProposalStatus.ACCEPTED and rfp.awarded_vendor_id == proposal.vendor_id:
        rfp.awarded_vendor_id = None
        rfp.status = RFPStatus.EVALUATING
        logger.info("Award on RFP %s withdrawn with deleted proposal %s", rfp.id, proposal.id)
    db.delete(proposal)
    db.commit()
    logger.info("Deleted proposal %s (rfp=%s vendor=%s)", proposal.id, proposal.rfp_id, proposal.vendor_id)


def _rank_key(p: Proposal) -> tuple:
    created = p.created_at or datetime.max
    if created.tzinfo is not None:
        created = created.replace(tzinfo=None)
    return (
        p.ai_score is None,
        -(p.ai_score or 0.0),
        p.total_price is None,
        p.total_price or 0.0,
        p.delivery_days is None,
        p.delivery_days or 0,
        created,
    )


def rank_proposals(proposals: list[Proposal]) -> list[Proposal]:
    """AI score desc (unscored last), then total price asc, delivery days asc, oldest first."""
    return sorted(proposals, key=_rank_key)
