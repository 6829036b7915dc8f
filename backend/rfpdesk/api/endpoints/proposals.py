import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, joinedload

from rfpdesk.database import get_db
from rfpdesk.models.rfp import RFPStatus
from rfpdesk.models.proposal import Proposal, ProposalStatus, FINAL_PROPOSAL_STATUSES
from rfpdesk.schemas.proposal import (
    ProposalResponse,
    ProposalDetailResponse,
    ProposalStatusUpdate,
    VendorRef,
    RFPRef,
)
from rfpdesk.services import ai_service
from rfpdesk.services.ai_service import AIServiceError
from rfpdesk.services.proposal_store import (
    apply_extraction,
    apply_score,
    delete_proposal as store_delete_proposal,
    load_json,
    rfp_to_dict,
)

router = APIRouter(prefix="/proposals", tags=["proposals"])
logger = logging.getLogger(__name__)


def _get_proposal_or_404(db: Session, proposal_id: str) -> Proposal:
    proposal = (
        db.query(Proposal)
        .options(joinedload(Proposal.rfp), joinedload(Proposal.vendor), joinedload(Proposal.inbound_email))
        .filter(Proposal.id == proposal_id)
        .first()
    )
    if not proposal:
        raise HTTPException(status_code=404, detail="Proposal not found")
    return proposal


def _ensure_proposal_editable(proposal: Proposal) -> None:
    """Raise 400 if the proposal is final or its RFP is closed."""
    if proposal.status in FINAL_PROPOSAL_STATUSES:
        raise HTTPException(status_code=400, detail="Proposal is already in a final state (accepted/rejected).")
    if proposal.rfp.status == RFPStatus.CLOSED:
        raise HTTPException(status_code=400, detail="RFP is closed; proposals can no longer change.")


@router.get("/{proposal_id}", response_model=ProposalDetailResponse)
def get_proposal(proposal_id: str, db: Session = Depends(get_db)):
    """Single proposal with its vendor, RFP, raw email body and source email id."""
    proposal = _get_proposal_or_404(db, proposal_id)
    return ProposalDetailResponse(
        **ProposalResponse.model_validate(proposal).model_dump(),
        raw_email_body=proposal.raw_email_body,
        vendor=VendorRef.model_validate(proposal.vendor),
        rfp=RFPRef.model_validate(proposal.rfp),
        inbound_email_id=proposal.inbound_email.id if proposal.inbound_email else None,
    )


@router.patch("/{proposal_id}/status", response_model=ProposalResponse)
def update_proposal_status(proposal_id: str, payload: ProposalStatusUpdate, db: Session = Depends(get_db)):
    """Shortlist, accept or reject. Accepting awards the RFP to the vendor and closes it."""
    proposal = _get_proposal_or_404(db, proposal_id)
    _ensure_proposal_editable(proposal)
    proposal.status = payload.status
    if payload.status == ProposalStatus.ACCEPTED:
        rfp = proposal.rfp
        rfp.awarded_vendor_id = proposal.vendor_id
        rfp.status = RFPStatus.CLOSED
        logger.info("RFP %s awarded to vendor %s via proposal %s", rfp.id, proposal.vendor_id, proposal.id)
    db.commit()
    db.refresh(proposal)
    return proposal


@router.post("/{proposal_id}/reparse", response_model=ProposalResponse)
async def reparse_proposal(proposal_id: str, db: Session = Depends(get_db)):
    """Rerun AI extraction on the stored email body (for fallback-parsed proposals) and rescore."""
    proposal = _get_proposal_or_404(db, proposal_id)
    _ensure_proposal_editable(proposal)
    rfp_data = rfp_to_dict(proposal.rfp)
    try:
        extracted = await asyncio.to_thread(ai_service.extract_proposal, proposal.raw_email_body, rfp_data)
    except AIServiceError as e:
        logger.warning("reparse: proposal=%s AI extraction failed: %s", proposal_id, e)
        raise HTTPException(status_code=502, detail=f"AI extraction failed: {e}") from e
    score = None
    try:
        score = await asyncio.to_thread(ai_service.score_proposal, rfp_data, extracted, proposal.vendor.name)
    except AIServiceError as e:
        logger.warning("reparse: proposal=%s scoring failed: %s", proposal_id, e)
    apply_extraction(proposal, extracted, used_fallback=False)
    apply_score(proposal, score)
    if proposal.inbound_email is not None:
        proposal.inbound_email.processing_error = None
    db.commit()
    db.refresh(proposal)
    logger.info("reparse: proposal=%s done score=%s", proposal_id, proposal.ai_score)
    return proposal


@router.post("/{proposal_id}/score", response_model=ProposalResponse)
async def score_proposal(proposal_id: str, db: Session = Depends(get_db)):
    """Rescore the proposal's current extraction with the LLM."""
    proposal = _get_proposal_or_404(db, proposal_id)
    _ensure_proposal_editable(proposal)
    try:
        result = await asyncio.to_thread(
            ai_service.score_proposal,
            rfp_to_dict(proposal.rfp),
            load_json(proposal.extracted_data, {}),
            proposal.vendor.name,
        )
    except AIServiceError as e:
        raise HTTPException(status_code=502, detail=f"AI scoring failed: {e}") from e
    apply_score(proposal, result)
    db.commit()
    db.refresh(proposal)
    return proposal


@router.delete("/{proposal_id}")
def delete_proposal(proposal_id: str, db: Session = Depends(get_db)):
    """Delete the proposal; the vendor goes back to SENT and the source email is kept."""
    proposal = _get_proposal_or_404(db, proposal_id)
    store_delete_proposal(db, proposal)
    return {"status": "ok", "message": "Proposal deleted successfully", "proposal_id": proposal_id}
