import asyncio
import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session, joinedload

from rfpdesk.database import get_db
from rfpdesk.models.rfp import RFP, RFPStatus, RFPVendor, RFPVendorStatus
from rfpdesk.models.vendor import Vendor
from rfpdesk.models.proposal import Proposal
from rfpdesk.schemas.rfp import (
    RFPCreate,
    RFPFromPrompt,
    RFPResponse,
    RFPPatch,
    RFPSendRequest,
    RFPSendResponse,
    RFPSendResult,
    RFPVendorResponse,
    ComparativeProposalRow,
    RecommendationResponse,
)
from rfpdesk.schemas.proposal import ProposalResponse, RankedProposalResponse
from rfpdesk.services import ai_service, email_service
from rfpdesk.services.ai_service import AIServiceError
from rfpdesk.services.email_service import EmailDeliveryError
from rfpdesk.services.proposal_store import load_json, rank_proposals, rfp_to_dict

router = APIRouter(prefix="/rfps", tags=["rfps"])
logger = logging.getLogger(__name__)


def _serialize_list(v: list | None) -> str | None:
    if v is None:
        return None
    return json.dumps(v) if v else None


def _get_rfp_or_404(db: Session, rfp_id: str) -> RFP:
    rfp = db.query(RFP).filter(RFP.id == rfp_id).first()
    if not rfp:
        raise HTTPException(status_code=404, detail="RFP not found")
    return rfp


def _ranked_proposals(db: Session, rfp_id: str) -> list[Proposal]:
    proposals = (
        db.query(Proposal)
        .options(joinedload(Proposal.vendor))
        .filter(Proposal.rfp_id == rfp_id)
        .all()
    )
    return rank_proposals(proposals)


@router.post("", response_model=RFPResponse)
def create_rfp(payload: RFPCreate, db: Session = Depends(get_db)):
    """Create an RFP from already-structured fields."""
    rfp = RFP(
        title=payload.title,
        description=payload.description or "",
        items=_serialize_list([i.model_dump() for i in payload.items]),
        budget=payload.budget,
        delivery_days=payload.delivery_days,
        payment_terms=payload.payment_terms,
        warranty_years=payload.warranty_years,
        additional_requirements=_serialize_list(payload.additional_requirements),
        status=RFPStatus.DRAFT,
    )
    db.add(rfp)
    db.commit()
    db.refresh(rfp)
    return rfp


@router.post("/from-prompt", response_model=RFPResponse)
async def create_rfp_from_prompt(payload: RFPFromPrompt, db: Session = Depends(get_db)):
    """Structure a natural-language purchase request with the LLM and save it as a draft RFP."""
    try:
        structured = await asyncio.to_thread(ai_service.structure_rfp, payload.prompt)
    except AIServiceError as e:
        logger.warning("RFP structuring failed: %s", e)
        raise HTTPException(status_code=502, detail=f"Failed to structure RFP from natural language: {e}") from e
    rfp = RFP(
        title=structured["title"],
        description=structured["description"],
        items=_serialize_list(structured["items"]),
        budget=structured["budget"],
        delivery_days=structured["delivery_days"],
        payment_terms=structured["payment_terms"],
        warranty_years=structured["warranty_years"],
        additional_requirements=_serialize_list(structured["additional_requirements"]),
        original_prompt=payload.prompt,
        status=RFPStatus.DRAFT,
    )
    db.add(rfp)
    db.commit()
    db.refresh(rfp)
    logger.info("Created RFP %s from prompt", rfp.id)
    return rfp


@router.get("", response_model=list[RFPResponse])
def list_rfps(db: Session = Depends(get_db)):
    return db.query(RFP).order_by(RFP.created_at.desc()).all()


@router.get("/{rfp_id}", response_model=RFPResponse)
def get_rfp(rfp_id: str, db: Session = Depends(get_db)):
    return _get_rfp_or_404(db, rfp_id)


@router.patch("/{rfp_id}", response_model=RFPResponse)
def update_rfp(rfp_id: str, payload: RFPPatch, db: Session = Depends(get_db)):
    """Update RFP content. Only draft RFPs can be edited; once sent, vendors have quoted against it."""
    rfp = _get_rfp_or_404(db, rfp_id)
    if rfp.status != RFPStatus.DRAFT:
        raise HTTPException(status_code=400, detail="Only draft RFPs can be edited.")
    if payload.title is not None:
        rfp.title = payload.title
    if payload.description is not None:
        rfp.description = payload.description
    if payload.items is not None:
        rfp.items = _serialize_list([i.model_dump() for i in payload.items])
    if payload.budget is not None:
        rfp.budget = payload.budget
    if payload.delivery_days is not None:
        rfp.delivery_days = payload.delivery_days
    if payload.payment_terms is not None:
        rfp.payment_terms = payload.payment_terms
    if payload.warranty_years is not None:
        rfp.warranty_years = payload.warranty_years
    if payload.additional_requirements is not None:
        rfp.additional_requirements = _serialize_list(payload.additional_requirements)
    db.commit()
    db.refresh(rfp)
    return rfp


@router.delete("/{rfp_id}")
def delete_rfp(rfp_id: str, db: Session = Depends(get_db)):
    rfp = _get_rfp_or_404(db, rfp_id)
    if rfp.status != RFPStatus.DRAFT:
        raise HTTPException(status_code=400, detail="Only draft RFPs can be deleted.")
    if rfp.proposals:
        raise HTTPException(status_code=400, detail="RFP has proposals and cannot be deleted.")
    db.delete(rfp)
    db.commit()
    return {"status": "ok", "rfp_id": rfp_id}


@router.post("/{rfp_id}/send", response_model=RFPSendResponse)
async def send_rfp(rfp_id: str, payload: RFPSendRequest, db: Session = Depends(get_db)):
    """Email the RFP to each vendor and mark them SENT. A failed send leaves that vendor PENDING."""
    rfp = _get_rfp_or_404(db, rfp_id)
    if rfp.status == RFPStatus.CLOSED:
        raise HTTPException(status_code=400, detail="RFP is closed.")
    vendor_ids = list(dict.fromkeys(payload.vendor_ids))
    vendors = db.query(Vendor).filter(Vendor.id.in_(vendor_ids)).all()
    found = {v.id: v for v in vendors}
    missing = [vid for vid in vendor_ids if vid not in found]
    if missing:
        raise HTTPException(status_code=404, detail=f"Vendor(s) not found: {', '.join(missing)}")

    rfp_data = rfp_to_dict(rfp)
    results = []
    for vid in vendor_ids:
        vendor = found[vid]
        link = db.query(RFPVendor).filter(RFPVendor.rfp_id == rfp.id, RFPVendor.vendor_id == vendor.id).first()
        if link is None:
            link = RFPVendor(rfp_id=rfp.id, vendor_id=vendor.id, status=RFPVendorStatus.PENDING)
            db.add(link)
        email = await asyncio.to_thread(ai_service.generate_rfp_email, rfp_data, vendor.name)
        try:
            sent = await asyncio.to_thread(email_service.send_email, vendor.email, email["subject"], email["body"])
        except EmailDeliveryError as e:
            logger.warning("send_rfp: rfp=%s vendor=%s failed: %s", rfp.id, vendor.id, e)
            results.append(RFPSendResult(
                vendor_id=vendor.id, vendor_name=vendor.name, email=vendor.email,
                status="failed", subject=email["subject"], error=str(e),
            ))
            continue
        if link.status != RFPVendorStatus.RESPONDED:
            link.status = RFPVendorStatus.SENT
        link.sent_at = datetime.now(timezone.utc)
        link.email_subject = email["subject"][:512]
        link.email_message_id = sent.get("id")
        results.append(RFPSendResult(
            vendor_id=vendor.id, vendor_name=vendor.name, email=vendor.email,
            status=sent["status"], subject=email["subject"],
        ))
    if rfp.status == RFPStatus.DRAFT and any(r.status != "failed" for r in results):
        rfp.status = RFPStatus.SENT
    db.commit()
    db.refresh(rfp)
    logger.info("send_rfp: rfp=%s sent=%s/%s", rfp.id, sum(r.status != "failed" for r in results), len(results))
    return RFPSendResponse(rfp_id=rfp.id, rfp_status=rfp.status, results=results)


@router.get("/{rfp_id}/vendors", response_model=list[RFPVendorResponse])
def list_rfp_vendors(rfp_id: str, db: Session = Depends(get_db)):
    _get_rfp_or_404(db, rfp_id)
    links = (
        db.query(RFPVendor)
        .options(joinedload(RFPVendor.vendor))
        .filter(RFPVendor.rfp_id == rfp_id)
        .order_by(RFPVendor.created_at)
        .all()
    )
    return [
        RFPVendorResponse(
            id=link.id,
            rfp_id=link.rfp_id,
            vendor_id=link.vendor_id,
            vendor_name=link.vendor.name if link.vendor else None,
            vendor_email=link.vendor.email if link.vendor else None,
            status=link.status,
            email_subject=link.email_subject,
            sent_at=link.sent_at,
        )
        for link in links
    ]


@router.get("/{rfp_id}/proposals", response_model=list[RankedProposalResponse])
def list_rfp_proposals(rfp_id: str, db: Session = Depends(get_db)):
    """Proposals for the RFP, best first."""
    _get_rfp_or_404(db, rfp_id)
    return [
        RankedProposalResponse(
            **ProposalResponse.model_validate(p).model_dump(),
            rank=rank,
            vendor_name=p.vendor.name,
        )
        for rank, p in enumerate(_ranked_proposals(db, rfp_id), start=1)
    ]


def _comparative_rows(proposals: list[Proposal]) -> list[ComparativeProposalRow]:
    return [
        ComparativeProposalRow(
            rank=rank,
            proposal_id=p.id,
            vendor_id=p.vendor_id,
            vendor_name=p.vendor.name,
            status=p.status,
            ai_score=p.ai_score,
            total_price=p.total_price,
            delivery_days=p.delivery_days,
            payment_terms=p.payment_terms,
            warranty=p.warranty,
            used_fallback_parsing=p.used_fallback_parsing,
        )
        for rank, p in enumerate(proposals, start=1)
    ]


@router.get("/{rfp_id}/comparative", response_model=list[ComparativeProposalRow])
def get_comparative_analysis(rfp_id: str, db: Session = Depends(get_db)):
    """Ranked comparison matrix: AI score, price, delivery and terms per vendor."""
    _get_rfp_or_404(db, rfp_id)
    return _comparative_rows(_ranked_proposals(db, rfp_id))


@router.post("/{rfp_id}/recommendation", response_model=RecommendationResponse)
async def recommend_vendor(rfp_id: str, db: Session = Depends(get_db)):
    """LLM comparison of all proposals; falls back to the top-ranked proposal."""
    rfp = _get_rfp_or_404(db, rfp_id)
    ranked = _ranked_proposals(db, rfp_id)
    summaries = [
        {
            "vendor_id": p.vendor_id,
            "vendor_name": p.vendor.name,
            "extracted_data": load_json(p.extracted_data, {}),
            "ai_score": p.ai_score,
            "ai_evaluation": p.ai_evaluation,
        }
        for p in ranked
    ]
    result = await asyncio.to_thread(ai_service.compare_proposals, rfp_to_dict(rfp), summaries)
    names = {p.vendor_id: p.vendor.name for p in ranked}
    return RecommendationResponse(
        rfp_id=rfp.id,
        recommended_vendor_id=result.get("recommended_vendor_id"),
        recommended_vendor_name=names.get(result.get("recommended_vendor_id")),
        reasoning=result.get("reasoning") or "",
        comparison_summary=result.get("comparison_summary") or "",
        source=result.get("source") or "ranking",
        proposals=_comparative_rows(ranked),
    )
