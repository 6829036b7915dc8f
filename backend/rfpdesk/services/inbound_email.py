"""
Vendor reply pipeline: webhook payload -> RFP/vendor resolution -> stored raw email -> proposal.

Ordering matters for at-least-once delivery: the raw email is committed before any LLM call, and the
proposal, vendor/RFP status and the email's processed flag are committed together. A redelivered
email_id that is already processed is acknowledged without creating anything.
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rfpdesk.models.rfp import RFP
from rfpdesk.models.vendor import Vendor
from rfpdesk.models.inbound_email import InboundEmail
from rfpdesk.services import ai_service, email_service, fallback_parser
from rfpdesk.services.proposal_store import create_proposal, rfp_to_dict
from rfpdesk.services.vendor_checks import normalize_email

logger = logging.getLogger(__name__)

RECEIVED_EVENT = "email.received"
# A claim older than this is treated as abandoned (worker died mid-extraction) and can be retaken.
CLAIM_TTL = timedelta(minutes=10)

_UUID = r"([a-f0-9]{8}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{4}-[a-f0-9]{12})"
RFP_ID_PATTERNS = [
    re.compile(rf"RFP\s*ID\s*[:\s-]+{_UUID}", re.IGNORECASE),
    re.compile(rf"RFP[:\s-]+{_UUID}", re.IGNORECASE),
    re.compile(_UUID, re.IGNORECASE),
]


def extract_rfp_id(subject: str | None, body: str | None) -> str | None:
    """RFP id quoted in the subject or body: "RFP ID: <uuid>", then "RFP-<uuid>", then any UUID."""
    text = f"{subject or ''} {body or ''}"
    for pattern in RFP_ID_PATTERNS:
        m = pattern.search(text)
        if m:
            return m.group(1).lower()
    return None


def _sender(data: dict[str, Any]) -> str:
    sender = data.get("from")
    if isinstance(sender, dict):
        name, addr = sender.get("name"), sender.get("email") or sender.get("address")
        return f"{name} <{addr}>" if name and addr else (addr or "")
    if isinstance(sender, list):
        return str(sender[0]) if sender else ""
    return str(sender or "").strip()


def resolve_email_content(data: dict[str, Any]) -> tuple[str, str]:
    """
    (body, subject) for a received email. Prefers text, then HTML converted to text; when the
    webhook carries neither, the message is fetched from the provider's receiving API.
    """
    subject = str(data.get("subject") or "")
    text, markup = data.get("text"), data.get("html")
    if not (text or markup):
        logger.info("Email content not in webhook, fetching email_id=%s from receiving API", data.get("email_id"))
        fetched = email_service.fetch_received_email(data.get("email_id") or "")
        if fetched:
            text, markup = fetched.get("text"), fetched.get("html")
            subject = subject or str(fetched.get("subject") or "")
    if text and str(text).strip():
        return str(text).strip(), subject
    if markup and str(markup).strip():
        return fallback_parser.html_to_text(str(markup)), subject
    return "", subject


def find_vendor_by_email(db: Session, address: str) -> Vendor | None:
    addr = normalize_email(address)
    if not addr:
        return None
    return db.query(Vendor).filter(func.lower(Vendor.email) == addr).first()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _duplicate_response(email: InboundEmail) -> dict[str, Any]:
    return {
        "success": True,
        "duplicate": True,
        "message": "Email already processed",
        "data": {"proposal_id": email.proposal_id, "stored_email_id": email.id},
    }


def _in_progress_response(email: InboundEmail) -> dict[str, Any]:
    return {
        "success": True,
        "duplicate": True,
        "message": "Email is already being processed",
        "data": {"proposal_id": None, "stored_email_id": email.id},
    }


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; they are written as UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def _claim_is_fresh(email: InboundEmail) -> bool:
    started = email.processing_started_at
    return started is not None and _as_utc(started) > _now() - CLAIM_TTL


def _claim(db: Session, email: InboundEmail) -> bool:
    """
    Mark the email as being processed by this delivery. Conditional UPDATE, so of two concurrent
    deliveries exactly one gets rowcount 1; the other must not extract or create a proposal.
    """
    now = _now()
    claimed = (
        db.query(InboundEmail)
        .filter(
            InboundEmail.id == email.id,
            InboundEmail.processed.is_(False),
            or_(
                InboundEmail.processing_started_at.is_(None),
                InboundEmail.processing_started_at < now - CLAIM_TTL,
            ),
        )
        .update({InboundEmail.processing_started_at: now}, synchronize_session=False)
    )
    db.commit()
    return claimed == 1


def handle_inbound_webhook(db: Session, payload: dict[str, Any]) -> dict[str, Any]:
    """Process one webhook delivery. Returns the JSON body for a 200 response."""
    event_type = payload.get("type")
    if event_type != RECEIVED_EVENT:
        logger.info("Ignoring webhook type: %s", event_type)
        return {"success": True, "message": "Ignored non-received event"}

    data = payload.get("data") or {}
    email_id = str(data.get("email_id") or "").strip()
    if not email_id:
        return {"success": False, "error": "Missing email_id in webhook payload"}
    logger.info("Inbound email: email_id=%s from=%s subject=%s", email_id, data.get("from"), data.get("subject"))

    stored = db.query(InboundEmail).filter(InboundEmail.email_id == email_id).first()
    if stored is not None and stored.processed:
        logger.info("Inbound email %s already processed (proposal=%s)", email_id, stored.proposal_id)
        return _duplicate_response(stored)
    if stored is not None and _claim_is_fresh(stored):
        logger.info("Inbound email %s is being processed by another delivery", email_id)
        return _in_progress_response(stored)

    body, subject = resolve_email_content(data)
    sender = _sender(data)
    if not body:
        logger.warning("No email body available for email_id=%s", email_id)
        return {
            "success": False,
            "error": "Email body not available. The email may not have been fully processed yet.",
            "received_data": {"from": sender, "subject": subject, "email_id": email_id},
        }
    if not sender:
        return {"success": False, "error": "Missing required email fields (from or body)"}

    rfp_id = extract_rfp_id(subject, body)
    rfp = db.query(RFP).filter(RFP.id == rfp_id).first() if rfp_id else None
    vendor = find_vendor_by_email(db, sender)

    if stored is None:
        stored = InboundEmail(email_id=email_id)
        db.add(stored)
    stored.from_address = sender
    stored.subject = subject
    stored.raw_body = body
    stored.rfp_id = rfp.id if rfp else None
    stored.vendor_id = vendor.id if vendor else None

    unresolved = None
    if not rfp_id:
        unresolved = {
            "message": "Email received but no RFP ID found",
            "hint": "Please ensure the RFP ID is included in the email subject or body",
        }
    elif rfp is None:
        unresolved = {"message": "Email received but RFP not found"}
    elif vendor is None:
        unresolved = {
            "message": "Email received but no matching vendor found",
            "hint": "Please ensure the vendor is registered in the system",
        }
    if unresolved:
        stored.processing_error = unresolved["message"]

    # Raw email is stored before any extraction so nothing is lost if the LLM or the parser fails.
    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same email_id won the insert.
        db.rollback()
        logger.info("Inbound email %s stored concurrently by another delivery", email_id)
        return {"success": True, "duplicate": True, "message": "Email already received"}
    db.refresh(stored)
    logger.info("Stored inbound email %s (id=%s)", email_id, stored.id)

    if unresolved:
        logger.warning("%s: email_id=%s rfp_id=%s sender=%s", unresolved["message"], email_id, rfp_id, sender)
        return {"success": True, **unresolved, "stored_email_id": stored.id}
    return process_stored_email(db, stored, rfp, vendor)


def _record_failure(db: Session, email: InboundEmail, error: str) -> None:
    email.processed = False
    email.processing_error = error
    email.processing_started_at = None
    db.commit()


def _mark_processed(email: InboundEmail, proposal_id: str, error: str | None) -> None:
    email.processed = True
    email.processed_at = _now()
    email.proposal_id = proposal_id
    email.processing_error = error
    email.processing_started_at = None


def process_stored_email(db: Session, email: InboundEmail, rfp: RFP, vendor: Vendor) -> dict[str, Any]:
    """AI extraction (+ scoring), regex fallback, and the single commit that links email and proposal."""
    if not _claim(db, email):
        db.refresh(email)
        if email.processed:
            return _duplicate_response(email)
        logger.info("Inbound email %s already claimed by another delivery", email.email_id)
        return _in_progress_response(email)

    rfp_data = rfp_to_dict(rfp)
    body = email.raw_body
    logger.info("Processing proposal with AI: rfp=%s vendor=%s len=%s", rfp.id, vendor.id, len(body))
    try:
        extracted = ai_service.extract_proposal(body, rfp_data)
    except Exception as ai_error:
        # Whatever the model returned or raised, the regex tier still gets its turn.
        logger.warning("AI extraction failed for email %s, using fallback parser: %s", email.id, ai_error, exc_info=True)
        return _process_with_fallback(db, email, rfp, vendor, ai_error)

    score = None
    try:
        score = ai_service.score_proposal(rfp_data, extracted, vendor.name)
    except Exception as e:
        logger.warning("Scoring failed for email %s, storing proposal unscored: %s", email.id, e)

    try:
        proposal = create_proposal(db, rfp, vendor, body, extracted, used_fallback=False, score=score)
        _mark_processed(email, proposal.id, None)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to store proposal for email %s: %s", email.id, e, exc_info=True)
        _record_failure(db, email, f"Failed to store proposal: {e}")
        return {"success": False, "error": "Failed to store proposal", "stored_email_id": email.id}

    logger.info("Created proposal %s (score=%s total_price=%s)", proposal.id, proposal.ai_score, proposal.total_price)
    return {
        "success": True,
        "message": "Proposal processed successfully",
        "data": {
            "proposal_id": proposal.id,
            "vendor_name": vendor.name,
            "rfp_title": rfp.title,
            "ai_score": proposal.ai_score,
            "extracted_data": extracted,
        },
    }


def _process_with_fallback(
    db: Session, email: InboundEmail, rfp: RFP, vendor: Vendor, ai_error: Exception
) -> dict[str, Any]:
    try:
        extracted = fallback_parser.parse_proposal(email.raw_body)
    except ValueError as fallback_error:
        logger.error("Fallback parser also failed for email %s: %s", email.id, fallback_error)
        _record_failure(
            db, email, f"Both AI and fallback parsing failed. AI: {ai_error}, Fallback: {fallback_error}"
        )
        return {
            "success": False,
            "error": f"Failed to process vendor proposal: {ai_error}",
            "hint": "Email has been stored and can be re-processed later when AI is available",
            "stored_email_id": email.id,
        }

    try:
        proposal = create_proposal(db, rfp, vendor, email.raw_body, extracted, used_fallback=True)
        _mark_processed(
            email, proposal.id, f"AI extraction failed; used fallback parsing. Original error: {ai_error}"
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to store fallback proposal for email %s: %s", email.id, e, exc_info=True)
        _record_failure(db, email, f"Failed to store proposal: {e}")
        return {"success": False, "error": "Failed to store proposal", "stored_email_id": email.id}

    logger.info("Created proposal %s with fallback parser; needs AI re-parsing", proposal.id)
    return {
        "success": True,
        "message": "Proposal created with fallback parsing (AI unavailable)",
        "warning": "Proposal created but needs AI re-parsing for full analysis",
        "data": {
            "proposal_id": proposal.id,
            "vendor_name": vendor.name,
            "rfp_title": rfp.title,
            "used_fallback_parsing": True,
            "extracted_data": extracted,
        },
    }


def reprocess_inbound_email(db: Session, email: InboundEmail) -> dict[str, Any]:
    """Rerun a stored, unprocessed email; RFP and vendor are re-resolved if they were not known before."""
    if email.processed:
        return _duplicate_response(email)
    rfp = email.rfp
    if rfp is None:
        rfp_id = extract_rfp_id(email.subject, email.raw_body)
        rfp = db.query(RFP).filter(RFP.id == rfp_id).first() if rfp_id else None
    vendor = email.vendor or find_vendor_by_email(db, email.from_address)
    if rfp is None or vendor is None:
        error = "RFP not found for email" if rfp is None else "No matching vendor found"
        email.processing_error = error
        db.commit()
        return {"success": False, "error": error, "stored_email_id": email.id}
    email.rfp_id = rfp.id
    email.vendor_id = vendor.id
    db.commit()
    return process_stored_email(db, email, rfp, vendor)
