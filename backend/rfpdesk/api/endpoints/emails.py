import asyncio

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from rfpdesk.database import get_db
from rfpdesk.models.inbound_email import InboundEmail
from rfpdesk.schemas.email import InboundEmailResponse, InboundEmailDetailResponse
from rfpdesk.services.inbound_email import reprocess_inbound_email

router = APIRouter(prefix="/emails", tags=["emails"])


def _get_email_or_404(db: Session, email_pk: str) -> InboundEmail:
    email = db.query(InboundEmail).filter(InboundEmail.id == email_pk).first()
    if not email:
        raise HTTPException(status_code=404, detail="Inbound email not found")
    return email


@router.get("/inbound", response_model=list[InboundEmailResponse])
def list_inbound_emails(processed: bool | None = None, rfp_id: str | None = None, db: Session = Depends(get_db)):
    """Received vendor emails, newest first. Filter with ?processed=false to find ones needing attention."""
    q = db.query(InboundEmail)
    if processed is not None:
        q = q.filter(InboundEmail.processed == processed)
    if rfp_id:
        q = q.filter(InboundEmail.rfp_id == rfp_id)
    return q.order_by(InboundEmail.created_at.desc()).all()


@router.get("/inbound/{email_pk}", response_model=InboundEmailDetailResponse)
def get_inbound_email(email_pk: str, db: Session = Depends(get_db)):
    return _get_email_or_404(db, email_pk)


@router.post("/inbound/{email_pk}/reprocess")
async def reprocess_email(email_pk: str, db: Session = Depends(get_db)):
    """Run the proposal pipeline again for a stored email that was not processed."""
    email = _get_email_or_404(db, email_pk)
    return await asyncio.to_thread(reprocess_inbound_email, db, email)
