import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from rfpdesk.database import get_db
from rfpdesk.models.vendor import Vendor
from rfpdesk.models.proposal import Proposal
from rfpdesk.schemas.vendor import VendorCreate, VendorPatch, VendorResponse
from rfpdesk.services.vendor_checks import verify_email, verify_phone, verify_website

router = APIRouter(prefix="/vendors", tags=["vendors"])
logger = logging.getLogger(__name__)


def _get_vendor_or_404(db: Session, vendor_id: str) -> Vendor:
    vendor = db.query(Vendor).filter(Vendor.id == vendor_id).first()
    if not vendor:
        raise HTTPException(status_code=404, detail="Vendor not found")
    return vendor


def _ensure_email_free(db: Session, email: str, vendor_id: str | None = None) -> None:
    q = db.query(Vendor).filter(func.lower(Vendor.email) == email.lower())
    if vendor_id:
        q = q.filter(Vendor.id != vendor_id)
    if q.first():
        raise HTTPException(status_code=409, detail="A vendor with this email already exists")


@router.post("", response_model=VendorResponse)
async def create_vendor(payload: VendorCreate, db: Session = Depends(get_db)):
    """Register a vendor. Reply emails are matched to vendors by this address."""
    _ensure_email_free(db, payload.email)
    website = (payload.website or "").strip() or None
    phone = (payload.phone or "").strip() or None
    website_verified = await asyncio.to_thread(verify_website, website) if website else None
    vendor = Vendor(
        name=payload.name.strip(),
        email=payload.email,
        contact_name=(payload.contact_name or "").strip() or None,
        phone=phone,
        website=website,
        email_verified=verify_email(payload.email),
        phone_verified=verify_phone(phone),
        website_verified=website_verified,
    )
    db.add(vendor)
    db.commit()
    db.refresh(vendor)
    logger.info("Created vendor %s (%s)", vendor.id, vendor.email)
    return vendor


@router.get("", response_model=list[VendorResponse])
def list_vendors(db: Session = Depends(get_db)):
    return db.query(Vendor).order_by(Vendor.name).all()


@router.get("/{vendor_id}", response_model=VendorResponse)
def get_vendor(vendor_id: str, db: Session = Depends(get_db)):
    return _get_vendor_or_404(db, vendor_id)


@router.patch("/{vendor_id}", response_model=VendorResponse)
async def update_vendor(vendor_id: str, payload: VendorPatch, db: Session = Depends(get_db)):
    vendor = _get_vendor_or_404(db, vendor_id)
    if payload.name is not None:
        vendor.name = payload.name.strip()
    if payload.email is not None:
        _ensure_email_free(db, payload.email, vendor_id)
        vendor.email = payload.email
        vendor.email_verified = verify_email(payload.email)
    if payload.contact_name is not None:
        vendor.contact_name = payload.contact_name.strip() or None
    if payload.phone is not None:
        vendor.phone = payload.phone.strip() or None
        vendor.phone_verified = verify_phone(vendor.phone)
    if payload.website is not None:
        vendor.website = payload.website.strip() or None
        vendor.website_verified = await asyncio.to_thread(verify_website, vendor.website) if vendor.website else None
    db.commit()
    db.refresh(vendor)
    return vendor


@router.delete("/{vendor_id}")
def delete_vendor(vendor_id: str, db: Session = Depends(get_db)):
    """Delete a vendor that has not submitted proposals."""
    vendor = _get_vendor_or_404(db, vendor_id)
    if db.query(Proposal).filter(Proposal.vendor_id == vendor_id).first():
        raise HTTPException(status_code=409, detail="Vendor has proposals and cannot be deleted")
    db.delete(vendor)
    db.commit()
    return {"status": "ok", "vendor_id": vendor_id}
