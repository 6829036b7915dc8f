import uuid

from sqlalchemy import Column, String, Text, DateTime, Float, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rfpdesk.models.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class RFPStatus:
    DRAFT = "draft"
    SENT = "sent"
    EVALUATING = "evaluating"
    CLOSED = "closed"


class RFPVendorStatus:
    PENDING = "PENDING"
    SENT = "SENT"
    RESPONDED = "RESPONDED"


class RFP(Base):
    __tablename__ = "rfps"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    items = Column(Text, nullable=True)  # JSON array of {name, quantity, specifications}
    budget = Column(Float, nullable=True)
    delivery_days = Column(Integer, nullable=True)
    payment_terms = Column(String(255), nullable=True)
    warranty_years = Column(Float, nullable=True)
    additional_requirements = Column(Text, nullable=True)  # JSON array of strings
    original_prompt = Column(Text, nullable=True)  # natural-language request the RFP was structured from
    status = Column(String(50), default=RFPStatus.DRAFT, nullable=False)
    awarded_vendor_id = Column(String(36), ForeignKey("vendors.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    vendor_links = relationship("RFPVendor", back_populates="rfp", cascade="all, delete-orphan")
    proposals = relationship("Proposal", back_populates="rfp")


class RFPVendor(Base):
    """Per-vendor dispatch state of an RFP."""
    __tablename__ = "rfp_vendors"
    __table_args__ = (UniqueConstraint("rfp_id", "vendor_id", name="uq_rfp_vendor"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    rfp_id = Column(String(36), ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(50), default=RFPVendorStatus.PENDING, nullable=False)  # PENDING | SENT | RESPONDED
    email_subject = Column(String(512), nullable=True)
    email_message_id = Column(String(255), nullable=True)  # provider id of the outbound message
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rfp = relationship("RFP", back_populates="vendor_links")
    vendor = relationship("Vendor", back_populates="rfp_links")
