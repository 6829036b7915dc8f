import uuid

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rfpdesk.models.base import Base


class InboundEmail(Base):
    """Raw vendor reply as received by the webhook. Stored before any extraction runs."""
    __tablename__ = "inbound_emails"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email_id = Column(String(255), nullable=False, unique=True)  # provider's message id
    from_address = Column(String(512), nullable=False)
    subject = Column(Text, nullable=False, default="")
    raw_body = Column(Text, nullable=False)
    rfp_id = Column(String(36), ForeignKey("rfps.id", ondelete="SET NULL"), nullable=True, index=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id", ondelete="SET NULL"), nullable=True)
    proposal_id = Column(String(36), ForeignKey("proposals.id", ondelete="SET NULL"), nullable=True, unique=True)
    processed = Column(Boolean, default=False, nullable=False, index=True)
    processing_error = Column(Text, nullable=True)
    # Set while one delivery runs extraction; a redelivery seeing a fresh claim backs off.
    processing_started_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    rfp = relationship("RFP")
    vendor = relationship("Vendor")
    proposal = relationship("Proposal", back_populates="inbound_email")
