import uuid

from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Float, Boolean, Integer
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rfpdesk.models.base import Base


class ProposalStatus:
    RECEIVED = "received"
    SHORTLISTED = "shortlisted"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


FINAL_PROPOSAL_STATUSES = (ProposalStatus.ACCEPTED, ProposalStatus.REJECTED)


class Proposal(Base):
    __tablename__ = "proposals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    rfp_id = Column(String(36), ForeignKey("rfps.id"), nullable=False, index=True)
    vendor_id = Column(String(36), ForeignKey("vendors.id"), nullable=False, index=True)
    raw_email_body = Column(Text, nullable=False)
    extracted_data = Column(Text, nullable=True)  # JSON object from AI or fallback extraction
    total_price = Column(Float, nullable=True)
    delivery_days = Column(Integer, nullable=True)
    payment_terms = Column(String(255), nullable=True)
    warranty = Column(String(255), nullable=True)
    ai_score = Column(Float, nullable=True)
    ai_evaluation = Column(Text, nullable=True)
    used_fallback_parsing = Column(Boolean, default=False, nullable=False)  # regex extraction; needs AI re-parse
    status = Column(String(50), default=ProposalStatus.RECEIVED, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rfp = relationship("RFP", back_populates="proposals")
    vendor = relationship("Vendor", back_populates="proposals")
    inbound_email = relationship("InboundEmail", back_populates="proposal", uselist=False)
