import uuid

from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from rfpdesk.models.base import Base


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)  # stored lower-case
    contact_name = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    website = Column(String(512), nullable=True)
    email_verified = Column(Boolean, nullable=True)  # True=valid format, False=invalid, None=not checked
    phone_verified = Column(Boolean, nullable=True)
    website_verified = Column(Boolean, nullable=True)  # True=live, False=unreachable, None=not checked
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rfp_links = relationship("RFPVendor", back_populates="vendor", cascade="all, delete-orphan")
    proposals = relationship("Proposal", back_populates="vendor")
