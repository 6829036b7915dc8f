from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class InboundEmailResponse(BaseModel):
    id: str
    email_id: str
    from_address: str
    subject: str
    rfp_id: Optional[str] = None
    vendor_id: Optional[str] = None
    proposal_id: Optional[str] = None
    processed: bool
    processing_error: Optional[str] = None
    processing_started_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InboundEmailDetailResponse(InboundEmailResponse):
    raw_body: str
