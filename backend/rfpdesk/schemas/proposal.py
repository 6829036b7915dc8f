import json
from datetime import datetime
from typing import Optional, Literal, Any, Dict
from pydantic import BaseModel, field_validator


class ProposalResponse(BaseModel):
    id: str
    rfp_id: str
    vendor_id: str
    status: str
    total_price: Optional[float] = None
    delivery_days: Optional[int] = None
    payment_terms: Optional[str] = None
    warranty: Optional[str] = None
    ai_score: Optional[float] = None
    ai_evaluation: Optional[str] = None
    used_fallback_parsing: bool = False
    extracted_data: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("extracted_data", mode="before")
    @classmethod
    def parse_json_object(cls, v: Any) -> Optional[dict]:
        if v is None or isinstance(v, dict):
            return v
        try:
            out = json.loads(v)
            return out if isinstance(out, dict) else None
        except (TypeError, json.JSONDecodeError):
            return None


class RankedProposalResponse(ProposalResponse):
    rank: int
    vendor_name: str


class VendorRef(BaseModel):
    id: str
    name: str
    email: str

    class Config:
        from_attributes = True


class RFPRef(BaseModel):
    id: str
    title: str
    status: str

    class Config:
        from_attributes = True


class ProposalDetailResponse(ProposalResponse):
    raw_email_body: str
    vendor: VendorRef
    rfp: RFPRef
    inbound_email_id: Optional[str] = None


class ProposalStatusUpdate(BaseModel):
    status: Literal["shortlisted", "accepted", "rejected"]
