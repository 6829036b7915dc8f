import json
from datetime import datetime
from typing import Optional, List, Any, Dict
from pydantic import BaseModel, Field, field_validator


def _parse_json_list(v: Any) -> Optional[list]:
    if v is None:
        return None
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        try:
            out = json.loads(v)
            return out if isinstance(out, list) else None
        except (TypeError, json.JSONDecodeError):
            return None
    return None


class RFPItem(BaseModel):
    name: str
    quantity: Optional[int] = None
    specifications: Dict[str, Any] = {}


class RFPBase(BaseModel):
    title: str
    description: str = ""
    items: List[RFPItem] = []
    budget: Optional[float] = None
    delivery_days: Optional[int] = None
    payment_terms: Optional[str] = None
    warranty_years: Optional[float] = None
    additional_requirements: List[str] = []


class RFPCreate(RFPBase):
    pass


class RFPFromPrompt(BaseModel):
    prompt: str = Field(..., min_length=1)

    @field_validator("prompt")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("prompt must not be blank")
        return v.strip()


class RFPPatch(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    items: Optional[List[RFPItem]] = None
    budget: Optional[float] = None
    delivery_days: Optional[int] = None
    payment_terms: Optional[str] = None
    warranty_years: Optional[float] = None
    additional_requirements: Optional[List[str]] = None


class RFPResponse(RFPBase):
    id: str
    status: str
    original_prompt: Optional[str] = None
    awarded_vendor_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("items", "additional_requirements", mode="before")
    @classmethod
    def parse_json_list(cls, v: Any) -> list:
        return _parse_json_list(v) or []


class RFPSendRequest(BaseModel):
    vendor_ids: List[str] = Field(..., min_length=1)


class RFPSendResult(BaseModel):
    """Outcome of sending the RFP to one vendor."""
    vendor_id: str
    vendor_name: str
    email: str
    status: str  # "sent" | "logged" | "failed"
    subject: Optional[str] = None
    error: Optional[str] = None


class RFPSendResponse(BaseModel):
    rfp_id: str
    rfp_status: str
    results: List[RFPSendResult]


class RFPVendorResponse(BaseModel):
    id: str
    rfp_id: str
    vendor_id: str
    vendor_name: Optional[str] = None
    vendor_email: Optional[str] = None
    status: str
    email_subject: Optional[str] = None
    sent_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ComparativeProposalRow(BaseModel):
    """One row of the ranked comparison: vendor, scores, headline terms."""
    rank: int
    proposal_id: str
    vendor_id: str
    vendor_name: str
    status: str
    ai_score: Optional[float] = None
    total_price: Optional[float] = None
    delivery_days: Optional[int] = None
    payment_terms: Optional[str] = None
    warranty: Optional[str] = None
    used_fallback_parsing: bool = False


class RecommendationResponse(BaseModel):
    rfp_id: str
    recommended_vendor_id: Optional[str] = None
    recommended_vendor_name: Optional[str] = None
    reasoning: str = ""
    comparison_summary: str = ""
    source: str  # "ollama" | "ranking"
    proposals: List[ComparativeProposalRow] = []
