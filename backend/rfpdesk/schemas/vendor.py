from datetime import datetime
from typing import Optional
from pydantic import BaseModel, field_validator

from rfpdesk.services.vendor_checks import EMAIL_PATTERN


def _check_email(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip().lower()
    if not EMAIL_PATTERN.match(v):
        raise ValueError("invalid email address")
    return v


class VendorBase(BaseModel):
    name: str
    email: str
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None


class VendorCreate(VendorBase):
    @field_validator("email")
    @classmethod
    def valid_email(cls, v: str) -> str:
        return _check_email(v)


class VendorPatch(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    contact_name: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None

    @field_validator("email")
    @classmethod
    def valid_email(cls, v: Optional[str]) -> Optional[str]:
        return _check_email(v)


class VendorResponse(VendorBase):
    id: str
    email_verified: Optional[bool] = None
    phone_verified: Optional[bool] = None
    website_verified: Optional[bool] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
