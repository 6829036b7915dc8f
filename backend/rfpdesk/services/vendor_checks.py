"""
Vendor contact details: address normalisation for reply matching, and the checks run when a vendor is
registered or edited (email and phone shape, website answering a HEAD request).
"""
import re
import urllib.error
import urllib.request
from typing import Optional

# local@domain.tld; anything stricter rejects real supplier addresses
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
# After separators are stripped: optional +, 7-15 digits, no leading zero after the +
PHONE_PATTERN = re.compile(r"^(?:\+[1-9]\d{6,14}|\d{7,15})$")
_PHONE_SEPARATORS = re.compile(r"[\s\-\.\(\)/]")
# From headers look like "Jane Doe <jane@acme.example>"
_ANGLE_ADDRESS = re.compile(r"<(.+?)>")
_WEBSITE_TIMEOUT_SEC = 10


def normalize_email(address: Optional[str]) -> str:
    """Bare lower-case address from either "addr" or "Name <addr>"."""
    address = (address or "").strip()
    m = _ANGLE_ADDRESS.search(address)
    if m:
        address = m.group(1)
    return address.strip().lower()


def verify_email(email: Optional[str]) -> Optional[bool]:
    if not email or not email.strip():
        return None
    return bool(EMAIL_PATTERN.match(normalize_email(email)))


def verify_phone(phone: Optional[str]) -> Optional[bool]:
    """True/False on the digits left after separators are removed; None when no phone was given."""
    if not phone or not phone.strip():
        return None
    return bool(PHONE_PATTERN.match(_PHONE_SEPARATORS.sub("", phone.strip())))


def website_url(website: str) -> str:
    website = website.strip()
    return website if website.startswith(("http://", "https://")) else f"https://{website}"


def verify_website(url: Optional[str]) -> Optional[bool]:
    """HEAD the vendor website: True on 2xx/3xx, False when unreachable, None when no URL."""
    if not url or not url.strip():
        return None
    req = urllib.request.Request(website_url(url), method="HEAD", headers={"User-Agent": "RFPDesk/1.0"})
    try:
        with urllib.request.urlopen(req, timeout=_WEBSITE_TIMEOUT_SEC) as resp:
            return 200 <= resp.status < 400
    except (urllib.error.URLError, OSError, ValueError):
        return False
