"""
Regex extraction of proposal fields from vendor email text.
Used when the LLM is unavailable or fails; results are best-effort and flagged for AI re-parsing.
"""
import html
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_NOTES_LEN = 500
_PAYMENT_TERMS_LEN = 100

_CURRENCY = r"(?:rs\.?|inr|₹|\$|usd|€|eur)"
_AMOUNT = r"(\d[\d,]*(?:\.\d{1,2})?)"

PRICE_PATTERNS = [
    re.compile(rf"total[:\s]+{_CURRENCY}?\s*{_AMOUNT}", re.IGNORECASE),
    re.compile(rf"{_CURRENCY}\s*{_AMOUNT}\s*total", re.IGNORECASE),
    re.compile(rf"price[:\s]+{_CURRENCY}?\s*{_AMOUNT}", re.IGNORECASE),
    re.compile(rf"cost[:\s]+{_CURRENCY}?\s*{_AMOUNT}", re.IGNORECASE),
    re.compile(rf"quoted?[:\s]+{_CURRENCY}?\s*{_AMOUNT}", re.IGNORECASE),
]

DELIVERY_DAY_PATTERNS = [
    re.compile(r"delivery[:\s]+(?:in\s+|within\s+)?(\d+)\s*days?", re.IGNORECASE),
    re.compile(r"(\d+)\s*days?\s+delivery", re.IGNORECASE),
    re.compile(r"timeline[:\s]+(\d+)\s*days?", re.IGNORECASE),
]
DELIVERY_WEEK_PATTERNS = [
    re.compile(r"delivery[:\s]+(?:in\s+|within\s+)?(\d+)\s*weeks?", re.IGNORECASE),
    re.compile(r"(\d+)\s*weeks?\s+delivery", re.IGNORECASE),
]

WARRANTY_PATTERNS = [
    re.compile(r"warranty[:\s]+(\d+)\s*years?", re.IGNORECASE),
    re.compile(r"(\d+)\s*years?\s+warranty", re.IGNORECASE),
]

PAYMENT_PATTERNS = [
    re.compile(r"payment(?:\s+terms)?[:\s]+([^\n.]+)", re.IGNORECASE),
    re.compile(r"terms[:\s]+([^\n.]+)", re.IGNORECASE),
]


def _first_match(patterns: list[re.Pattern], text: str) -> str | None:
    for pattern in patterns:
        m = pattern.search(text)
        if m:
            return m.group(1)
    return None


def _parse_amount(raw: str | None) -> float | None:
    if not raw:
        return None
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None


def parse_proposal(email_body: str) -> dict[str, Any]:
    """
    Extract total price, delivery days, warranty years and payment terms from free text.
    Missing fields are None. Raises ValueError on an empty body.
    """
    if not email_body or not email_body.strip():
        raise ValueError("Email body is empty; nothing to parse")
    logger.info("Fallback parser: extracting from %s chars", len(email_body))

    extracted: dict[str, Any] = {
        "items": [],
        "total_price": _parse_amount(_first_match(PRICE_PATTERNS, email_body)),
        "delivery_days": None,
        "payment_terms": None,
        "warranty_years": None,
        "notes": email_body[:_NOTES_LEN],
    }

    days = _first_match(DELIVERY_DAY_PATTERNS, email_body)
    if days is not None:
        extracted["delivery_days"] = int(days)
    else:
        weeks = _first_match(DELIVERY_WEEK_PATTERNS, email_body)
        if weeks is not None:
            extracted["delivery_days"] = int(weeks) * 7

    years = _first_match(WARRANTY_PATTERNS, email_body)
    if years is not None:
        extracted["warranty_years"] = int(years)

    terms = _first_match(PAYMENT_PATTERNS, email_body)
    if terms and terms.strip():
        extracted["payment_terms"] = terms.strip()[:_PAYMENT_TERMS_LEN]

    logger.info(
        "Fallback extraction: total_price=%s delivery_days=%s warranty_years=%s has_payment_terms=%s",
        extracted["total_price"],
        extracted["delivery_days"],
        extracted["warranty_years"],
        extracted["payment_terms"] is not None,
    )
    return extracted


def html_to_text(markup: str) -> str:
    """Strip style/script blocks and tags, unescape entities, collapse whitespace."""
    if not markup:
        return ""
    text = re.sub(r"<style[^>]*>.*?</style>", " ", markup, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<script[^>]*>.*?</script>", " ", text, flags=re.IGNORECASE | re.DOTALL)
    text = re.sub(r"<br\s*/?>|</p>|</div>|</tr>|</li>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\s*\n\s*", "\n", text)
    return text.strip()
