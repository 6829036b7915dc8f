import os
import json
import logging
import math
import re
from typing import Any

# Truncation limits for LLM context
_MAX_PROMPT_LEN = 6000
_MAX_EMAIL_LEN = 8000
# Ollama can be slow on CPU; structuring and extraction are on the webhook path so keep them bounded.
_OLLAMA_TIMEOUT_SEC = 120
_DEFAULT_MODEL = "llama3"

logger = logging.getLogger(__name__)


class AIServiceError(Exception):
    """LLM call failed or returned output that could not be used."""


class AIUnavailableError(AIServiceError):
    """No LLM provider is configured."""


def ai_provider() -> str:
    """Which AI backend is configured."""
    return "ollama" if os.getenv("OLLAMA_BASE_URL", "").strip() else "none"


def _fix_trailing_commas(s: str) -> str:
    """Remove trailing commas before ] or } so JSON parses."""
    s = re.sub(r",\s*}", "}", s)
    s = re.sub(r",\s*]", "]", s)
    return s


def _parse_json_from_response(text: str) -> dict[str, Any]:
    """Extract a JSON object from model output; tolerate code fences and trailing commas."""
    text = (text or "").strip()
    if "```json" in text:
        text = text.split("```json", 1)[-1].split("```", 1)[0].strip()
    elif "```" in text:
        text = text.split("```", 1)[-1].split("```", 1)[0].strip()
    start = text.find("{")
    if start >= 0:
        depth = 0
        for i in range(start, len(text)):
            if text[i] == "{":
                depth += 1
            elif text[i] == "}":
                depth -= 1
                if depth == 0:
                    text = text[start : i + 1]
                    break
    try:
        out = json.loads(text)
    except json.JSONDecodeError:
        try:
            out = json.loads(_fix_trailing_commas(text))
        except json.JSONDecodeError as e:
            raise AIServiceError(f"Model returned invalid JSON: {e}") from e
    if not isinstance(out, dict):
        raise AIServiceError("Model returned JSON that is not an object")
    return out


def _chat_json(system: str, user_content: str, temperature: float = 0.2) -> dict[str, Any]:
    """One Ollama chat round-trip in JSON mode; raises AIServiceError on any failure."""
    base_url = os.getenv("OLLAMA_BASE_URL", "").strip()
    if not base_url:
        raise AIUnavailableError("OLLAMA_BASE_URL is not set")
    from ollama import Client

    model = os.getenv("OLLAMA_MODEL", _DEFAULT_MODEL).strip() or _DEFAULT_MODEL
    client = Client(host=base_url, timeout=_OLLAMA_TIMEOUT_SEC)
    messages = [
        {"role": "system", "content": system},
        {"role": "user", "content": user_content},
    ]
    try:
        response = client.chat(model=model, messages=messages, format="json", options={"temperature": temperature})
    except Exception as e:
        raise AIServiceError(f"LLM request failed: {e}") from e
    msg = getattr(response, "message", None) or (response.get("message") if isinstance(response, dict) else None)
    text = (getattr(msg, "content", None) if msg is not None else None) or (msg.get("content") if isinstance(msg, dict) else None) or ""
    if not text.strip():
        raise AIServiceError("LLM returned an empty response")
    return _parse_json_from_response(text)


def _to_float(v: Any) -> float | None:
    """Number from model output; None for missing, unparseable, NaN or infinite values."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        try:
            f = float(v)
        except OverflowError:
            return None
        return f if math.isfinite(f) else None
    m = re.search(r"-?\d[\d,]*(?:\.\d+)?", str(v))
    if not m:
        return None
    try:
        f = float(m.group(0).replace(",", ""))
    except ValueError:
        return None
    return f if math.isfinite(f) else None


def _to_int(v: Any) -> int | None:
    f = _to_float(v)
    return int(round(f)) if f is not None else None


def _to_str(v: Any) -> str | None:
    if v is None:
        return None
    if isinstance(v, list):
        v = ", ".join(str(x).strip() for x in v if str(x).strip())
    s = str(v).strip()
    return s or None


def _norm_items(raw: Any) -> list[dict[str, Any]]:
    items = []
    for it in raw if isinstance(raw, list) else []:
        if not isinstance(it, dict) or not str(it.get("name") or "").strip():
            continue
        item = {
            "name": str(it["name"]).strip(),
            "quantity": _to_int(it.get("quantity")),
            "specifications": it.get("specifications") if isinstance(it.get("specifications"), dict) else {},
        }
        for key in ("unit_price", "total_price"):
            if key in it:
                item[key] = _to_float(it.get(key))
        items.append(item)
    return items


# --- Natural language -> structured RFP ---

_SYSTEM_STRUCTURE_RFP = (
    "You are a procurement specialist. Convert the user's purchase request into a structured Request For Proposal. "
    "Return ONLY a valid JSON object, no other text or markdown. "
    "The JSON must have: "
    '"title" (short string), '
    '"description" (string, 2-3 sentences), '
    '"items" (array of objects with "name", "quantity" (number), "specifications" (object of key/value strings)), '
    '"budget" (number, total budget in the currency mentioned, or null), '
    '"delivery_days" (number of days until delivery is required, or null; "2 weeks" is 14, "1 month" is 30), '
    '"payment_terms" (string such as "Net 30", or null), '
    '"warranty_years" (number, or null), '
    '"additional_requirements" (array of strings). '
    "Use null for anything the request does not state. Do not invent items."
)


def structure_rfp(prompt: str) -> dict[str, Any]:
    """Turn a natural-language purchase request into structured RFP fields. Raises AIServiceError."""
    prompt = (prompt or "").strip()
    if not prompt:
        raise AIServiceError("Empty procurement request")
    user_content = f"Convert this procurement request into structured Request For Proposal data:\n{prompt[:_MAX_PROMPT_LEN]}"
    out = _chat_json(_SYSTEM_STRUCTURE_RFP, user_content, temperature=0.3)
    title = _to_str(out.get("title"))
    if not title:
        raise AIServiceError("Structured RFP has no title")
    reqs = out.get("additional_requirements")
    structured = {
        "title": title[:255],
        "description": _to_str(out.get("description")) or prompt,
        "items": _norm_items(out.get("items")),
        "budget": _to_float(out.get("budget")),
        "delivery_days": _to_int(out.get("delivery_days")),
        "payment_terms": _to_str(out.get("payment_terms")),
        "warranty_years": _to_float(out.get("warranty_years")),
        "additional_requirements": [str(r).strip() for r in reqs if str(r).strip()] if isinstance(reqs, list) else [],
    }
    logger.info("Structured RFP: title=%s items=%s", structured["title"], len(structured["items"]))
    return structured


# --- Vendor email -> structured proposal ---

_SYSTEM_EXTRACT_PROPOSAL = (
    "You are an expert at parsing vendor proposals from messy email responses. "
    "Vendors may use free-form text, tables, bullet points or other formats. "
    "Return ONLY a valid JSON object, no other text or markdown. "
    "The JSON must have: "
    '"items" (array of quoted items: "name" (match the RFP item names where possible), "quantity", "unit_price", "total_price", "specifications" (object)), '
    '"total_price" (overall total as a number, no currency symbols), '
    '"delivery_days" (delivery timeline converted to days: "2 weeks" is 14, "1 month" is 30, "immediate" is 1), '
    '"payment_terms" (string), '
    '"warranty" (string such as "2 years"), '
    '"additional_services" (array of strings), '
    '"notes" (important conditions or caveats), '
    '"confidence" (0-100: 100 all data clearly stated, 75 most data found, 50 significant gaps, 25 very incomplete). '
    "Use null for fields that are not mentioned (not 0 or empty string). "
    "Extract numbers from text (\"$1,250.00\" is 1250). If only a total is given, still list the items quoted."
)


def extract_proposal(email_body: str, rfp_data: dict[str, Any]) -> dict[str, Any]:
    """Extract structured proposal data from a vendor's reply. Raises AIServiceError."""
    if not (email_body or "").strip():
        raise AIServiceError("Email body is empty")
    logger.info("Proposal extraction: calling LLM (text_len=%s)", len(email_body))
    user_content = (
        f"ORIGINAL RFP:\n{json.dumps(rfp_data, indent=2, default=str)[:_MAX_PROMPT_LEN]}\n\n"
        f"VENDOR EMAIL RESPONSE:\n{email_body[:_MAX_EMAIL_LEN]}\n\n"
        "Return only the JSON object."
    )
    out = _chat_json(_SYSTEM_EXTRACT_PROPOSAL, user_content, temperature=0.2)
    services = out.get("additional_services")
    confidence = _to_float(out.get("confidence"))
    extracted = {
        "items": _norm_items(out.get("items")),
        "total_price": _to_float(out.get("total_price")),
        "delivery_days": _to_int(out.get("delivery_days")),
        "payment_terms": _to_str(out.get("payment_terms")),
        "warranty": _to_str(out.get("warranty")),
        "additional_services": [str(s).strip() for s in services if str(s).strip()] if isinstance(services, list) else [],
        "notes": _to_str(out.get("notes")),
        "confidence": max(0.0, min(100.0, confidence)) if confidence is not None else None,
    }
    logger.info(
        "Extracted proposal: items=%s total_price=%s confidence=%s",
        len(extracted["items"]), extracted["total_price"], extracted["confidence"],
    )
    return extracted


# --- Scoring ---

_SYSTEM_SCORE_PROPOSAL = (
    "You are an expert procurement evaluator. Score the vendor proposal against the RFP on a scale of 0-100. "
    "Criteria: price competitiveness against the budget (30 points, deduct for over-budget quotes); "
    "delivery timeline against the required timeline (20 points); "
    "completeness, all RFP items quoted with clear specifications (20 points); "
    "terms and conditions, payment terms and warranty (15 points); "
    "additional value such as services, support and training (15 points). "
    "If the extraction confidence is below 75, deduct up to 10 points. "
    "90-100 exceptional, 75-89 strong, 60-74 good, 40-59 acceptable with gaps, 0-39 poor. "
    "Return ONLY a valid JSON object with "
    '"score" (number 0-100) and "evaluation" (3-5 sentences on strengths and weaknesses).'
)


def score_proposal(rfp_data: dict[str, Any], proposal_data: dict[str, Any], vendor_name: str) -> dict[str, Any]:
    """Score a proposal 0-100 with a short evaluation. Raises AIServiceError."""
    user_content = (
        f"RFP requirements:\n{json.dumps(rfp_data, indent=2, default=str)[:_MAX_PROMPT_LEN]}\n\n"
        f"Vendor proposal from {vendor_name}:\n{json.dumps(proposal_data, indent=2, default=str)[:_MAX_PROMPT_LEN]}\n\n"
        "Return only the JSON object with keys score and evaluation."
    )
    out = _chat_json(_SYSTEM_SCORE_PROPOSAL, user_content, temperature=0.4)
    score = _to_float(out.get("score"))
    if score is None:
        raise AIServiceError("Scoring response has no numeric score")
    result = {
        "score": round(max(0.0, min(100.0, score)), 1),
        "evaluation": _to_str(out.get("evaluation")) or "",
    }
    logger.info("Scored proposal from %s: %s", vendor_name, result["score"])
    return result


# --- Comparison / recommendation ---

_SYSTEM_COMPARE = (
    "You are an expert procurement advisor. Compare the vendor proposals and recommend the best option, "
    "considering value for money, delivery capability, terms and conditions, risk, the AI scores and evaluations, "
    "and completeness. Return ONLY a valid JSON object with "
    '"recommended_vendor_id" (one of the vendor_id values given), '
    '"reasoning" (3-4 sentences on why), '
    '"comparison_summary" (4-6 sentences comparing all vendors and their key differentiators).'
)


def _ranking_recommendation(proposals: list[dict[str, Any]]) -> dict[str, Any]:
    """Deterministic recommendation: the first entry of an already-ranked list."""
    if not proposals:
        return {
            "recommended_vendor_id": None,
            "reasoning": "No proposals have been received for this RFP.",
            "comparison_summary": "",
            "source": "ranking",
        }
    best = proposals[0]
    parts = []
    for p in proposals:
        score = p.get("ai_score")
        price = (p.get("extracted_data") or {}).get("total_price")
        parts.append(
            f"{p.get('vendor_name')}: score {score if score is not None else 'n/a'}, "
            f"total price {price if price is not None else 'n/a'}"
        )
    return {
        "recommended_vendor_id": best.get("vendor_id"),
        "reasoning": f"{best.get('vendor_name')} ranks first on AI score, then price and delivery time.",
        "comparison_summary": "; ".join(parts) + ".",
        "source": "ranking",
    }


def compare_proposals(rfp_data: dict[str, Any], proposals: list[dict[str, Any]]) -> dict[str, Any]:
    """
    Recommend a vendor among ranked proposals.
    Falls back to the top-ranked proposal when the LLM is unavailable, fails, or names an unknown vendor.
    """
    if not proposals:
        return _ranking_recommendation(proposals)
    vendor_ids = {p.get("vendor_id") for p in proposals}
    user_content = (
        f"RFP requirements:\n{json.dumps(rfp_data, indent=2, default=str)[:_MAX_PROMPT_LEN]}\n\n"
        f"Vendor proposals:\n{json.dumps(proposals, indent=2, default=str)[:_MAX_EMAIL_LEN]}\n\n"
        "Return only the JSON object."
    )
    try:
        out = _chat_json(_SYSTEM_COMPARE, user_content, temperature=0.5)
    except AIServiceError as e:
        logger.warning("Proposal comparison failed, using ranking: %s", e, exc_info=True)
        return _ranking_recommendation(proposals)
    recommended = _to_str(out.get("recommended_vendor_id"))
    if recommended not in vendor_ids:
        logger.warning("LLM recommended unknown vendor %s, using ranking", recommended)
        return _ranking_recommendation(proposals)
    return {
        "recommended_vendor_id": recommended,
        "reasoning": _to_str(out.get("reasoning")) or "",
        "comparison_summary": _to_str(out.get("comparison_summary")) or "",
        "source": "ollama",
    }


# --- Outbound RFP email ---

_SYSTEM_RFP_EMAIL = (
    "You are a professional procurement officer. Write a formal RFP invitation email to a vendor. "
    "It must be courteous, state every requirement clearly, include the RFP ID prominently, include deadlines if given, "
    "request a detailed quotation (item pricing, total, delivery timeline, payment terms, warranty, extra services) "
    "and ask the vendor to quote the RFP ID in their reply subject. "
    'Return ONLY a valid JSON object: {"subject": "...", "body": "..."} with \\n for newlines in the body.'
)


def rfp_id_tag(rfp_id: str) -> str:
    return f"RFP ID: {rfp_id}"


def _fallback_email_body(rfp_data: dict[str, Any], vendor_name: str) -> str:
    rfp_id = rfp_data.get("id") or "TBD"
    lines = [
        f"Dear {vendor_name},",
        "",
        "We are pleased to invite you to submit a proposal for the following procurement:",
        "",
        rfp_data.get("description") or rfp_data.get("title") or "",
        "",
        rfp_id_tag(rfp_id),
        "(Please include this ID in your response subject line)",
        "",
        "REQUIREMENTS:",
    ]
    for item in rfp_data.get("items") or []:
        specs = item.get("specifications") or {}
        spec_text = f" ({', '.join(f'{k}: {v}' for k, v in specs.items())})" if specs else ""
        qty = item.get("quantity")
        lines.append(f"- {item.get('name')}: {qty if qty is not None else 'TBD'} units{spec_text}")
    lines.append("")
    if rfp_data.get("budget"):
        lines.append(f"Budget: {rfp_data['budget']:,.2f}")
    if rfp_data.get("delivery_days"):
        lines.append(f"Delivery Timeline: {rfp_data['delivery_days']} days")
    if rfp_data.get("payment_terms"):
        lines.append(f"Payment Terms: {rfp_data['payment_terms']}")
    if rfp_data.get("warranty_years"):
        lines.append(f"Warranty Required: {rfp_data['warranty_years']:g} year(s)")
    extra = rfp_data.get("additional_requirements") or []
    if extra:
        lines += ["", "ADDITIONAL REQUIREMENTS:"] + [f"- {r}" for r in extra]
    lines += [
        "",
        "Please provide a detailed quotation including:",
        "1. Item-by-item pricing",
        "2. Total cost",
        "3. Delivery timeline",
        "4. Payment terms",
        "5. Warranty information",
        "6. Any additional services or benefits",
        "",
        f"IMPORTANT: Please include the RFP ID ({rfp_id}) in your email response subject line.",
        "",
        "We look forward to receiving your proposal.",
        "",
        "Best regards,",
        "Procurement Team",
    ]
    return "\n".join(lines)


def generate_rfp_email(rfp_data: dict[str, Any], vendor_name: str) -> dict[str, str]:
    """
    Subject and body for the RFP invitation. Never raises: uses a template when the LLM is unavailable.
    Both subject and body always carry the RFP ID so replies can be matched.
    """
    rfp_id = rfp_data.get("id") or "TBD"
    tag = rfp_id_tag(rfp_id)
    subject = body = None
    try:
        user_content = (
            f"RFP details:\n{json.dumps(rfp_data, indent=2, default=str)[:_MAX_PROMPT_LEN]}\n\n"
            f"Vendor name: {vendor_name}"
        )
        out = _chat_json(_SYSTEM_RFP_EMAIL, user_content, temperature=0.4)
        subject = _to_str(out.get("subject"))
        body = _to_str(out.get("body"))
    except AIUnavailableError:
        logger.info("RFP email: no LLM configured, using template")
    except AIServiceError as e:
        logger.warning("RFP email generation failed, using template: %s", e)
    if not subject:
        subject = f"RFP: {rfp_data.get('title') or 'Request for Proposal'}"
    if not body:
        body = _fallback_email_body(rfp_data, vendor_name)
    if rfp_id not in subject:
        subject = f"{subject} ({tag})"
    if rfp_id not in body:
        body = f"{body}\n\n{tag}\n(Please include this ID in your response subject line)"
    return {"subject": subject, "body": body}
