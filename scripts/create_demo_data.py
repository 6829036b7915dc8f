#!/usr/bin/env python3
"""
Create demo data: vendors, an RFP structured from a natural-language request, and a simulated vendor reply.

Run with the backend up:
  uvicorn rfpdesk.main:app --reload --port 8001

Usage:
  python scripts/create_demo_data.py
  python scripts/create_demo_data.py --base http://localhost:8001

Writes: scripts/demo_data.json with created RFP, vendor and proposal IDs.
Without OLLAMA_BASE_URL on the server, RFP structuring is skipped and a structured RFP is created
directly; the vendor reply then goes through the regex fallback.
"""

import json
import os
import sys
import urllib.error
import urllib.request
import uuid
from datetime import datetime, timezone
from pathlib import Path

# Default: backend on port 8001
BASE_URL = os.environ.get("API_BASE", "http://localhost:8001").rstrip("/")

PROMPT = (
    "We need 20 laptops with 16GB RAM and 512GB SSD and 15 27-inch monitors for our new office. "
    "Budget is $50,000 total. Delivery within 30 days. Payment terms net 30, at least 1 year warranty."
)

VENDORS = [
    {"name": "Acme Computers", "email": "sales@acme-computers.example", "contact_name": "Jane Doe", "phone": "+14155550100"},
    {"name": "Beta Hardware", "email": "quotes@beta-hardware.example", "contact_name": "Raj Patel", "phone": "+919876543210"},
]


def request(method: str, path: str, body: dict | None = None, allow_error: bool = False) -> dict | None:
    url = f"{BASE_URL}{path}"
    data = None
    if body is not None:
        data = json.dumps(body).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        method=method,
        headers={"Content-Type": "application/json"} if data else {},
    )
    try:
        with urllib.request.urlopen(req, timeout=180) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        err_body = e.read().decode("utf-8") if e.fp else ""
        if allow_error:
            print(f"  HTTP {e.code} {path}: {err_body[:200]}")
            return None
        raise SystemExit(f"HTTP {e.code} {path}: {err_body}")
    except urllib.error.URLError as e:
        raise SystemExit(f"Request failed (is the backend running at {BASE_URL}?): {e.reason}")


def get_or_create_vendor(payload: dict) -> dict:
    for v in request("GET", "/vendors") or []:
        if v["email"] == payload["email"]:
            return v
    return request("POST", "/vendors", body=payload)


def create_rfp() -> dict:
    rfp = request("POST", "/rfps/from-prompt", body={"prompt": PROMPT}, allow_error=True)
    if rfp:
        print("  RFP structured by the LLM")
        return rfp
    print("  LLM unavailable; creating structured RFP directly")
    return request("POST", "/rfps", body={
        "title": "Office laptops and monitors",
        "description": PROMPT,
        "items": [
            {"name": "Laptop", "quantity": 20, "specifications": {"ram": "16GB", "storage": "512GB SSD"}},
            {"name": "Monitor", "quantity": 15, "specifications": {"size": "27-inch"}},
        ],
        "budget": 50000,
        "delivery_days": 30,
        "payment_terms": "Net 30",
        "warranty_years": 1,
    })


def vendor_reply(rfp_id: str, vendor: dict) -> dict:
    """Webhook payload in the provider's email.received format."""
    body = (
        f"Hello,\n\nThank you for the RFP. Please find our quotation below.\n"
        f"Laptops (20 x $1,450) and monitors (15 x $320).\n"
        f"Total: $33,800\nDelivery: 21 days\nWarranty: 2 years\nPayment terms: Net 45\n\n"
        f"Regards,\n{vendor['contact_name']}\n{vendor['name']}"
    )
    return {
        "type": "email.received",
        "created_at": datetime.now(timezone.utc).isoformat(),
        "data": {
            "email_id": str(uuid.uuid4()),
            "from": f"{vendor['contact_name']} <{vendor['email']}>",
            "to": ["procurement@example.com"],
            "subject": f"Re: RFP ID: {rfp_id}",
            "text": body,
        },
    }


def main() -> None:
    global BASE_URL
    if "--help" in sys.argv or "-h" in sys.argv:
        print(__doc__)
        sys.exit(0)
    for i, arg in enumerate(sys.argv):
        if arg == "--base" and i + 1 < len(sys.argv):
            BASE_URL = sys.argv[i + 1].rstrip("/")
            break

    print(f"Using API base: {BASE_URL}")
    print("Creating demo data...")

    vendors = [get_or_create_vendor(v) for v in VENDORS]
    print(f"  Vendors: {', '.join(v['name'] for v in vendors)}")

    rfp = create_rfp()
    rfp_id = rfp["id"]
    print(f"  RFP created: id={rfp_id} ({rfp['title'][:40]})")

    sent = request("POST", f"/rfps/{rfp_id}/send", body={"vendor_ids": [v["id"] for v in vendors]})
    for r in sent["results"]:
        print(f"  Sent to {r['vendor_name']}: {r['status']}")

    # Simulate a reply from the first vendor through the inbound webhook
    result = request("POST", "/webhooks/inbound-email", body=vendor_reply(rfp_id, vendors[0]))
    proposal_id = (result.get("data") or {}).get("proposal_id")
    print(f"  Webhook: {result.get('message') or result.get('error')} (proposal={proposal_id})")

    script_dir = Path(__file__).resolve().parent
    manifest = {
        "base_url": BASE_URL,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "rfp": {"id": rfp_id, "title": rfp["title"]},
        "vendors": [{"id": v["id"], "name": v["name"]} for v in vendors],
        "proposal_id": proposal_id,
    }
    manifest_path = script_dir / "demo_data.json"
    manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    print(f"  Manifest: {manifest_path}")

    print("\nDone. Next:")
    print(f"  GET {BASE_URL}/rfps/{rfp_id}/comparative for the ranked proposals.")
    print(f"  POST {BASE_URL}/rfps/{rfp_id}/recommendation for a vendor recommendation.")


if __name__ == "__main__":
    main()
