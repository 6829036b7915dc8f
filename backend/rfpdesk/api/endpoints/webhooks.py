import asyncio
import json
import logging
import os

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from rfpdesk.database import get_db
from rfpdesk.services.email_service import WebhookVerificationError, verify_webhook_signature
from rfpdesk.services.inbound_email import handle_inbound_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


@router.post("/inbound-email")
async def inbound_email(request: Request, db: Session = Depends(get_db)):
    """
    Receive vendor replies from the email provider.
    Always answers 200 once the signature checks out, so the provider does not redeliver emails we
    have already stored; outcome is reported in the body. Bad signatures get 401.
    """
    raw = await request.body()
    secret = os.getenv("RESEND_WEBHOOK_SECRET", "").strip()
    if secret:
        try:
            verify_webhook_signature(
                secret,
                raw,
                request.headers.get("svix-id"),
                request.headers.get("svix-timestamp"),
                request.headers.get("svix-signature"),
            )
        except WebhookVerificationError as e:
            logger.warning("Rejected inbound webhook: %s", e)
            raise HTTPException(status_code=401, detail="Invalid webhook signature") from e

    try:
        payload = json.loads(raw or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {"success": False, "error": "Webhook body is not valid JSON"}
    if not isinstance(payload, dict):
        return {"success": False, "error": "Webhook body must be a JSON object"}

    try:
        return await asyncio.to_thread(handle_inbound_webhook, db, payload)
    except Exception as e:
        db.rollback()
        logger.error("Inbound email error: %s", e, exc_info=True)
        return {"success": False, "error": str(e)}
