import json

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.dependencies import get_db, get_payment_gateway
from app.core.logging_config import get_logger
from app.services import payment_webhooks

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

logger = get_logger("payment")


# ---------------------------------------------------------------------
# RAZORPAY (signature checked against the raw body)
# ---------------------------------------------------------------------
@router.post("/razorpay")
async def razorpay_webhook(request: Request,
                           x_razorpay_signature: str | None = Header(default=None),
                           db: Session = Depends(get_db), gateway=Depends(get_payment_gateway)):
    body = await request.body()
    await run_in_threadpool(gateway.verify_webhook, body, x_razorpay_signature)

    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    logger.info(f"Webhook received | event={event.get('event')}")

    result = await run_in_threadpool(payment_webhooks.handle_event, db, gateway, event)
    return {"received": True, **result}
