from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_gateway
from app.application.reconciliation import PaymentReconciler
from app.application.schemas import VerifyPaymentResponse, WebhookAck
from app.infrastructure.db import get_db
from app.infrastructure.payments import PaymentGateway

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Provider push. Acknowledged with 200 once processed or deliberately ignored."""
    raw_body = await request.body()
    signature = request.headers.get(gateway.signature_header)
    timestamp = request.headers.get(gateway.timestamp_header) if gateway.timestamp_header else None
    reconciler = PaymentReconciler(db, gateway)
    return await run_in_threadpool(reconciler.handle_webhook, raw_body, signature, timestamp)


@router.get("/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_gateway),
):
    """Browser redirect target after checkout."""
    return PaymentReconciler(db, gateway).verify_redirect(dict(request.query_params))
