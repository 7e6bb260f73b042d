import os
from dataclasses import dataclass, field

import razorpay
import requests
from dotenv import load_dotenv

from app.core.errors import PaymentProviderError, WebhookSignatureError
from app.core.logging_config import get_logger

load_dotenv()

logger = get_logger("payment")

PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET")

_PROVIDER_ERRORS = (
    razorpay.errors.BadRequestError,
    razorpay.errors.GatewayError,
    razorpay.errors.ServerError,
    requests.RequestException,
)


@dataclass
class PaymentIntent:
    id: str
    client_secret: str
    amount: int
    currency: str
    status: str
    public_key: str | None = None
    raw: dict = field(default_factory=dict)


class RazorpayGateway:
    """Payment authorization backed by Razorpay orders.

    An order plays the role of a payment intent: its id is handed to the
    checkout widget as the client secret, and the captured payment is later
    confirmed through the signature Razorpay returns to the client.
    """

    def __init__(self, key_id: str | None = None, key_secret: str | None = None,
                 webhook_secret: str | None = None):
        self.key_id = key_id or os.getenv("RAZORPAY_KEY_ID")
        self.key_secret = key_secret or os.getenv("RAZORPAY_KEY_SECRET")
        self.webhook_secret = webhook_secret or RAZORPAY_WEBHOOK_SECRET
        self.client = razorpay.Client(auth=(self.key_id, self.key_secret))

    def create_intent(self, amount: int, currency: str = PAYMENT_CURRENCY,
                      receipt: str | None = None, notes: dict | None = None) -> PaymentIntent:
        try:
            order = self.client.order.create({
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
                "payment_capture": 1,
            })
        except _PROVIDER_ERRORS as e:
            logger.error(f"Order creation failed | amount={amount} {currency} | {e}")
            raise PaymentProviderError(f"Could not create payment intent: {e}")

        logger.info(f"Order created | id={order['id']} | amount={amount} {currency}")

        return PaymentIntent(
            id=order["id"],
            client_secret=order["id"],
            amount=order.get("amount", amount),
            currency=order.get("currency", currency),
            status=order.get("status", "created"),
            public_key=self.key_id,
            raw=order,
        )

    def confirm_payment(self, intent_id: str, payment_id: str, signature: str) -> str:
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": intent_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
        except razorpay.errors.SignatureVerificationError:
            logger.warning(f"Invalid payment signature | order={intent_id} | payment={payment_id}")
            raise PaymentProviderError("Invalid payment signature")

        return "succeeded"

    def refund(self, payment_id: str, amount: int | None = None) -> dict:
        data = {"amount": amount} if amount is not None else {}
        try:
            refund = self.client.payment.refund(payment_id, data)
        except _PROVIDER_ERRORS as e:
            logger.error(f"Refund failed | payment={payment_id} | amount={amount} | {e}")
            raise PaymentProviderError(f"Refund failed: {e}")

        logger.info(f"Refund issued | payment={payment_id} | amount={amount} | refund={refund.get('id')}")
        return refund

    def verify_webhook(self, body: bytes | str, signature: str | None):
        """Check the ``X-Razorpay-Signature`` header against the raw request body."""
        if not self.webhook_secret:
            logger.error("Webhook received but RAZORPAY_WEBHOOK_SECRET is not configured")
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing webhook signature")

        if isinstance(body, bytes):
            body = body.decode("utf-8")
        try:
            self.client.utility.verify_webhook_signature(body, signature, self.webhook_secret)
        except razorpay.errors.SignatureVerificationError:
            logger.warning("Invalid webhook signature")
            raise WebhookSignatureError("Invalid webhook signature")
