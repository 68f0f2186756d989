import logging
import stripe
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from vending.core.config import settings

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY
if settings.STRIPE_API_VERSION:
    stripe.api_version = settings.STRIPE_API_VERSION


@dataclass
class PaymentIntentInfo:
    """The parts of a Stripe PaymentIntent the reconciliation jobs look at"""
    id: str
    status: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    client_secret: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# STRIPE OBJECT ACCESS HELPER
# ============================================================================

def _get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    # Try attribute access first (Stripe objects)
    if hasattr(obj, key):
        value = getattr(obj, key, default)
        if value is not None:
            return value
    # Fall back to dict access
    if isinstance(obj, dict):
        return obj.get(key, default)
    return default


def _to_info(intent: Any) -> PaymentIntentInfo:
    metadata = _get_stripe_value(intent, "metadata", {}) or {}
    return PaymentIntentInfo(
        id=_get_stripe_value(intent, "id"),
        status=_get_stripe_value(intent, "status"),
        amount=_get_stripe_value(intent, "amount"),
        currency=_get_stripe_value(intent, "currency"),
        client_secret=_get_stripe_value(intent, "client_secret"),
        metadata=dict(metadata),
    )


def _is_not_found(error: Exception) -> bool:
    return (
        isinstance(error, stripe.InvalidRequestError)
        and (getattr(error, "code", None) == "resource_missing" or getattr(error, "http_status", None) == 404)
    )


# ============================================================================
# PAYMENT INTENT OPERATIONS
# ============================================================================

class StripePaymentProvider:
    """Payment-provider collaborator backed by Stripe PaymentIntents.

    All calls are awaited; there is no extra timeout on top of the Stripe
    client's own. Errors other than "not found" propagate as
    ``stripe.StripeError`` so callers decide how to close local state.
    """

    async def create_intent(
        self,
        amount: int,
        currency: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> PaymentIntentInfo:
        """Create a PaymentIntent for ``amount`` (smallest currency unit)"""
        if amount <= 0:
            raise ValueError("Amount must be positive")
        intent = await stripe.PaymentIntent.create_async(
            amount=amount,
            currency=(currency or settings.STRIPE_CURRENCY).lower(),
            metadata={k: str(v) for k, v in (metadata or {}).items()},
            automatic_payment_methods={"enabled": True},
        )
        logger.info(f"Created PaymentIntent {_get_stripe_value(intent, 'id')} for {amount} {currency or settings.STRIPE_CURRENCY}")
        return _to_info(intent)

    async def retrieve_intent(self, payment_intent_id: str) -> Optional[PaymentIntentInfo]:
        """Fetch a PaymentIntent. Returns None if Stripe does not know the id."""
        try:
            intent = await stripe.PaymentIntent.retrieve_async(payment_intent_id)
        except stripe.InvalidRequestError as e:
            if _is_not_found(e):
                logger.info(f"PaymentIntent {payment_intent_id} not found on Stripe")
                return None
            raise
        return _to_info(intent)

    async def cancel_intent(self, payment_intent_id: str, reason: Optional[str] = None) -> PaymentIntentInfo:
        """Cancel a PaymentIntent (reason: abandoned, duplicate, fraudulent, requested_by_customer)"""
        params = {}
        if reason:
            params["cancellation_reason"] = reason
        intent = await stripe.PaymentIntent.cancel_async(payment_intent_id, **params)
        logger.info(f"Canceled PaymentIntent {payment_intent_id} (reason={reason})")
        return _to_info(intent)


_payment_provider: Optional[StripePaymentProvider] = None


def get_payment_provider() -> StripePaymentProvider:
    global _payment_provider
    if _payment_provider is None:
        _payment_provider = StripePaymentProvider()
    return _payment_provider
