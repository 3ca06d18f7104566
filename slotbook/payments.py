"""
Payment gate and Stripe client.

decide_payment_plan maps a service's payment configuration to the payment
state a new booking starts in. StripeGateway talks to the Stripe REST API
for connected-account status and payment intents.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import httpx

from . import models
from .config import (
    STRIPE_API_URL,
    STRIPE_APPLICATION_FEE_PERCENT,
    STRIPE_CURRENCY,
    STRIPE_SECRET_KEY,
    STRIPE_TIMEOUT,
)
from .exceptions import PaymentGatewayError, PaymentMisconfigured

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class AccountStatus:
    charges_enabled: bool
    payouts_enabled: bool = False


@dataclass(frozen=True)
class PaymentCapability:
    """Whether the business can take online payments right now"""
    account_id: Optional[str]
    charges_enabled: bool

    @property
    def ready(self) -> bool:
        return bool(self.account_id) and self.charges_enabled


@dataclass(frozen=True)
class PaymentPlan:
    payment_status: str
    amount_due: Decimal


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: Optional[str]
    status: str


NO_CAPABILITY = PaymentCapability(account_id=None, charges_enabled=False)


def to_cents(amount: Decimal) -> int:
    """Currency minor units, rounded half-up"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def requires_online_payment(service: Optional[models.Service]) -> bool:
    return service is not None and service.is_paid and service.payment_mode == models.MODE_ONLINE


def decide_payment_plan(service: Optional[models.Service], capability: PaymentCapability) -> PaymentPlan:
    """
    Payment state for a new booking of service.

    Paid online services on a business that cannot take charges are a
    configuration error; they are refused, never turned into free bookings.
    """
    if service is None or not service.is_paid:
        return PaymentPlan(models.PAYMENT_NOT_REQUIRED, ZERO)

    price = Decimal(service.price).quantize(ZERO)

    if service.payment_mode == models.MODE_IN_STORE:
        return PaymentPlan(models.PAYMENT_IN_STORE, price)

    if service.payment_mode == models.MODE_ONLINE:
        if not capability.ready:
            raise PaymentMisconfigured()
        return PaymentPlan(models.PAYMENT_PENDING, price)

    # is_paid with payment_mode "free" violates the service invariant
    raise PaymentMisconfigured(f"Service {service.id} is paid but has payment mode {service.payment_mode!r}")


class StripeGateway:
    """Minimal Stripe REST client (Connect destination charges)"""

    def __init__(self, api_key: str = STRIPE_SECRET_KEY, base_url: str = STRIPE_API_URL,
                 transport: Optional[httpx.BaseTransport] = None):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.transport = transport

    def _request(self, method: str, path: str, data: Optional[dict] = None, missing_ok: bool = False) -> Optional[dict]:
        if not self.api_key:
            raise PaymentGatewayError("Stripe is not configured")
        try:
            with httpx.Client(timeout=STRIPE_TIMEOUT, transport=self.transport) as http_client:
                response = http_client.request(
                    method,
                    f"{self.base_url}{path}",
                    data=data,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Stripe request {method} {path} failed: {e}")
            raise PaymentGatewayError() from e

        if missing_ok and response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.error(f"❌ Stripe {method} {path} returned {response.status_code}: {response.text}")
            raise PaymentGatewayError(f"Stripe returned {response.status_code}")
        return response.json()

    def get_account_status(self, account_id: str) -> AccountStatus:
        """Connected account capabilities; an account Stripe does not know cannot take charges"""
        account = self._request("GET", f"/accounts/{account_id}", missing_ok=True)
        if account is None:
            logger.warning(f"⚠️ Stripe account {account_id} not found")
            return AccountStatus(charges_enabled=False)
        return AccountStatus(
            charges_enabled=bool(account.get("charges_enabled")),
            payouts_enabled=bool(account.get("payouts_enabled")),
        )

    def create_payment_intent(
        self,
        amount_cents: int,
        destination_account: str,
        description: str = "",
        receipt_email: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentIntent:
        """Destination charge with the platform application fee"""
        fee = int(round(amount_cents * STRIPE_APPLICATION_FEE_PERCENT / 100))
        data = {
            "amount": amount_cents,
            "currency": STRIPE_CURRENCY,
            "description": description,
            "application_fee_amount": fee,
            "transfer_data[destination]": destination_account,
            "automatic_payment_methods[enabled]": "true",
        }
        if receipt_email:
            data["receipt_email"] = receipt_email
        for key, value in (metadata or {}).items():
            data[f"metadata[{key}]"] = str(value)

        intent = self._request("POST", "/payment_intents", data=data)
        logger.info(f"💳 Payment intent {intent['id']} created for {amount_cents} cents")
        return PaymentIntent(id=intent["id"], client_secret=intent.get("client_secret"), status=intent["status"])

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        intent = self._request("GET", f"/payment_intents/{intent_id}")
        return PaymentIntent(id=intent["id"], client_secret=intent.get("client_secret"), status=intent["status"])


def resolve_capability(business: models.BusinessProfile, gateway: StripeGateway) -> PaymentCapability:
    """Ask Stripe whether the business's connected account can take charges"""
    if not business.stripe_account_id:
        return NO_CAPABILITY
    status = gateway.get_account_status(business.stripe_account_id)
    return PaymentCapability(account_id=business.stripe_account_id, charges_enabled=status.charges_enabled)


def plan_for_booking(
    business: models.BusinessProfile,
    service: Optional[models.Service],
    gateway: Optional[StripeGateway],
) -> PaymentPlan:
    """Payment gate entry point; only calls Stripe when the service needs online payment"""
    capability = NO_CAPABILITY
    if requires_online_payment(service) and business.stripe_account_id:
        capability = resolve_capability(business, gateway or StripeGateway())
    return decide_payment_plan(service, capability)


# Global instance
stripe_gateway = StripeGateway()
