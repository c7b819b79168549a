"""Component wiring.

Process-wide collaborators (gateway, policy registry, notifier factory) are built
once at startup; everything bound to a database session is assembled per unit of
work from them.
"""
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from app.services.approval_workflow import ApprovalWorkflow
from app.services.booking_lifecycle import BookingLifecycle
from app.services.booking_store import SqlBookingStore
from app.services.email_service import EmailNotifier
from app.services.guest_accounts import GuestAccountProvisioner, SqlUserStore
from app.services.payment_gateway import build_gateway
from app.services.payment_intents import PaymentIntentOrchestrator
from app.services.price_verification import CatalogPriceSource, PriceVerifier
from app.services.product_policy import ProductPolicyRegistry


@dataclass
class Services:
    gateway: object
    policies: ProductPolicyRegistry = field(default_factory=ProductPolicyRegistry)
    notifier_factory: Callable[[Session], object] = EmailNotifier

    def notifier(self, db: Session):
        return self.notifier_factory(db)

    def bookings(self, db: Session) -> SqlBookingStore:
        return SqlBookingStore(db)

    def lifecycle(self, db: Session) -> BookingLifecycle:
        return BookingLifecycle(self.bookings(db), self.policies)

    def orchestrator(self, db: Session) -> PaymentIntentOrchestrator:
        return PaymentIntentOrchestrator(
            verifier=PriceVerifier(CatalogPriceSource(db)),
            provisioner=GuestAccountProvisioner(SqlUserStore(db)),
            lifecycle=self.lifecycle(db),
            policies=self.policies,
            gateway=self.gateway,
            notifier=self.notifier(db),
        )

    def workflow(self, db: Session) -> ApprovalWorkflow:
        return ApprovalWorkflow(self.bookings(db), self.lifecycle(db), self.notifier(db), self.gateway)


def build_services(settings) -> Services:
    return Services(gateway=build_gateway(settings))
