"""StripeInvoice model."""
import uuid

from sqlalchemy import Column, Date, DateTime, Integer, String
from sqlalchemy.orm import relationship

from donation_ledger.database import Base
from donation_ledger.models.types import UUID, utcnow


class StripeInvoice(Base):
    """
    One imported Stripe charge.

    The unique stripe_charge_id is the import idempotency key; every
    donation produced from the charge points back here through the
    shared charge id.
    """
    __tablename__ = "stripe_invoices"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    stripe_charge_id = Column(String(255), unique=True, nullable=False, index=True)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    total_amount_cents = Column(Integer, nullable=False)
    invoice_date = Column(Date, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    donations = relationship(
        "Donation",
        primaryjoin="StripeInvoice.stripe_charge_id == foreign(Donation.stripe_charge_id)",
        viewonly=True,
    )

    def __repr__(self):
        return f"<StripeInvoice {self.stripe_charge_id} total={self.total_amount_cents}>"
