"""Donation model."""
import enum
import uuid

from sqlalchemy import CheckConstraint, Column, Date, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from donation_ledger.database import Base
from donation_ledger.exceptions import InvariantViolationError
from donation_ledger.models.project import ProjectType
from donation_ledger.models.types import UUID, utcnow


class DonationStatus(str, enum.Enum):
    """Ledger status of an imported donation."""
    SUCCEEDED = "succeeded"
    NEEDS_ATTENTION = "needs_attention"


class Donation(Base):
    """
    One donation booked in the ledger.

    Several donations may share a Stripe charge/invoice id when one payment
    funds several sponsored children.
    """
    __tablename__ = "donations"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donations_amount_positive"),
    )

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)

    # Minor currency unit
    amount = Column(Integer, nullable=False)
    date = Column(Date, nullable=False, index=True)
    status = Column(Enum(DonationStatus), default=DonationStatus.SUCCEEDED, nullable=False, index=True)
    needs_attention_reason = Column(Text, nullable=True)
    payment_method = Column(String(32), default="stripe", nullable=False)

    donor_id = Column(UUID(), ForeignKey("donors.id"), nullable=False, index=True)
    project_id = Column(UUID(), ForeignKey("projects.id"), nullable=False, index=True)
    child_id = Column(UUID(), ForeignKey("children.id"), nullable=True, index=True)
    sponsorship_id = Column(UUID(), ForeignKey("sponsorships.id"), nullable=True, index=True)

    # Stripe identifiers
    stripe_charge_id = Column(String(255), nullable=True, index=True)
    stripe_invoice_id = Column(String(255), nullable=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    donor = relationship("Donor", back_populates="donations")
    project = relationship("Project", back_populates="donations")
    child = relationship("Child")
    sponsorship = relationship("Sponsorship", back_populates="donations")

    def check_invariants(self) -> None:
        """Raise if the donation cannot be booked as it stands."""
        if self.amount is None or self.amount <= 0:
            raise InvariantViolationError(
                "Donation amount must be positive",
                details={"amount": self.amount},
            )
        if self.project is None:
            raise InvariantViolationError("Donation must belong to a project")
        if self.project.project_type == ProjectType.SPONSORSHIP and self.sponsorship is None:
            raise InvariantViolationError(
                "Donation to a sponsorship project must reference a sponsorship",
                details={"project": self.project.title},
            )

    def __repr__(self):
        return f"<Donation {self.id} amount={self.amount} status={self.status}>"
