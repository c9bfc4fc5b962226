"""Sponsorship model."""
import uuid

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from donation_ledger.database import Base
from donation_ledger.models.types import UUID, utcnow


class Sponsorship(Base):
    """
    Recurring commitment of one donor to one child.

    Tied to exactly one sponsorship-type project. Active while end_date is null.
    """
    __tablename__ = "sponsorships"
    __table_args__ = (
        CheckConstraint("monthly_amount > 0", name="ck_sponsorships_monthly_amount_positive"),
    )

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    donor_id = Column(UUID(), ForeignKey("donors.id"), nullable=False, index=True)
    child_id = Column(UUID(), ForeignKey("children.id"), nullable=False, index=True)
    project_id = Column(UUID(), ForeignKey("projects.id"), nullable=False, index=True)

    # Minor currency unit
    monthly_amount = Column(Integer, nullable=False)
    stripe_subscription_id = Column(String(255), nullable=True, index=True)

    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    donor = relationship("Donor", back_populates="sponsorships")
    child = relationship("Child", back_populates="sponsorships")
    project = relationship("Project", back_populates="sponsorships")
    donations = relationship("Donation", back_populates="sponsorship")

    @property
    def is_active(self) -> bool:
        return self.end_date is None

    def __repr__(self):
        return f"<Sponsorship {self.id} monthly_amount={self.monthly_amount} active={self.is_active}>"
