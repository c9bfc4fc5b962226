"""Donor model."""
import uuid

from sqlalchemy import Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship

from donation_ledger.database import Base
from donation_ledger.models.types import UUID, utcnow

ANONYMOUS_NAME = "Anonymous"


class Donor(Base):
    """
    A person who gives money.

    Identity is the Stripe customer id and/or the email address. A donor that
    was merged into another keeps a forward pointer (merged_into_id) and is
    soft-deleted; lookups must follow the pointer to the surviving donor.
    """
    __tablename__ = "donors"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, default=ANONYMOUS_NAME)
    email = Column(String(255), nullable=True, index=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)

    # Timestamp of the newest payment record that touched this donor
    last_updated_at = Column(DateTime, nullable=True)

    merged_into_id = Column(UUID(), ForeignKey("donors.id"), nullable=True, index=True)
    discarded_at = Column(DateTime, nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    merged_into = relationship("Donor", remote_side=[id], foreign_keys=[merged_into_id])
    donations = relationship("Donation", back_populates="donor")
    sponsorships = relationship("Sponsorship", back_populates="donor")

    def __init__(self, **kwargs):
        if not (kwargs.get("name") or "").strip():
            kwargs["name"] = ANONYMOUS_NAME
        super().__init__(**kwargs)

    @property
    def is_discarded(self) -> bool:
        return self.discarded_at is not None

    @property
    def is_merged(self) -> bool:
        return self.merged_into_id is not None

    def discard(self) -> None:
        """Soft-delete the donor."""
        if self.discarded_at is None:
            self.discarded_at = utcnow()

    def __repr__(self):
        return f"<Donor {self.name} email={self.email}>"
