"""Child model."""
import uuid

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import relationship

from donation_ledger.database import Base
from donation_ledger.models.types import UUID, utcnow


class Child(Base):
    """A sponsored child. Identified by the exact name string."""
    __tablename__ = "children"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False, index=True)
    discarded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    sponsorships = relationship("Sponsorship", back_populates="child")

    def __repr__(self):
        return f"<Child {self.name}>"
