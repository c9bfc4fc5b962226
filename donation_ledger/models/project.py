"""Project model."""
import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, String, Text
from sqlalchemy.orm import relationship

from donation_ledger.database import Base
from donation_ledger.models.types import UUID, utcnow


class ProjectType(str, enum.Enum):
    """What a project collects money for."""
    GENERAL = "general"
    CAMPAIGN = "campaign"
    SPONSORSHIP = "sponsorship"


class Project(Base):
    """
    A destination for donations.

    System projects (e.g. "General Donation") are protected singletons
    created lazily by the importer.
    """
    __tablename__ = "projects"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    project_type = Column(Enum(ProjectType), default=ProjectType.GENERAL, nullable=False, index=True)
    system = Column(Boolean, default=False, nullable=False, index=True)
    discarded_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    donations = relationship("Donation", back_populates="project")
    sponsorships = relationship("Sponsorship", back_populates="project")

    @property
    def is_sponsorship(self) -> bool:
        return self.project_type == ProjectType.SPONSORSHIP

    def __repr__(self):
        return f"<Project {self.title} type={self.project_type}>"
