"""
Entity materializer for classified payments.

Finds or creates the Child, Project and Sponsorship rows an intent needs,
reusing existing rows wherever one already fits.
"""
from dataclasses import dataclass
from datetime import date
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from donation_ledger.exceptions import InvariantViolationError
from donation_ledger.models import Child, Donor, Project, ProjectType, Sponsorship
from donation_ledger.services.description_classifier import (
    CampaignIntent,
    GeneralIntent,
    Intent,
    SponsorshipIntent,
    UnmappedIntent,
)

logger = structlog.get_logger(__name__)

GENERAL_PROJECT_TITLE = "General Donation"
UNMAPPED_PREFIX = "UNMAPPED: "


@dataclass
class SponsorshipTarget:
    """Rows a single sponsored child resolves to."""

    child: Child
    project: Project
    sponsorship: Sponsorship
    child_created: bool = False
    project_created: bool = False
    sponsorship_created: bool = False


class EntityMaterializer:
    """
    Find-or-create for the entities a payment intent points at.

    Reuse rules:
    - Children are matched by exact name.
    - A child has one sponsorship project, shared by all its sponsorships.
    - A donor has at most one active sponsorship per child; an existing one
      keeps its monthly amount.
    - General, campaign and unmapped projects are keyed by title.
    """

    def __init__(self, db: Session):
        self.db = db

    def materialize_sponsorship(
        self,
        donor: Donor,
        child_name: str,
        amount_cents: int,
        subscription_id: Optional[str] = None,
        start_date: Optional[date] = None,
    ) -> SponsorshipTarget:
        """
        Resolve one sponsored child for a donor.

        Args:
            donor: The paying donor (already resolved).
            child_name: Exact child name from the description.
            amount_cents: Amount used as monthly amount for a new sponsorship.
            subscription_id: Stripe subscription funding the sponsorship.
            start_date: Start date for a new sponsorship.

        Returns:
            SponsorshipTarget with child, project and sponsorship.
        """
        name = (child_name or "").strip()
        if not name:
            raise InvariantViolationError("Sponsored child name is blank")

        child, child_created = self.find_or_create_child(name)
        target = self.sponsor_child(donor, child, amount_cents, subscription_id, start_date)
        target.child_created = child_created
        return target

    def sponsor_child(
        self,
        donor: Donor,
        child: Child,
        amount_cents: int,
        subscription_id: Optional[str] = None,
        start_date: Optional[date] = None,
    ) -> SponsorshipTarget:
        """Resolve project and active sponsorship for an existing child."""
        if amount_cents is None or amount_cents <= 0:
            raise InvariantViolationError(
                "Sponsorship amount must be positive",
                details={"child": child.name, "amount": amount_cents},
            )

        project, project_created = self.sponsorship_project_for(child)

        sponsorship = (
            self.db.query(Sponsorship)
            .filter(
                Sponsorship.donor_id == donor.id,
                Sponsorship.child_id == child.id,
                Sponsorship.end_date.is_(None),
            )
            .order_by(Sponsorship.created_at)
            .first()
        )
        sponsorship_created = False

        if sponsorship is None:
            sponsorship = Sponsorship(
                donor=donor,
                child=child,
                project=project,
                monthly_amount=amount_cents,
                stripe_subscription_id=subscription_id,
                start_date=start_date,
            )
            self.db.add(sponsorship)
            self.db.flush()
            sponsorship_created = True
            logger.info(
                "sponsorship_created",
                sponsorship_id=str(sponsorship.id),
                child=child.name,
                monthly_amount=amount_cents,
            )
        elif subscription_id and not sponsorship.stripe_subscription_id:
            sponsorship.stripe_subscription_id = subscription_id
            self.db.flush()

        return SponsorshipTarget(
            child=child,
            project=sponsorship.project,
            sponsorship=sponsorship,
            project_created=project_created,
            sponsorship_created=sponsorship_created,
        )

    def find_or_create_child(self, name: str):
        """Find a child by exact name, or create it. Returns (child, created)."""
        child = (
            self.db.query(Child)
            .filter(Child.name == name)
            .order_by(Child.created_at)
            .first()
        )
        if child is not None:
            return child, False

        child = Child(name=name)
        self.db.add(child)
        self.db.flush()
        logger.info("child_created", child_id=str(child.id), name=name)
        return child, True

    def sponsorship_project_for(self, child: Child):
        """
        The child's sponsorship project. Returns (project, created).

        Reuses the project of any existing sponsorship of the child, ended
        ones included, before creating "Sponsor <name>".
        """
        existing = (
            self.db.query(Project)
            .join(Sponsorship, Sponsorship.project_id == Project.id)
            .filter(
                Sponsorship.child_id == child.id,
                Project.project_type == ProjectType.SPONSORSHIP,
            )
            .order_by(Sponsorship.created_at)
            .first()
        )
        if existing is not None:
            return existing, False

        project = Project(
            title=f"Sponsor {child.name}",
            project_type=ProjectType.SPONSORSHIP,
            system=False,
        )
        self.db.add(project)
        self.db.flush()
        logger.info("sponsorship_project_created", project_id=str(project.id), child=child.name)
        return project, True

    def project_for(self, intent: Intent) -> Project:
        """
        Project for a non-sponsorship intent.

        Raises:
            InvariantViolationError: If called with a SponsorshipIntent.
        """
        if isinstance(intent, GeneralIntent):
            return self.general_project()
        if isinstance(intent, CampaignIntent):
            return self.campaign_project(intent.campaign_id)
        if isinstance(intent, UnmappedIntent):
            return self.unmapped_project(intent)
        if isinstance(intent, SponsorshipIntent):
            raise InvariantViolationError("Sponsorship intents resolve per child, not to one project")
        raise InvariantViolationError(f"Unknown intent {type(intent).__name__}")

    def general_project(self) -> Project:
        """The singleton general donation system project."""
        return self._find_or_create_project(
            GENERAL_PROJECT_TITLE,
            project_type=ProjectType.GENERAL,
            system=True,
        )

    def campaign_project(self, campaign_id: str) -> Project:
        return self._find_or_create_project(
            f"Campaign {campaign_id}",
            project_type=ProjectType.CAMPAIGN,
        )

    def unmapped_project(self, intent: UnmappedIntent) -> Project:
        """Placeholder project for text nobody could classify."""
        return self._find_or_create_project(
            f"{UNMAPPED_PREFIX}{intent.truncated_text}",
            project_type=ProjectType.GENERAL,
            description=intent.raw_text,
        )

    def _find_or_create_project(
        self,
        title: str,
        project_type: ProjectType,
        system: bool = False,
        description: Optional[str] = None,
    ) -> Project:
        project = (
            self.db.query(Project)
            .filter(Project.title == title, Project.project_type == project_type)
            .order_by(Project.created_at)
            .first()
        )
        if project is not None:
            return project

        project = Project(
            title=title,
            project_type=project_type,
            system=system,
            description=description,
        )
        self.db.add(project)
        self.db.flush()
        logger.info(
            "project_created",
            project_id=str(project.id),
            title=title,
            project_type=project_type.value,
        )
        return project
