"""
Tests for the entity materializer.
"""
from datetime import date

import pytest

from donation_ledger.exceptions import InvariantViolationError
from donation_ledger.models import Child, Donor, Project, ProjectType, Sponsorship
from donation_ledger.services.description_classifier import (
    CampaignIntent,
    GeneralIntent,
    SponsorshipIntent,
    UnmappedIntent,
)
from donation_ledger.services.entity_materializer import EntityMaterializer


@pytest.fixture
def materializer(db_session):
    return EntityMaterializer(db_session)


@pytest.fixture
def donor(db_session):
    donor = Donor(name="Jane", email="jane@example.com")
    db_session.add(donor)
    db_session.flush()
    return donor


class TestSponsorship:
    """Child, project and sponsorship reuse."""

    def test_first_payment_creates_everything(self, db_session, materializer, donor):
        target = materializer.materialize_sponsorship(donor, "Sangwan", 10000, "sub_1", date(2024, 1, 1))

        assert target.child_created and target.project_created and target.sponsorship_created
        assert target.child.name == "Sangwan"
        assert target.project.title == "Sponsor Sangwan"
        assert target.project.project_type == ProjectType.SPONSORSHIP
        assert target.sponsorship.monthly_amount == 10000
        assert target.sponsorship.stripe_subscription_id == "sub_1"
        assert target.sponsorship.start_date == date(2024, 1, 1)

    def test_second_payment_reuses_everything(self, db_session, materializer, donor):
        first = materializer.materialize_sponsorship(donor, "Sangwan", 10000)
        second = materializer.materialize_sponsorship(donor, "Sangwan", 15000)

        assert not (second.child_created or second.project_created or second.sponsorship_created)
        assert second.sponsorship.id == first.sponsorship.id
        # Existing commitments keep their amount
        assert second.sponsorship.monthly_amount == 10000
        assert db_session.query(Child).count() == 1
        assert db_session.query(Project).count() == 1
        assert db_session.query(Sponsorship).count() == 1

    def test_second_donor_shares_child_project(self, db_session, materializer, donor):
        other = Donor(name="Bob", email="bob@example.com")
        db_session.add(other)
        db_session.flush()

        first = materializer.materialize_sponsorship(donor, "Nok", 5000)
        second = materializer.materialize_sponsorship(other, "Nok", 5000)

        assert second.project.id == first.project.id
        assert second.sponsorship.id != first.sponsorship.id
        assert db_session.query(Project).filter(Project.project_type == ProjectType.SPONSORSHIP).count() == 1

    def test_ended_sponsorship_not_reused(self, db_session, materializer, donor):
        first = materializer.materialize_sponsorship(donor, "Nok", 5000)
        first.sponsorship.end_date = date(2024, 1, 31)
        db_session.flush()

        second = materializer.materialize_sponsorship(donor, "Nok", 6000)

        assert second.sponsorship_created is True
        assert second.sponsorship.monthly_amount == 6000
        assert second.project.id == first.project.id

    def test_subscription_attached_to_existing(self, db_session, materializer, donor):
        first = materializer.materialize_sponsorship(donor, "Nok", 5000)
        materializer.materialize_sponsorship(donor, "Nok", 5000, subscription_id="sub_2")

        assert first.sponsorship.stripe_subscription_id == "sub_2"

    def test_blank_name_rejected(self, materializer, donor):
        with pytest.raises(InvariantViolationError):
            materializer.materialize_sponsorship(donor, "  ", 5000)

    def test_non_positive_amount_rejected(self, materializer, donor):
        with pytest.raises(InvariantViolationError):
            materializer.materialize_sponsorship(donor, "Nok", 0)

    def test_sponsor_existing_child(self, db_session, materializer, donor):
        child = Child(name="Pim")
        db_session.add(child)
        db_session.flush()

        target = materializer.sponsor_child(donor, child, 3000)

        assert target.child.id == child.id
        assert target.child_created is False
        assert target.project.title == "Sponsor Pim"


class TestProjects:
    """Non-sponsorship projects."""

    def test_general_project_singleton(self, db_session, materializer):
        first = materializer.project_for(GeneralIntent())
        second = materializer.general_project()

        assert first.id == second.id
        assert first.title == "General Donation"
        assert first.system is True
        assert first.project_type == ProjectType.GENERAL

    def test_campaign_project(self, db_session, materializer):
        project = materializer.project_for(CampaignIntent(campaign_id="42"))

        assert project.title == "Campaign 42"
        assert project.project_type == ProjectType.CAMPAIGN
        assert materializer.campaign_project("42").id == project.id
        assert materializer.campaign_project("43").id != project.id

    def test_unmapped_project(self, db_session, materializer):
        intent = UnmappedIntent(raw_text="Random unmapped text", truncated_text="Random unmapped text")
        project = materializer.project_for(intent)

        assert project.title == "UNMAPPED: Random unmapped text"
        assert project.description == "Random unmapped text"
        assert project.system is False
        assert materializer.unmapped_project(intent).id == project.id

    def test_distinct_unmapped_text_distinct_projects(self, db_session, materializer):
        first = materializer.unmapped_project(UnmappedIntent("Gala dinner", "Gala dinner"))
        second = materializer.unmapped_project(UnmappedIntent("Bake sale", "Bake sale"))

        assert first.id != second.id

    def test_sponsorship_intent_rejected(self, materializer):
        with pytest.raises(InvariantViolationError):
            materializer.project_for(SponsorshipIntent(child_names=("Nok",)))
