"""Models package."""
from donation_ledger.models.child import Child
from donation_ledger.models.donation import Donation, DonationStatus
from donation_ledger.models.donor import Donor
from donation_ledger.models.project import Project, ProjectType
from donation_ledger.models.sponsorship import Sponsorship
from donation_ledger.models.stripe_invoice import StripeInvoice

__all__ = [
    "Child", "Donation", "DonationStatus", "Donor",
    "Project", "ProjectType", "Sponsorship", "StripeInvoice",
]
