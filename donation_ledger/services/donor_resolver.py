"""
Donor resolution for imported payments.

Finds the donor a payment belongs to, creating or updating it as needed and
following merge forward pointers to the surviving donor.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from donation_ledger.config import get_settings
from donation_ledger.exceptions import MergeCycleError
from donation_ledger.models import Donation, Donor
from donation_ledger.models.types import as_naive_utc

logger = structlog.get_logger(__name__)

# Donors never touched by a dated record compare as older than anything
EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class DonorIdentity:
    """Identity fields a payment record carries about its payer."""

    name: Optional[str] = None
    email: Optional[str] = None
    customer_id: Optional[str] = None

    @property
    def normalized_email(self) -> Optional[str]:
        email = (self.email or "").strip()
        return email.lower() or None

    @property
    def normalized_name(self) -> Optional[str]:
        name = (self.name or "").strip()
        return name or None

    @property
    def normalized_customer_id(self) -> Optional[str]:
        customer_id = (self.customer_id or "").strip()
        return customer_id or None


@dataclass
class DonorResolution:
    """Outcome of resolving a donor."""

    donor: Donor
    created: bool
    updated: bool = False
    matched_by: str = "none"  # "customer_id", "email" or "none"


class DonorResolver:
    """
    Resolves payer identities to Donor rows.

    Lookup priority:
    1. Stripe customer id (donor of an earlier donation, then the donor's own id)
    2. Case-insensitive exact email
    3. Create a new donor

    Records without email and customer id always create a new donor;
    names alone are never matched.
    """

    def __init__(self, db: Session, max_chain_depth: Optional[int] = None):
        self.db = db
        self._max_chain_depth = max_chain_depth or get_settings().merge_chain_max_depth

    def resolve(self, identity: DonorIdentity, timestamp: datetime) -> DonorResolution:
        """
        Find, create or update the donor for a payment.

        Args:
            identity: Payer identity from the payment record.
            timestamp: When the payment happened; decides whether the record
                may overwrite the donor's name and email.

        Returns:
            DonorResolution with the surviving donor.

        Raises:
            MergeCycleError: If the donor's forward pointers never terminate.
        """
        timestamp = as_naive_utc(timestamp)
        donor, matched_by = self._lookup(identity)

        if donor is None:
            donor = Donor(
                name=identity.normalized_name,
                email=identity.normalized_email,
                stripe_customer_id=identity.normalized_customer_id,
                last_updated_at=timestamp,
            )
            self.db.add(donor)
            self.db.flush()
            logger.info(
                "donor_created",
                donor_id=str(donor.id),
                has_email=donor.email is not None,
                has_customer_id=donor.stripe_customer_id is not None,
            )
            return DonorResolution(donor=donor, created=True)

        donor = self.follow_merge_chain(donor)
        updated = self._apply_newer_fields(donor, identity, timestamp)
        self.db.flush()

        return DonorResolution(donor=donor, created=False, updated=updated, matched_by=matched_by)

    def follow_merge_chain(self, donor: Donor) -> Donor:
        """
        Follow forward pointers to the surviving donor.

        Raises:
            MergeCycleError: On a cycle or a chain longer than the configured bound.
        """
        seen: List[str] = [str(donor.id)]
        current = donor

        for _ in range(self._max_chain_depth):
            if current.merged_into_id is None:
                return current

            next_donor = self.db.get(Donor, current.merged_into_id)
            if next_donor is None:
                # Dangling pointer: the donor it names is gone, stop here
                logger.warning(
                    "donor_merge_pointer_dangling",
                    donor_id=str(current.id),
                    merged_into_id=str(current.merged_into_id),
                )
                return current

            if str(next_donor.id) in seen:
                logger.error("donor_merge_cycle", chain=seen + [str(next_donor.id)])
                raise MergeCycleError(str(donor.id), chain=seen + [str(next_donor.id)])

            seen.append(str(next_donor.id))
            current = next_donor

        if current.merged_into_id is None:
            return current

        logger.error("donor_merge_chain_too_long", chain=seen, max_depth=self._max_chain_depth)
        raise MergeCycleError(str(donor.id), chain=seen)

    def _lookup(self, identity: DonorIdentity):
        customer_id = identity.normalized_customer_id
        if customer_id:
            donor = self._find_by_customer_id(customer_id)
            if donor is not None:
                return donor, "customer_id"

        email = identity.normalized_email
        if email:
            donor = (
                self.db.query(Donor)
                .filter(func.lower(Donor.email) == email)
                .order_by(Donor.discarded_at.isnot(None), Donor.created_at)
                .first()
            )
            if donor is not None:
                return donor, "email"

        return None, "none"

    def _find_by_customer_id(self, customer_id: str) -> Optional[Donor]:
        donation = (
            self.db.query(Donation)
            .filter(Donation.stripe_customer_id == customer_id)
            .order_by(Donation.created_at)
            .first()
        )
        if donation is not None:
            return donation.donor

        return (
            self.db.query(Donor)
            .filter(Donor.stripe_customer_id == customer_id)
            .order_by(Donor.discarded_at.isnot(None), Donor.created_at)
            .first()
        )

    def _apply_newer_fields(self, donor: Donor, identity: DonorIdentity, timestamp: datetime) -> bool:
        """Overwrite name/email from a newer record, never with blanks."""
        changed = False

        customer_id = identity.normalized_customer_id
        if customer_id and not donor.stripe_customer_id:
            donor.stripe_customer_id = customer_id
            changed = True

        last_updated = donor.last_updated_at or EPOCH
        if timestamp <= last_updated:
            return changed

        name = identity.normalized_name
        if name and name != donor.name:
            donor.name = name
            changed = True

        email = identity.normalized_email
        if email and email != (donor.email or "").lower():
            donor.email = email
            changed = True

        donor.last_updated_at = timestamp
        if changed:
            logger.info("donor_updated", donor_id=str(donor.id))
        return changed
