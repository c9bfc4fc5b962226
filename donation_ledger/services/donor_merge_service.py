"""
Donor merge service.

Folds duplicate donors into one surviving donor. Merged donors stay in the
table, soft-deleted, with a forward pointer so that later payments carrying
their email or customer id still land on the survivor.
"""
import uuid
from dataclasses import dataclass, field
from typing import List, Sequence, Union

import structlog
from sqlalchemy.orm import Session

from donation_ledger.exceptions import DonorMergeError, MergeCycleError
from donation_ledger.models import Donation, Donor, Sponsorship
from donation_ledger.services.donor_resolver import DonorResolver

logger = structlog.get_logger(__name__)

DonorId = Union[str, uuid.UUID]


@dataclass
class MergeResult:
    """Outcome of a donor merge."""

    target: Donor
    donations_reassigned: int = 0
    sponsorships_reassigned: int = 0
    merged_donor_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "target_id": str(self.target.id),
            "donations_reassigned": self.donations_reassigned,
            "sponsorships_reassigned": self.sponsorships_reassigned,
            "merged_donor_ids": list(self.merged_donor_ids),
        }


class DonorMergeService:
    """Merges source donors into a target donor in one transaction."""

    def __init__(self, db: Session):
        self.db = db
        self._resolver = DonorResolver(db)

    def merge(self, source_ids: Sequence[DonorId], target_id: DonorId) -> MergeResult:
        """
        Merge donors.

        Args:
            source_ids: Donors to fold into the target.
            target_id: Donor that survives.

        Returns:
            MergeResult with the surviving donor and reassignment counts.

        Raises:
            DonorMergeError: If the request is invalid; nothing is changed.
        """
        target_uuid = self._parse_id(target_id)
        source_uuids = []
        for source_id in source_ids or []:
            source_uuid = self._parse_id(source_id)
            if source_uuid not in source_uuids:
                source_uuids.append(source_uuid)

        if not source_uuids:
            raise DonorMergeError("At least one source donor is required")
        if target_uuid in source_uuids:
            raise DonorMergeError(
                "Target donor cannot also be a source",
                details={"target_id": str(target_uuid)},
            )

        target = self.db.get(Donor, target_uuid)
        if target is None:
            raise DonorMergeError("Target donor not found", details={"target_id": str(target_uuid)})

        try:
            target = self._resolver.follow_merge_chain(target)
        except MergeCycleError as e:
            raise DonorMergeError("Target donor has a broken merge chain", details=e.details)

        if target.is_discarded:
            raise DonorMergeError("Target donor is discarded", details={"target_id": str(target.id)})

        sources = []
        for source_uuid in source_uuids:
            source = self.db.get(Donor, source_uuid)
            if source is None:
                raise DonorMergeError("Source donor not found", details={"source_id": str(source_uuid)})
            if source.id == target.id:
                raise DonorMergeError(
                    "Source donor already resolves to the target",
                    details={"source_id": str(source_uuid)},
                )
            sources.append(source)

        result = MergeResult(target=target, merged_donor_ids=[str(s.id) for s in sources])
        source_db_ids = [s.id for s in sources]

        try:
            result.donations_reassigned = (
                self.db.query(Donation)
                .filter(Donation.donor_id.in_(source_db_ids))
                .update({Donation.donor_id: target.id}, synchronize_session="fetch")
            )
            result.sponsorships_reassigned = (
                self.db.query(Sponsorship)
                .filter(Sponsorship.donor_id.in_(source_db_ids))
                .update({Sponsorship.donor_id: target.id}, synchronize_session="fetch")
            )

            for source in sources:
                source.merged_into_id = target.id
                source.discard()
                # Inherit identity the target lacks
                if not target.stripe_customer_id and source.stripe_customer_id:
                    target.stripe_customer_id = source.stripe_customer_id
                if not target.email and source.email:
                    target.email = source.email

            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("donor_merge_failed", target_id=str(target.id), error=str(e))
            raise

        self.db.refresh(target)
        logger.info(
            "donors_merged",
            target_id=str(target.id),
            source_ids=result.merged_donor_ids,
            donations_reassigned=result.donations_reassigned,
            sponsorships_reassigned=result.sponsorships_reassigned,
        )
        return result

    @staticmethod
    def _parse_id(value: DonorId) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(str(value))
        except ValueError:
            raise DonorMergeError("Invalid donor id", details={"donor_id": str(value)})
