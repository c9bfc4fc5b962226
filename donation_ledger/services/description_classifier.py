"""
Description classifier for payment records.

Turns the free-text description of a payment (Stripe plan nickname or charge
description) into a typed intent that says where the money should go.
"""
import re
from dataclasses import dataclass
from typing import Optional, Tuple, Union

import structlog

from donation_ledger.config import get_settings

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SponsorshipIntent:
    """Payment sponsors one or more children, named in the description."""

    child_names: Tuple[str, ...]


@dataclass(frozen=True)
class GeneralIntent:
    """Payment goes to the general fund."""


@dataclass(frozen=True)
class CampaignIntent:
    """Payment goes to a numbered fundraising campaign."""

    campaign_id: str


@dataclass(frozen=True)
class UnmappedIntent:
    """Description could not be classified; flagged for admin review."""

    raw_text: str
    truncated_text: str


Intent = Union[SponsorshipIntent, GeneralIntent, CampaignIntent, UnmappedIntent]


class DescriptionClassifier:
    """
    Pattern-based classifier for payment descriptions.

    Classification cascade (first match wins, case-insensitive):
    1. "Sponsorship Donation for <names>" → SponsorshipIntent
    2. "$<amount> - General Monthly Donation" → GeneralIntent
    3. "Donation for Campaign <id>" → CampaignIntent
    4. Bare email address or Stripe boilerplate → GeneralIntent
    5. Blank text → GeneralIntent
    6. Anything else → UnmappedIntent
    """

    SPONSORSHIP_PATTERN = re.compile(r"sponsorship donation for\s+(.+)", re.IGNORECASE | re.DOTALL)
    SPONSORSHIP_PREFIX = re.compile(r"^(?:monthly\s+)?sponsorship donation for\s+", re.IGNORECASE)
    GENERAL_PATTERN = re.compile(r"\$[\d,]+(?:\.\d+)?\s*-\s*general monthly donation", re.IGNORECASE)
    CAMPAIGN_PATTERN = re.compile(r"donation for campaign\s+([\w-]+)", re.IGNORECASE)
    EMAIL_PATTERN = re.compile(r"[\w+\-.]+@[a-z\d\-]+(?:\.[a-z\d\-]+)*\.[a-z]+", re.IGNORECASE)

    # Descriptions Stripe generates itself; the money is a general gift
    STRIPE_BOILERPLATE_PATTERNS = [
        re.compile(r"invoice [a-z0-9-]+", re.IGNORECASE),
        re.compile(r"\d+"),
        re.compile(r"subscription creation", re.IGNORECASE),
        re.compile(r"captured via payment app", re.IGNORECASE),
        re.compile(r"payment for stripe app", re.IGNORECASE),
    ]

    def __init__(self, unmapped_max_length: Optional[int] = None):
        """
        Initialize classifier.

        Args:
            unmapped_max_length: Length bound for unmapped project titles.
        """
        self._unmapped_max_length = unmapped_max_length or get_settings().unmapped_title_max_length

    def classify(self, text: Optional[str]) -> Intent:
        """
        Classify a payment description.

        Args:
            text: Description text, possibly empty.

        Returns:
            The intent the description expresses. Never raises.
        """
        if text is None:
            return GeneralIntent()
        if not isinstance(text, str):
            text = str(text)

        stripped = text.strip()
        if not stripped:
            return GeneralIntent()

        child_names = self._extract_child_names(stripped)
        if child_names:
            return SponsorshipIntent(child_names=child_names)

        if self.GENERAL_PATTERN.search(stripped):
            return GeneralIntent()

        campaign = self.CAMPAIGN_PATTERN.search(stripped)
        if campaign:
            return CampaignIntent(campaign_id=campaign.group(1))

        # Legacy exports put the payer email in the description column
        if self.EMAIL_PATTERN.fullmatch(stripped):
            return GeneralIntent()

        if any(pattern.fullmatch(stripped) for pattern in self.STRIPE_BOILERPLATE_PATTERNS):
            return GeneralIntent()

        logger.info("description_unmapped", description=stripped[: self._unmapped_max_length])
        return UnmappedIntent(
            raw_text=stripped,
            truncated_text=stripped[: self._unmapped_max_length].rstrip(),
        )

    def _extract_child_names(self, text: str) -> Tuple[str, ...]:
        """
        Pull child names out of a sponsorship description.

        Multi-child plans repeat the prefix per child:
        "Sponsorship Donation for Wan,Monthly Sponsorship Donation for Orawan".
        """
        match = self.SPONSORSHIP_PATTERN.search(text)
        if not match:
            return ()

        names = []
        for segment in match.group(1).split(","):
            name = self.SPONSORSHIP_PREFIX.sub("", segment.strip()).strip()
            if name:
                names.append(name)
        return tuple(names)


# Singleton instance
_classifier_instance: Optional[DescriptionClassifier] = None


def get_description_classifier() -> DescriptionClassifier:
    """Get singleton DescriptionClassifier instance."""
    global _classifier_instance
    if _classifier_instance is None:
        _classifier_instance = DescriptionClassifier()
    return _classifier_instance
