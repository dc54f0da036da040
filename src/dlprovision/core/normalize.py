"""Normalization and validation utilities for provisioning input.

This module provides a single source of truth for:
- Group names (display name and whitespace-free slug)
- Owner lists (comma-delimited input from the caller)
- Owner domain validation against the configured mail domain

All normalization happens once at the point of ingestion (the CLI) so that
downstream code can rely on consistent values.
"""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

OWNER_DELIMITER = ","


@dataclass(frozen=True)
class NormalizedGroup:
    """A group name with its derived machine identifiers."""

    display_name: str
    slug: str

    @property
    def alias(self) -> str:
        """Return the Exchange alias for the group."""
        return self.slug

    def primary_address(self, domain: str) -> str:
        """Return the primary SMTP address for the group in the given domain."""
        return f"{self.slug}@{normalize_domain(domain)}"


def make_slug(display_name: str) -> str:
    """Remove every whitespace character from a display name.

    Args:
        display_name: Group display name, e.g. "Sales Team EMEA"

    Returns:
        The name with all whitespace removed, e.g. "SalesTeamEMEA"
    """
    return "".join(display_name.split())


def normalize_group(name: str) -> NormalizedGroup:
    """Build a NormalizedGroup from a caller-supplied group name."""
    display_name = name.strip()
    return NormalizedGroup(display_name=display_name, slug=make_slug(display_name))


def split_owners(raw_owners: str | None) -> list[str]:
    """Split a comma-delimited owner list into trimmed candidates.

    Order is preserved and empty pieces are kept (they fail validation
    later rather than silently vanishing), so ``""`` yields ``[""]`` and
    ``"a@x.com,,b@x.com"`` yields three candidates.

    Args:
        raw_owners: Owner identities separated by commas

    Returns:
        List of trimmed owner candidates
    """
    return [piece.strip() for piece in (raw_owners or "").split(OWNER_DELIMITER)]


def normalize_domain(domain: str) -> str:
    """Normalize a mail domain to lowercase without a leading '@'."""
    return domain.strip().lstrip("@").lower()


def is_allowed_domain(candidate: str, domain: str) -> bool:
    """Check whether an owner candidate belongs to the allowed domain.

    Exchange matches addresses case-insensitively, so the suffix check
    does too.

    Args:
        candidate: Owner identity (email address)
        domain: Allowed domain, with or without a leading '@'

    Returns:
        True if the candidate ends with "@<domain>"
    """
    if not candidate:
        return False
    return candidate.lower().endswith(f"@{normalize_domain(domain)}")
