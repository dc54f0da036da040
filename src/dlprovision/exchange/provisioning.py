"""Distribution group provisioning and owner reconciliation.

Ensures a named distribution group exists in Exchange Online (creating it
when absent) and registers the requested owners on it. Owners are accepted
only from the configured mail domain; each owner is processed on its own
and a failure for one owner never stops the others.

An existing group is not an error: the group is reused and owners are
reconciled against it.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from dlprovision.core.config import ProvisioningConfig
from dlprovision.core.normalize import NormalizedGroup, is_allowed_domain
from dlprovision.exchange.client import ExchangeError, ExchangeGroup, ExchangeOnlineClient

logger = logging.getLogger(__name__)

GROUP_TYPE = "Distribution"


class GroupCreationError(Exception):
    """Raised when the group could not be looked up or created."""


class OwnerReason(Enum):
    """Why an owner candidate ended up accepted or rejected."""

    DOMAIN_REJECTED = "DomainRejected"
    RECIPIENT_NOT_FOUND = "RecipientNotFound"
    REGISTRATION_FAILED = "RegistrationFailed"
    ADDED = "Added"


@dataclass(frozen=True)
class OwnerOutcome:
    """Result of reconciling a single owner candidate."""

    candidate: str
    accepted: bool
    reason: OwnerReason
    detail: str = ""

    @classmethod
    def added(cls, candidate: str, detail: str = "") -> "OwnerOutcome":
        return cls(candidate=candidate, accepted=True, reason=OwnerReason.ADDED, detail=detail)

    @classmethod
    def rejected(cls, candidate: str, reason: OwnerReason, detail: str = "") -> "OwnerOutcome":
        return cls(candidate=candidate, accepted=False, reason=reason, detail=detail)


@dataclass
class ProvisioningResult:
    """Result of resolving or creating the group."""

    group_existed: bool
    created: bool
    message: str
    group_name: str = ""
    group_email: str = ""
    group: ExchangeGroup | None = None
    owners: list[OwnerOutcome] = field(default_factory=list)

    @property
    def owners_added(self) -> list[str]:
        """Candidates that were registered as owners."""
        return [o.candidate for o in self.owners if o.accepted]

    @property
    def owners_failed(self) -> list[str]:
        """Candidates that could not be registered."""
        return [o.candidate for o in self.owners if not o.accepted]


class GroupProvisioner:
    """Provision a distribution group and its owners via Exchange Online."""

    def __init__(self, client: ExchangeOnlineClient, config: ProvisioningConfig) -> None:
        """Initialize the provisioner.

        Args:
            client: Exchange Online client used for all directory calls
            config: Provisioning config (domain, dry-run)
        """
        self.client = client
        self.config = config

    @property
    def domain(self) -> str:
        return self.config.domain

    async def ensure_group(self, group: NormalizedGroup) -> ProvisioningResult:
        """Get the group if it exists, otherwise create it.

        Args:
            group: Normalized group name

        Returns:
            ProvisioningResult describing whether the group existed or was created

        Raises:
            GroupCreationError: If the lookup failed, or the group did not exist
                and creation failed
        """
        email = group.primary_address(self.domain)

        try:
            existing = await self.client.get_distribution_group(email)
        except ExchangeError as e:
            raise GroupCreationError(str(e)) from e

        if existing:
            logger.info(f"Group already exists: {existing.display_name} ({email})")
            return ProvisioningResult(
                group_existed=True,
                created=False,
                message="Group already exists.",
                group_name=group.display_name,
                group_email=email,
                group=existing,
            )

        if self.config.dry_run:
            logger.info(f"Would create distribution group: {group.display_name} ({email})")
            return ProvisioningResult(
                group_existed=False,
                created=True,
                message=f"Would create distribution group {group.display_name}.",
                group_name=group.display_name,
                group_email=email,
            )

        created = await self.client.create_distribution_group(
            name=group.display_name,
            display_name=group.display_name,
            alias=group.alias,
            primary_smtp_address=email,
            group_type=GROUP_TYPE,
        )
        if created is None:
            raise GroupCreationError(f"Failed to create distribution group {group.display_name}")

        return ProvisioningResult(
            group_existed=False,
            created=True,
            message=f"Successfully created distribution group {group.display_name}.",
            group_name=group.display_name,
            group_email=email,
            group=created,
        )

    async def add_owner(
        self,
        group_email: str,
        candidate: str,
        current_owners: set[str] | frozenset[str] = frozenset(),
    ) -> OwnerOutcome:
        """Validate one owner candidate and register it on the group."""
        if not is_allowed_domain(candidate, self.domain):
            logger.warning(f"Skipping owner '{candidate}': not in domain {self.domain}")
            return OwnerOutcome.rejected(
                candidate, OwnerReason.DOMAIN_REJECTED, f"not in domain {self.domain}"
            )

        if candidate.lower() in current_owners:
            logger.info(f"{candidate} is already an owner of {group_email}")
            return OwnerOutcome.added(candidate, "already an owner")

        recipient = await self.client.get_recipient(candidate)
        if recipient is None:
            logger.error(f"Owner '{candidate}' not found in Exchange Online")
            return OwnerOutcome.rejected(
                candidate, OwnerReason.RECIPIENT_NOT_FOUND, "recipient not found"
            )

        if self.config.dry_run:
            logger.info(f"Would add owner {candidate} to {group_email}")
            return OwnerOutcome.added(candidate, "dry run")

        if not await self.client.add_distribution_group_manager(group_email, candidate):
            return OwnerOutcome.rejected(
                candidate, OwnerReason.REGISTRATION_FAILED, "Set-DistributionGroup failed"
            )

        return OwnerOutcome.added(candidate)

    async def reconcile_owners(
        self,
        result: ProvisioningResult,
        candidates: list[str],
    ) -> list[OwnerOutcome]:
        """Register each owner candidate on the group, in order.

        Args:
            result: Result of ensure_group for the target group
            candidates: Owner candidates from split_owners

        Returns:
            One OwnerOutcome per candidate (also stored on ``result.owners``)
        """
        current_owners: set[str] = set()
        if result.group_existed:
            current_owners = set(
                await self.client.get_distribution_group_managers(result.group_email)
            )
            logger.debug(f"Current owners of {result.group_email}: {sorted(current_owners)}")

        outcomes = []
        for candidate in candidates:
            outcome = await self.add_owner(result.group_email, candidate, current_owners)
            outcomes.append(outcome)

        result.owners = outcomes
        return outcomes

    async def provision(
        self, group: NormalizedGroup, candidates: list[str]
    ) -> ProvisioningResult:
        """Ensure the group exists and reconcile its owners.

        Raises:
            GroupCreationError: If the group could not be looked up or created
        """
        logger.info(f"Processing {group.display_name} ({len(candidates)} owner candidates)")
        result = await self.ensure_group(group)
        await self.reconcile_owners(result, candidates)
        logger.info(
            f"Owners for {group.display_name}: "
            f"{len(result.owners_added)} added, {len(result.owners_failed)} failed"
        )
        if result.owners_failed:
            logger.warning(f"Owners not added: {', '.join(result.owners_failed)}")
        return result
