"""CLI script to provision a distribution group and its owners."""

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import dataclass

from dlprovision.core.certificate import CertificateError, materialize_certificate
from dlprovision.core.config import get_exchange_credentials, load_provisioning_config
from dlprovision.core.normalize import normalize_group, split_owners
from dlprovision.exchange.client import ExchangeOnlineClient
from dlprovision.exchange.provisioning import GroupCreationError, GroupProvisioner
from dlprovision.exchange.report import ReportSummary, aggregate, write_step_summary
from dlprovision.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class GroupRequest:
    """The caller-supplied parameters for one run."""

    name: str
    raw_owners: str


def emit_report(summary: ReportSummary, settings: Settings, as_json: bool = False) -> None:
    """Print the summary to stdout and the CI step summary (if configured)."""
    logger.info("")
    logger.info("=" * 50)
    logger.info(f"Results: {summary.group_name}")
    logger.info("=" * 50)
    logger.info(f"  Connection: {summary.connection_status.value}")
    logger.info(f"  Operation:  {summary.operation_status.value}")
    for outcome in summary.owner_outcomes:
        if outcome.accepted:
            logger.info(f"  Owner {outcome.candidate}: {outcome.reason.value}")
        else:
            logger.warning(f"  Owner {outcome.candidate or '(empty)'}: {outcome.reason.value}")

    print(summary.to_json() if as_json else summary.to_text())

    if settings.has_step_summary:
        write_step_summary(summary, settings.github_step_summary)


async def run_provisioning(
    request: GroupRequest,
    dry_run: bool = False,
    as_json: bool = False,
) -> int:
    """Provision the requested group and owners.

    Args:
        request: Group name and comma-delimited owners
        dry_run: If True, don't make changes
        as_json: If True, print the summary as JSON

    Returns:
        Exit code (1 only when the run aborted early)
    """
    settings = get_settings()
    config = load_provisioning_config(dry_run=dry_run)
    group = normalize_group(request.name)
    candidates = split_owners(request.raw_owners)

    logger.info("=" * 50)
    logger.info("Distribution Group Provisioning")
    logger.info("=" * 50)

    if dry_run:
        logger.info("DRY RUN - no changes will be made")

    logger.info(f"Group: {group.display_name} ({group.primary_address(config.domain)})")
    logger.info(f"Owner candidates: {len(candidates)}")

    def fail(connected: bool, error: str) -> int:
        logger.error(error)
        emit_report(
            aggregate(None, [], group.display_name, connected=connected, error=error),
            settings,
            as_json=as_json,
        )
        return 1

    try:
        creds = get_exchange_credentials()
    except ValueError as e:
        return fail(False, str(e))

    try:
        with materialize_certificate(creds) as cert:
            client = ExchangeOnlineClient(
                credentials=creds,
                certificate_path=cert.path if cert else None,
                timeout=settings.powershell_timeout,
            )
            try:
                if not await client.connect():
                    return fail(False, "Failed to connect to Exchange Online.")

                provisioner = GroupProvisioner(client, config)
                try:
                    result = await provisioner.provision(group, candidates)
                except GroupCreationError as e:
                    return fail(True, str(e))
            finally:
                await client.close()
    except CertificateError as e:
        return fail(False, str(e))

    emit_report(
        aggregate(result, result.owners, group.display_name),
        settings,
        as_json=as_json,
    )
    return 0


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Ensure a distribution group exists and add owners to it",
    )
    parser.add_argument(
        "--name",
        default=os.getenv("GROUP_NAME"),
        help="Group display name (default: $GROUP_NAME)",
    )
    parser.add_argument(
        "--owners",
        default=os.getenv("GROUP_OWNERS", ""),
        help="Comma-separated owner email addresses (default: $GROUP_OWNERS)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the summary as JSON",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    if not args.name or not args.name.strip():
        parser.error("--name (or GROUP_NAME) is required")

    # Logs go to stderr so stdout carries only the summary
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(
        run_provisioning(
            GroupRequest(name=args.name, raw_owners=args.owners),
            dry_run=args.dry_run,
            as_json=args.json,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
