"""Status aggregation and report output for a provisioning run."""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from dlprovision.exchange.provisioning import OwnerOutcome, ProvisioningResult

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Outcome of establishing the Exchange Online session."""

    SUCCESS = "Success"
    FAILED = "Failed"


class OperationStatus(Enum):
    """Overall outcome of the provisioning run."""

    SUCCESS = "Success"
    PARTIAL_SUCCESS = "PartialSuccess"
    FAILED = "Failed"


@dataclass
class ReportSummary:
    """The structured summary emitted at the end of a run."""

    connection_status: ConnectionStatus
    operation_status: OperationStatus
    group_name: str
    owners_added_any: bool
    message: str
    owner_outcomes: list[OwnerOutcome] = field(default_factory=list)

    def as_key_values(self) -> dict[str, str]:
        """Flatten the summary into key/value pairs."""
        return {
            "ConnectionStatus": self.connection_status.value,
            "OperationStatus": self.operation_status.value,
            "GroupName": self.group_name,
            "OwnersAdded": str(self.owners_added_any).lower(),
            "Message": self.message,
        }

    def to_text(self) -> str:
        """Render the summary as ``Key: value`` lines."""
        return "\n".join(f"{key}: {value}" for key, value in self.as_key_values().items())

    def to_json(self) -> str:
        """Render the summary as JSON, including per-owner outcomes."""
        data: dict = dict(self.as_key_values())
        data["OwnersAdded"] = self.owners_added_any
        data["Owners"] = [
            {
                "Owner": o.candidate,
                "Accepted": o.accepted,
                "Reason": o.reason.value,
                "Detail": o.detail,
            }
            for o in self.owner_outcomes
        ]
        return json.dumps(data, indent=2)

    def to_markdown(self) -> str:
        """Render the summary as a Markdown table for a CI step summary."""
        lines = [
            "## Distribution Group Provisioning",
            "",
            "| Field | Value |",
            "| --- | --- |",
        ]
        for key, value in self.as_key_values().items():
            escaped = value.replace("|", "\\|").replace("\n", "<br>")
            lines.append(f"| {key} | {escaped} |")

        return "\n".join(lines) + "\n"


def _outcome_line(outcome: OwnerOutcome) -> str:
    candidate = outcome.candidate or "(empty)"
    suffix = f" ({outcome.detail})" if outcome.detail else ""
    return f"Owner {candidate}: {outcome.reason.value}{suffix}"


def operation_status(outcomes: list[OwnerOutcome]) -> OperationStatus:
    """Reduce per-owner outcomes to one operation status.

    - PartialSuccess: at least one owner added and at least one failed
    - Failed: no owner added (including an empty candidate list)
    - Success: every owner added
    """
    any_added = any(o.accepted for o in outcomes)
    any_failed = any(not o.accepted for o in outcomes)

    if any_added and any_failed:
        return OperationStatus.PARTIAL_SUCCESS
    if not any_added:
        return OperationStatus.FAILED
    return OperationStatus.SUCCESS


def aggregate(
    result: ProvisioningResult | None,
    outcomes: list[OwnerOutcome],
    group_name: str,
    connected: bool = True,
    error: str | None = None,
) -> ReportSummary:
    """Build the report summary from the provisioning result and owner outcomes.

    Args:
        result: Result of the group step, or None if the run aborted before it
        outcomes: Per-owner outcomes, in candidate order
        group_name: Requested group display name
        connected: Whether the Exchange Online session was established
        error: Message for a fatal error that aborted the run

    Returns:
        ReportSummary for output
    """
    if not connected:
        return ReportSummary(
            connection_status=ConnectionStatus.FAILED,
            operation_status=OperationStatus.FAILED,
            group_name=group_name,
            owners_added_any=False,
            message=error or "Failed to connect to Exchange Online.",
        )

    message = result.message if result else (error or "")
    detail = "\n".join(_outcome_line(o) for o in outcomes)
    if detail:
        message = f"{message}\n{detail}" if message else detail

    return ReportSummary(
        connection_status=ConnectionStatus.SUCCESS,
        operation_status=operation_status(outcomes) if result else OperationStatus.FAILED,
        group_name=group_name,
        owners_added_any=any(o.accepted for o in outcomes),
        message=message,
        owner_outcomes=list(outcomes),
    )


def write_step_summary(summary: ReportSummary, path: Path) -> bool:
    """Append the summary to a CI step summary file.

    Returns:
        True if written, False on I/O error
    """
    try:
        with path.open("a", encoding="utf-8") as f:
            f.write(summary.to_markdown())
    except OSError as e:
        logger.warning(f"Failed to write step summary to {path}: {e}")
        return False

    logger.debug(f"Wrote step summary to {path}")
    return True
