"""Exchange Online PowerShell client.

Executes Exchange Online PowerShell cmdlets via subprocess to manage
distribution lists and their owners (ManagedBy).

This uses the official Exchange Online PowerShell module which is fully
supported by Microsoft.

Prerequisites:
1. Install Exchange Online Management module:
   Install-Module -Name ExchangeOnlineManagement

2. For app-only (unattended) authentication, you need:
   - Azure AD App Registration with Exchange.ManageAsApp permission
   - A certificate (self-signed or CA-signed) uploaded to the app
   - The certificate as a .pfx file (or installed locally on Windows)
   - App assigned "Exchange Recipient Administrator" role

References:
- https://learn.microsoft.com/en-us/powershell/exchange/app-only-auth-powershell-v2
- https://learn.microsoft.com/en-us/powershell/module/exchange/new-distributiongroup
"""

import asyncio
import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from dlprovision.core.config import ExchangeCredentials, get_exchange_credentials

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120
GROUP_FIELDS = "Identity, DisplayName, PrimarySmtpAddress, RecipientTypeDetails"


class ExchangeError(Exception):
    """Raised when a PowerShell call fails and "not found" cannot be told apart."""


def ps_quote(value: str) -> str:
    """Quote a value as a PowerShell single-quoted string literal."""
    return "'" + str(value).replace("'", "''") + "'"


@dataclass
class ExchangeGroup:
    """Represents an Exchange Online distribution group."""

    identity: str  # Group identity (name or email)
    display_name: str
    primary_smtp_address: str
    group_type: str  # "MailUniversalDistributionGroup" for distribution lists


@dataclass
class ExchangeRecipient:
    """Represents any addressable Exchange recipient (user, group, resource)."""

    identity: str
    display_name: str
    primary_smtp_address: str
    recipient_type: str


def _parse_address_list(data: dict | list | str | None) -> list[str]:
    """Extract lowercase PrimarySmtpAddress values from ConvertTo-Json output.

    PowerShell emits a single object (dict) for one result and an array for many.
    """
    if not data:
        return []
    if isinstance(data, dict):
        if "PrimarySmtpAddress" in data:
            return [data["PrimarySmtpAddress"].lower()]
        return []
    if isinstance(data, list):
        return [
            m["PrimarySmtpAddress"].lower()
            for m in data
            if isinstance(m, dict) and m.get("PrimarySmtpAddress")
        ]
    return []


class ExchangeOnlineClient:
    """Client for Exchange Online PowerShell operations.

    Executes Exchange cmdlets via subprocess using the official
    ExchangeOnlineManagement PowerShell module. Each call opens and closes
    its own session.
    """

    def __init__(
        self,
        credentials: ExchangeCredentials | None = None,
        certificate_path: Path | str | None = None,
        organization: str | None = None,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the Exchange Online client.

        Args:
            credentials: Exchange credentials (loaded from environment if omitted)
            certificate_path: Path to a .pfx file (overrides credentials, e.g. a
                temp file holding decoded base64 material)
            organization: The organization domain (overrides credentials)
            timeout: Timeout in seconds for each PowerShell invocation
        """
        creds = credentials or get_exchange_credentials()
        self.tenant_id = creds.tenant_id
        self.client_id = creds.client_id
        self.organization = organization or creds.organization
        self.certificate_thumbprint = creds.certificate_thumbprint
        self.certificate_path = certificate_path or creds.certificate_path
        self.certificate_password = creds.certificate_password
        self.timeout = timeout

    def _build_connect_command(self) -> str:
        """Build the Connect-ExchangeOnline command."""
        # Suppress banner output with *>$null to prevent it from mixing with JSON output
        # Prefer certificate_path over thumbprint (thumbprint is Windows-only)
        if self.certificate_path:
            # For empty password (Key Vault certs), skip the -CertificatePassword param
            if self.certificate_password:
                secure_str = (
                    f"-CertificatePassword (ConvertTo-SecureString "
                    f"-String {ps_quote(self.certificate_password)} -AsPlainText -Force) "
                )
            else:
                secure_str = ""
            return (
                f"Connect-ExchangeOnline "
                f"-AppId {ps_quote(self.client_id)} "
                f"-CertificateFilePath {ps_quote(str(self.certificate_path))} "
                f"{secure_str}"
                f"-Organization {ps_quote(self.organization)} -ShowBanner:$false *>$null"
            )
        elif self.certificate_thumbprint:
            return (
                f"Connect-ExchangeOnline "
                f"-AppId {ps_quote(self.client_id)} "
                f"-CertificateThumbprint {ps_quote(self.certificate_thumbprint)} "
                f"-Organization {ps_quote(self.organization)} -ShowBanner:$false *>$null"
            )
        else:
            raise ValueError("Either certificate_thumbprint or certificate_path must be provided")

    def _run_powershell(self, commands: list[str], parse_json: bool = True) -> dict | list | str | None:
        """Run PowerShell commands and return the result.

        Args:
            commands: List of PowerShell commands to execute
            parse_json: If True, parse output as JSON

        Returns:
            Parsed JSON (dict or list), raw string output, or None on failure
        """
        full_script = [
            "$ErrorActionPreference = 'Stop'",
            "Import-Module ExchangeOnlineManagement -ErrorAction Stop",
            self._build_connect_command(),
            *commands,
            "Disconnect-ExchangeOnline -Confirm:$false *>$null",
        ]

        script = "; ".join(full_script)

        try:
            result = subprocess.run(  # noqa: S603
                ["pwsh", "-NoProfile", "-NonInteractive", "-Command", script],  # noqa: S607
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )

            if result.returncode != 0:
                logger.error(f"PowerShell error: {result.stderr.strip() or result.stdout.strip()}")
                return None

            output = result.stdout.strip()
            if not output:
                return {} if parse_json else ""

            if parse_json:
                try:
                    return json.loads(output)
                except json.JSONDecodeError:
                    # Module warnings may precede JSON - try to find JSON in output
                    json_start = output.find("{")
                    if json_start == -1:
                        json_start = output.find("[")
                    if json_start != -1:
                        try:
                            return json.loads(output[json_start:])
                        except json.JSONDecodeError:
                            pass
                    if "{" in output or "[" in output:
                        logger.warning(f"Failed to parse JSON output: {output[:200]}")
                    return {"raw": output}

            return output

        except subprocess.TimeoutExpired:
            logger.error(f"PowerShell command timed out after {self.timeout}s")
            return None
        except FileNotFoundError:
            logger.error("PowerShell (pwsh) not found. Install PowerShell 7+.")
            return None
        except Exception as e:
            logger.error(f"Failed to run PowerShell: {e}")
            return None

    async def _run(self, commands: list[str], parse_json: bool = True) -> dict | list | str | None:
        return await asyncio.to_thread(self._run_powershell, commands, parse_json)

    async def connect(self) -> bool:
        """Establish (and close) an authenticated session to verify access.

        Returns:
            True if Connect-ExchangeOnline succeeded
        """
        result = await self._run(["Write-Output 'CONNECTED'"], parse_json=False)
        if result and "CONNECTED" in str(result):
            logger.info(f"Connected to Exchange Online ({self.organization})")
            return True

        logger.error(f"Failed to connect to Exchange Online ({self.organization})")
        return False

    async def get_distribution_group(self, identity: str) -> ExchangeGroup | None:
        """Get a distribution group by identity.

        Args:
            identity: Group name, alias, or email address

        Returns:
            ExchangeGroup if found, None if the group does not exist

        Raises:
            ExchangeError: If the PowerShell call itself failed
        """
        commands = [
            f"$group = Get-DistributionGroup -Identity {ps_quote(identity)} "
            "-ErrorAction SilentlyContinue",
            f"if ($group) {{ $group | Select-Object {GROUP_FIELDS} | ConvertTo-Json }}",
        ]

        result = await self._run(commands)
        if result is None:
            raise ExchangeError(f"Failed to look up distribution group {identity}")
        if result and isinstance(result, dict) and "Identity" in result:
            return ExchangeGroup(
                identity=result.get("Identity", identity),
                display_name=result.get("DisplayName", ""),
                primary_smtp_address=result.get("PrimarySmtpAddress", ""),
                group_type=result.get("RecipientTypeDetails", ""),
            )
        return None

    async def create_distribution_group(
        self,
        name: str,
        display_name: str,
        alias: str,
        primary_smtp_address: str | None = None,
        group_type: str = "Distribution",
    ) -> ExchangeGroup | None:
        """Create a new distribution group.

        Args:
            name: Internal name of the group
            display_name: Display name shown in address book
            alias: Email alias (without domain)
            primary_smtp_address: Full email address (optional)
            group_type: "Distribution" or "Security"

        Returns:
            Created ExchangeGroup or None on failure
        """
        cmd_parts = [
            f"New-DistributionGroup -Name {ps_quote(name)}",
            f"-DisplayName {ps_quote(display_name)}",
            f"-Alias {ps_quote(alias)}",
            f"-Type {ps_quote(group_type)}",
        ]

        if primary_smtp_address:
            cmd_parts.append(f"-PrimarySmtpAddress {ps_quote(primary_smtp_address)}")

        create_cmd = " ".join(cmd_parts)

        commands = [
            f"$group = {create_cmd}",
            f"$group | Select-Object {GROUP_FIELDS} | ConvertTo-Json",
        ]

        result = await self._run(commands)
        if result and isinstance(result, dict) and "Identity" in result:
            logger.info(f"Created distribution group: {display_name}")
            return ExchangeGroup(
                identity=result.get("Identity", name),
                display_name=result.get("DisplayName", display_name),
                primary_smtp_address=result.get("PrimarySmtpAddress", primary_smtp_address or ""),
                group_type=result.get("RecipientTypeDetails", group_type),
            )

        logger.error(f"Failed to create distribution group: {name}")
        return None

    async def get_recipient(self, identity: str) -> ExchangeRecipient | None:
        """Look up any recipient (mailbox, mail user, contact, group).

        Args:
            identity: Email address, alias, or name

        Returns:
            ExchangeRecipient if found, None otherwise
        """
        commands = [
            f"$recipient = Get-Recipient -Identity {ps_quote(identity)} "
            "-ErrorAction SilentlyContinue",
            (
                "if ($recipient) { $recipient | Select-Object -First 1 Identity, DisplayName, "
                "PrimarySmtpAddress, RecipientTypeDetails | ConvertTo-Json }"
            ),
        ]

        result = await self._run(commands)
        if result and isinstance(result, dict) and "Identity" in result:
            return ExchangeRecipient(
                identity=result.get("Identity", identity),
                display_name=result.get("DisplayName", ""),
                primary_smtp_address=result.get("PrimarySmtpAddress", ""),
                recipient_type=result.get("RecipientTypeDetails", ""),
            )

        logger.debug(f"Recipient not found: {identity}")
        return None

    async def get_distribution_group_managers(self, identity: str) -> list[str]:
        """Get the owners (ManagedBy) of a distribution group.

        Args:
            identity: Group name, alias, or email address

        Returns:
            List of owner email addresses (lowercase)
        """
        commands = [
            f"$group = Get-DistributionGroup -Identity {ps_quote(identity)} "
            "-ErrorAction SilentlyContinue",
            (
                "if ($group) { $group.ManagedBy "
                "| ForEach-Object { Get-Recipient -Identity $_ -ErrorAction SilentlyContinue } "
                "| Select-Object PrimarySmtpAddress | ConvertTo-Json }"
            ),
        ]

        result = await self._run(commands)
        if isinstance(result, (dict, list)):
            return _parse_address_list(result)
        return []

    async def add_distribution_group_manager(self, identity: str, manager: str) -> bool:
        """Add an owner to a distribution group's ManagedBy list.

        Args:
            identity: Group name, alias, or email address
            manager: Owner identity (email address) to add

        Returns:
            True if successful
        """
        commands = [
            f"Set-DistributionGroup -Identity {ps_quote(identity)} "
            f"-ManagedBy @{{Add={ps_quote(manager)}}} "
            "-BypassSecurityGroupManagerCheck -ErrorAction Stop",
            "Write-Output 'SUCCESS'",
        ]

        result = await self._run(commands, parse_json=False)
        if result and "SUCCESS" in str(result):
            logger.info(f"Added owner {manager} to {identity}")
            return True

        logger.error(f"Failed to add owner {manager} to {identity}")
        return False

    async def close(self) -> None:
        """Close the client (no-op for subprocess approach)."""
        pass
