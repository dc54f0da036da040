"""Core utilities for distribution group provisioning."""

from dlprovision.core.config import (
    ExchangeCredentials,
    ProvisioningConfig,
    get_exchange_credentials,
    load_provisioning_config,
)
from dlprovision.core.normalize import (
    NormalizedGroup,
    is_allowed_domain,
    normalize_group,
    split_owners,
)

__all__ = [
    "ExchangeCredentials",
    "NormalizedGroup",
    "ProvisioningConfig",
    "get_exchange_credentials",
    "is_allowed_domain",
    "load_provisioning_config",
    "normalize_group",
    "split_owners",
]
