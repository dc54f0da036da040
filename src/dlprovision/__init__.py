"""Exchange Online distribution group provisioning."""

__version__ = "0.1.0"
