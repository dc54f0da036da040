"""Exchange Online client and provisioning."""
