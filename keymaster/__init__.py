"""keymaster: declarative Vault access control for teams, roles and secrets."""

__version__ = "0.1.0"
