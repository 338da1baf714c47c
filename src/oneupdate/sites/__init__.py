"""Brand-site inventory and stored secrets."""

from .credentials import CredentialStore
from .registry import SiteRegistry

__all__ = ["CredentialStore", "SiteRegistry"]
