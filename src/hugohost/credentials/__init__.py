"""Per-owner credentials for GitHub and Cloudflare."""

from hugohost.credentials.models import Credentials
from hugohost.credentials.store import CredentialStore, InMemoryCredentialStore

__all__ = [
    "Credentials",
    "CredentialStore",
    "InMemoryCredentialStore",
]
