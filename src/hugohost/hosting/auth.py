"""Hosting credentials as a closed set of authentication schemes.

Cloudflare accepts either a scoped API token (Bearer) or the legacy
global API key paired with the account email. Exactly one scheme is
resolved from a Credentials record before any hosting call is made.
"""

from dataclasses import dataclass
from typing import Dict, Union

from hugohost.credentials.models import Credentials


@dataclass(frozen=True)
class BearerToken:
    """Scoped API token."""

    token: str

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def __repr__(self) -> str:
        return "BearerToken(token='**********')"


@dataclass(frozen=True)
class KeyAndEmail:
    """Legacy global API key with the account email."""

    api_key: str
    email: str

    def headers(self) -> Dict[str, str]:
        return {"X-Auth-Email": self.email, "X-Auth-Key": self.api_key}

    def __repr__(self) -> str:
        return f"KeyAndEmail(api_key='**********', email={self.email!r})"


HostingAuth = Union[BearerToken, KeyAndEmail]


class MissingHostingCredentialsError(Exception):
    """Raised when no usable hosting credentials are configured.

    Attributes:
        missing: Names of the credential fields that are absent.
    """

    def __init__(self, missing: list):
        self.missing = missing
        super().__init__(
            "Missing Cloudflare credentials: " + ", ".join(missing)
        )


def resolve_hosting_auth(credentials: Credentials) -> HostingAuth:
    """Pick the authentication scheme from stored credentials.

    A scoped token wins over the legacy key. The legacy key needs both
    the key and the email.

    Raises:
        MissingHostingCredentialsError: If neither scheme is complete.
    """
    token = credentials.secret("cloudflare_api_token")
    if token:
        return BearerToken(token=token)

    api_key = credentials.secret("cloudflare_api_key")
    email = credentials.cloudflare_email
    if api_key and email:
        return KeyAndEmail(api_key=api_key, email=email)

    if api_key and not email:
        missing = ["cloudflare_email"]
    elif email and not api_key:
        missing = ["cloudflare_api_key"]
    else:
        missing = ["cloudflare_api_token (or cloudflare_api_key and cloudflare_email)"]
    raise MissingHostingCredentialsError(missing)
