"""Per-owner credential models.

Secrets are held as pydantic SecretStr so that they never appear in
reprs, logs or serialized payloads unless explicitly revealed.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, SecretStr


SECRET_FIELDS = ("github_token", "cloudflare_api_token", "cloudflare_api_key")
PLAIN_FIELDS = ("cloudflare_email", "cloudflare_account_id")
CREDENTIAL_FIELDS = SECRET_FIELDS + PLAIN_FIELDS


class Credentials(BaseModel):
    """External service credentials for one owner.

    Attributes:
        github_token: Token used for repository provisioning and commits.
        cloudflare_api_token: Scoped Cloudflare API token.
        cloudflare_api_key: Legacy global Cloudflare API key.
        cloudflare_email: Account email paired with the legacy key.
        cloudflare_account_id: Cloudflare account owning the Pages project.
    """

    github_token: Optional[SecretStr] = Field(default=None)
    cloudflare_api_token: Optional[SecretStr] = Field(default=None)
    cloudflare_api_key: Optional[SecretStr] = Field(default=None)
    cloudflare_email: Optional[str] = Field(default=None)
    cloudflare_account_id: Optional[str] = Field(default=None)

    def secret(self, name: str) -> Optional[str]:
        """Reveal a secret field, treating blank values as absent."""
        value = getattr(self, name)
        if value is None:
            return None
        revealed = value.get_secret_value().strip()
        return revealed or None

    def merged(self, update: "Credentials") -> "Credentials":
        """Apply an update where set fields overwrite and empty ones clear.

        Only fields explicitly present in `update` are considered, so a
        partial update leaves the other credentials untouched.
        """
        values = self.model_dump()
        for name in update.model_fields_set:
            value = getattr(update, name)
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            values[name] = value if value else None
        return Credentials(**values)

    def reveal(self) -> Dict[str, Optional[str]]:
        """Return every field as plain text, for persistence only."""
        revealed: Dict[str, Optional[str]] = {}
        for name in SECRET_FIELDS:
            revealed[name] = self.secret(name)
        for name in PLAIN_FIELDS:
            revealed[name] = getattr(self, name) or None
        return revealed

    def configured(self) -> Dict[str, bool]:
        """Report which credentials are present without revealing them."""
        revealed = self.reveal()
        return {name: bool(revealed[name]) for name in CREDENTIAL_FIELDS}
