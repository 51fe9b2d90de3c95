"""Cloudflare Pages API client.

Thin async wrapper around the Cloudflare v4 REST API covering the two
calls the hosting provisioner needs: fetching a Pages project by name
and creating one. Every Cloudflare response uses the envelope
`{success, errors: [{code, message}], result}`; a failed envelope is
raised as HostingAPIError carrying the code/message list.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from hugohost.hosting.auth import HostingAuth


logger = logging.getLogger(__name__)


class HostingAPIError(Exception):
    """Raised when a Cloudflare API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response.
        errors: The `errors` list from the response envelope.
        provider_message: The envelope errors rendered as "(code) message"
            joined by ", ".
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[List[Dict[str, Any]]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.errors = errors or []
        self.provider_message = format_envelope_errors(self.errors) or None
        super().__init__(message)


def format_envelope_errors(errors: List[Dict[str, Any]]) -> str:
    """Render envelope errors as "(code) message, (code) message"."""
    return ", ".join(
        f"({error.get('code', 'unknown')}) {error.get('message', '')}".strip()
        for error in errors
        if isinstance(error, dict)
    )


class CloudflarePagesClient:
    """Async Cloudflare Pages client.

    Attributes:
        auth: Resolved hosting credentials.
        base_url: Base URL for the Cloudflare API.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        auth: HostingAuth,
        base_url: str = "https://api.cloudflare.com/client/v4",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.auth = auth
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            headers.update(self.auth.headers())
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CloudflarePagesClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        response = await self.client.request(method=method, url=path, json=json_data)

        try:
            payload = response.json()
        except ValueError:
            payload = None

        envelope_ok = isinstance(payload, dict) and payload.get("success", True)
        if response.status_code < 400 and envelope_ok:
            return response

        errors = payload.get("errors") if isinstance(payload, dict) else None
        errors = [e for e in errors or [] if isinstance(e, dict)]
        logger.error(
            "Cloudflare API error",
            extra={
                "status_code": response.status_code,
                "method": method,
                "path": path,
                "errors": errors,
            },
        )
        description = format_envelope_errors(errors) or response.text[:200]
        raise HostingAPIError(
            message=f"Cloudflare API error {response.status_code}: {description}",
            status_code=response.status_code,
            errors=errors,
        )

    async def get_project(self, account_id: str, project_name: str) -> Optional[Dict[str, Any]]:
        """Fetch a Pages project, returning None when it does not exist."""
        try:
            response = await self._request(
                "GET",
                f"/accounts/{account_id}/pages/projects/{project_name}",
            )
        except HostingAPIError as e:
            if e.status_code == 404:
                return None
            raise
        return response.json().get("result")

    async def create_project(self, account_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Create a Pages project from a full project definition."""
        logger.info(
            "Creating Pages project",
            extra={"account_id": account_id, "project": body.get("name")},
        )
        response = await self._request(
            "POST",
            f"/accounts/{account_id}/pages/projects",
            json_data=body,
        )
        return response.json().get("result") or {}
