"""Cloudflare Pages hosting: credentials, API client and provisioning."""

from hugohost.hosting.auth import (
    BearerToken,
    HostingAuth,
    KeyAndEmail,
    MissingHostingCredentialsError,
    resolve_hosting_auth,
)
from hugohost.hosting.client import CloudflarePagesClient, HostingAPIError
from hugohost.hosting.provisioner import HostingProject, HostingProvisioner

__all__ = [
    "BearerToken",
    "CloudflarePagesClient",
    "HostingAPIError",
    "HostingAuth",
    "HostingProject",
    "HostingProvisioner",
    "KeyAndEmail",
    "MissingHostingCredentialsError",
    "resolve_hosting_auth",
]
