"""Internal machinery: HTTP and SSH transports."""

from .http import (
    BearerAuth,
    HttpClient,
    HttpError,
    OAuth2Auth,
)
from .ssh import SSHTransport

__all__ = [
    "BearerAuth",
    "HttpClient",
    "HttpError",
    "OAuth2Auth",
    "SSHTransport",
]
