"""HTTP transport used to download agent packages."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol

import httpx

LOGGER = logging.getLogger(__name__)


class TransportError(RuntimeError):
    """Raised when a download cannot be completed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Record the HTTP status code when the server answered."""
        super().__init__(message)
        self.status_code = status_code


class Transport(Protocol):
    """Fetch a resource and return its body."""

    def fetch(self, url: str, headers: Mapping[str, str]) -> bytes:
        """Return the body of *url*, raising :class:`TransportError` on failure."""
        ...


@dataclass(slots=True)
class HttpxTransport:
    """Blocking ``httpx`` transport with a single request timeout."""

    timeout: float = 60.0
    verify: bool = True
    client_transport: httpx.BaseTransport | None = None

    def fetch(self, url: str, headers: Mapping[str, str]) -> bytes:
        """GET *url* with *headers*; non-2xx responses raise."""
        LOGGER.debug("Downloading %s", url)
        try:
            with httpx.Client(
                timeout=self.timeout,
                verify=self.verify,
                follow_redirects=True,
                transport=self.client_transport,
            ) as client:
                response = client.get(url, headers=dict(headers))
        except httpx.TimeoutException as exc:
            raise TransportError(f"Download timed out after {self.timeout}s: {url}") from exc
        except httpx.ConnectError as exc:
            # TLS negotiation failures surface as ConnectError as well.
            raise TransportError(f"Could not connect to {url}: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Download failed for {url}: {exc}") from exc
        except httpx.InvalidURL as exc:
            raise TransportError(f"Invalid download URL {url!r}: {exc}") from exc
        except UnicodeEncodeError as exc:
            # Header values must be ASCII.
            raise TransportError(
                "Credentials contain characters that cannot be sent in HTTP headers."
            ) from exc

        if not response.is_success:
            reason = response.reason_phrase or "error"
            if response.status_code in (401, 403):
                reason = f"{reason} (check the API key, service key and user name)"
            raise TransportError(
                f"Download failed: HTTP {response.status_code} {reason}",
                status_code=response.status_code,
            )
        return response.content


__all__ = ["HttpxTransport", "Transport", "TransportError"]
