"""Service URL helpers."""
from __future__ import annotations

DEFAULT_SERVICE_URL = "https://app.contrastsecurity.com"
LEGACY_PATH_MARKER = "/Contrast"
ENGINE_DOWNLOAD_PATH = "Contrast/api/engine/dotnet/package"


def normalize_url(
    url: str | None,
    *,
    default: str = DEFAULT_SERVICE_URL,
    marker: str = LEGACY_PATH_MARKER,
) -> str:
    """Return the canonical base service URL for *url*.

    Older agent configurations store the full ``.../Contrast`` endpoint, so
    anything from the legacy marker onwards is dropped. Absent or blank input
    falls back to *default*.
    """
    if url is None or not url.strip():
        return default
    if marker:
        index = url.find(marker)
        if index != -1:
            return url[:index]
    return url


def build_download_url(base_url: str, path: str = ENGINE_DOWNLOAD_PATH) -> str:
    """Join *base_url* and the engine download *path* with a single slash."""
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


__all__ = [
    "DEFAULT_SERVICE_URL",
    "ENGINE_DOWNLOAD_PATH",
    "LEGACY_PATH_MARKER",
    "build_download_url",
    "normalize_url",
]
