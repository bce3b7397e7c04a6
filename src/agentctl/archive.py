"""Archive helpers for unpacking downloaded agent packages."""
from __future__ import annotations

import zipfile
from pathlib import Path


class ArchiveError(RuntimeError):
    """Raised when an archive cannot be extracted."""


def extract_archive(archive_path: Path, destination: Path) -> list[Path]:
    """Extract the zip at *archive_path* into *destination*.

    Returns the extracted file paths. Members that would land outside
    *destination* are rejected before anything is written.
    """
    if not archive_path.is_file():
        raise ArchiveError(f"Archive not found: {archive_path}")
    if not destination.is_dir():
        raise ArchiveError(f"Extraction directory does not exist: {destination}")

    root = destination.resolve()
    try:
        with zipfile.ZipFile(archive_path) as bundle:
            members = bundle.infolist()
            for member in members:
                target = (root / member.filename).resolve()
                if target != root and root not in target.parents:
                    raise ArchiveError(
                        f"Archive member escapes extraction directory: {member.filename}"
                    )
            corrupt = bundle.testzip()
            if corrupt is not None:
                raise ArchiveError(f"Archive member failed CRC check: {corrupt}")
            bundle.extractall(root)
    except zipfile.BadZipFile as exc:
        raise ArchiveError(f"Not a valid zip archive: {archive_path}") from exc
    except OSError as exc:
        raise ArchiveError(f"Failed to extract {archive_path}: {exc}") from exc

    return [root / member.filename for member in members if not member.is_dir()]


__all__ = ["ArchiveError", "extract_archive"]
