"""Credential sources consulted by the resolver.

Each source answers ``read(field)`` with a value or ``None``. Missing or
malformed files never raise; they simply have nothing to offer.
"""
from __future__ import annotations

import logging
import xml.etree.ElementTree as element_tree
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol

import yaml

from ..models import CREDENTIAL_FIELDS, PartialCredentials

LOGGER = logging.getLogger(__name__)

YAML_KEYS: Mapping[str, str] = {
    "api_url": "url",
    "api_key": "api_key",
    "service_key": "service_key",
    "user_name": "user_name",
}
LEGACY_XML_KEYS: Mapping[str, str] = {
    "api_url": "TeamServerUrl",
    "api_key": "TeamServerApiKey",
    "service_key": "TeamServerServiceKey",
    "user_name": "TeamServerUserName",
}


class CredentialSource(Protocol):
    """A place credential fields can be read from."""

    name: str

    def read(self, field: str) -> str | None:
        """Return the value for *field*, or ``None`` when unavailable."""
        ...


def collect(source: CredentialSource) -> PartialCredentials:
    """Read every credential field from *source*."""
    return PartialCredentials(**{field: source.read(field) for field in CREDENTIAL_FIELDS})


def _text(value: object) -> str | None:
    if value is None or isinstance(value, (Mapping, list)):
        return None
    text = str(value).strip()
    return text or None


class ExplicitSource:
    """Values passed to the tool on the command line or environment."""

    name = "explicit"

    def __init__(self, values: PartialCredentials) -> None:
        """Wrap explicitly supplied *values*."""
        self._values = values

    def read(self, field: str) -> str | None:
        """Return the explicit value for *field*."""
        return getattr(self._values, field, None)


class YamlConfigSource:
    """The agent's ``contrast_security.yaml`` under its data directory.

    Keys live under the ``api:`` mapping; top-level keys are accepted too so
    flattened files written by older tooling still resolve.
    """

    name = "structured-config"

    def __init__(self, path: Path) -> None:
        """Bind the source to *path*; the file is read lazily."""
        self.path = path
        self._values: Mapping[str, object] | None = None

    @property
    def exists(self) -> bool:
        """Return ``True`` when the file is present."""
        return self.path.is_file()

    def read(self, field: str) -> str | None:
        """Return the value for *field* from the YAML file."""
        key = YAML_KEYS.get(field)
        if key is None:
            return None
        values = self._load()
        api_section = values.get("api")
        if isinstance(api_section, Mapping):
            found = _text(api_section.get(key))
            if found is not None:
                return found
        return _text(values.get(key))

    def _load(self) -> Mapping[str, object]:
        if self._values is not None:
            return self._values
        self._values = {}
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return self._values
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
            LOGGER.debug("Ignoring unreadable structured config %s: %s", self.path, exc)
            return self._values
        if isinstance(data, Mapping):
            self._values = {str(key): value for key, value in data.items()}
        return self._values


class LegacyXmlConfigSource:
    """The legacy ``DotnetAgentService.exe.config`` under the install directory.

    Values are ``<add key="TeamServer..." value="..."/>`` entries, normally
    inside ``<appSettings>``; they are matched anywhere in the document.
    """

    name = "legacy-config"

    def __init__(self, path: Path) -> None:
        """Bind the source to *path*; the file is read lazily."""
        self.path = path
        self._values: dict[str, str] | None = None

    @property
    def exists(self) -> bool:
        """Return ``True`` when the file is present."""
        return self.path.is_file()

    def read(self, field: str) -> str | None:
        """Return the value for *field* from the XML file."""
        key = LEGACY_XML_KEYS.get(field)
        if key is None:
            return None
        return self._load().get(key)

    def _load(self) -> dict[str, str]:
        if self._values is not None:
            return self._values
        self._values = {}
        try:
            root = element_tree.parse(self.path).getroot()
        except FileNotFoundError:
            return self._values
        except (OSError, element_tree.ParseError) as exc:
            LOGGER.debug("Ignoring unreadable legacy config %s: %s", self.path, exc)
            return self._values
        for element in root.iter("add"):
            key = element.get("key")
            value = _text(element.get("value"))
            if key and value is not None and key not in self._values:
                self._values[key] = value
        return self._values


__all__ = [
    "LEGACY_XML_KEYS",
    "YAML_KEYS",
    "CredentialSource",
    "ExplicitSource",
    "LegacyXmlConfigSource",
    "YamlConfigSource",
    "collect",
]
