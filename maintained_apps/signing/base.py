"""Common pieces of the signing inspectors."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from ..config.collector_config import CollectorConfig

MACOS_FIELDS = ("sha256", "code_directory_hash", "signing_identifier", "team_identifier")
WINDOWS_FIELDS = (
    "sha256",
    "publisher_subject",
    "issuer_subject",
    "serial_number",
    "certificate_thumbprint",
    "signing_timestamp",
)


def normalize_key(key: str) -> str:
    """Lower-case a tool's field label and collapse internal whitespace."""
    return " ".join(key.strip().lower().split())


def key_values(output: str) -> list[tuple[str, str]]:
    """Split ``Key : value`` lines; keys are normalised, values stripped.

    Lines without a colon are skipped. Only the first colon separates, so
    values such as ``TEAMID:com.example.app`` survive intact.
    """
    pairs = []
    for line in output.splitlines():
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = normalize_key(key)
        if key:
            pairs.append((key, value.strip()))
    return pairs


class SigningInspector(ABC):
    name: str = "base"

    def __init__(self, config: CollectorConfig):
        self.config = config

    @abstractmethod
    def inspect(self, path: Path) -> dict[str, str]:
        """Return normalised signing fields for *path*.

        Raises UnsignedOrUninspectableError when every strategy comes up empty.
        """
        ...
