"""Error taxonomy for the security-info collector.

``CollectionError`` subclasses abort a single catalog entry; the orchestrator
logs them, carries the previous record forward and moves on. ``PersistError``
and ``CatalogError`` are fatal to the whole run. ``CollectionInterrupted`` is
raised from the signal handler and deliberately sits outside ``Exception`` so
per-entry error handling never swallows it.
"""

from __future__ import annotations


_PREVIEW_LEN = 400


def preview(text: str | bytes | None, limit: int = _PREVIEW_LEN) -> str:
    """Return a single-line, truncated preview of tool output for error messages."""
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    flat = " ".join(text.split())
    if len(flat) > limit:
        return flat[:limit] + "..."
    return flat


class CollectionError(Exception):
    """Base class for failures that abort processing of one catalog entry."""


class DownloadError(CollectionError):
    """Non-2xx HTTP status or transport failure while fetching an installer."""


class EmptyArtifactError(CollectionError):
    """The download completed but zero bytes were written."""


class UnsupportedArtifactKindError(CollectionError):
    """No driver exists for the artifact's kind on this platform."""


class MountError(CollectionError):
    """A disk image could not be mounted by any strategy."""


class ArtifactLocationError(CollectionError):
    """No application bundle or executable could be located.

    ``listing`` holds a truncated directory listing for diagnostics.
    """

    def __init__(self, message: str, listing: list[str] | None = None):
        self.listing = list(listing or [])
        if self.listing:
            message = f"{message}. Contents: {self.listing}"
        super().__init__(message)


class InstallError(CollectionError):
    """An OS package installer or archive extractor reported failure."""


class ParseError(CollectionError):
    """Signing tool output was present but malformed."""


class UnsignedOrUninspectableError(CollectionError):
    """Every inspection strategy was exhausted without usable signing data.

    ``reasons`` lists each strategy's failure in the order they were tried.
    """

    def __init__(self, message: str, reasons: list[str] | None = None):
        self.reasons = list(reasons or [])
        if self.reasons:
            message = f"{message}: {', '.join(self.reasons)}"
        super().__init__(message)


class PersistError(Exception):
    """The security-info store could not be read or written."""


class CatalogError(Exception):
    """The catalog file is missing or invalid."""


class CollectionInterrupted(BaseException):
    """A termination signal arrived while the collector was running."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"interrupted by signal {signum}")
