"""Exception types raised by daybook."""


class DaybookError(Exception):
    """Base class for daybook errors."""


class ConfigError(DaybookError):
    """The configuration file is missing, unreadable or holds invalid values."""


class MalformedDocument(DaybookError):
    """A note's frontmatter block exists but is not a YAML mapping.

    Recoverable: callers log it and move on to the next note.
    """

    def __init__(self, path: str, reason: str):
        super().__init__(f"Malformed note {path}: {reason}")
        self.path = path
        self.reason = reason


class StorageError(DaybookError):
    """The index database failed during a read or write."""


class RebuildError(StorageError):
    """A rebuild stopped part way through."""

    def __init__(self, message: str, processed: int):
        super().__init__(f"{message} (processed {processed} note(s) before the failure)")
        self.processed = processed


class WatchUnavailable(DaybookError):
    """The notes root cannot be observed."""
