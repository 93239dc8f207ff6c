"""
Error types raised by the analytics engine.

Fatal conditions (bad configuration, missing directories) are raised to the
caller before any parsing starts. Per-file and per-record problems never
surface as exceptions; they are collected as diagnostics instead.
"""


class ClaudelyticsError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(ClaudelyticsError, ValueError):
    """Invalid user-supplied configuration (dates, workers, override files)."""


class DirectoryNotFoundError(ClaudelyticsError, FileNotFoundError):
    """The log root or its projects/ directory does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Directory not found: {path}")
        self.path = path


class FileProcessingError(ClaudelyticsError):
    """A single log file could not be read; the file is skipped."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to process {path}: {reason}")
        self.path = path
        self.reason = reason
