"""
Per-file error kinds.

Every failure while handling one input file is raised as a subclass of
X3FExtractError. The run aggregator catches them, logs one line and counts
the file as failed; none of them stops the run.
"""
from enum import Enum


class ErrorKind(Enum):
    OPEN_FAILURE = "open"
    BAD_OPTION = "option"
    PATH_OVERFLOW = "path"
    SECTION_LOAD_FAILURE = "load"
    ENCODE_FAILURE = "encode"
    RENAME_FAILURE = "rename"


class X3FExtractError(Exception):
    kind: ErrorKind


class OpenFailure(X3FExtractError):
    """Input file missing, unreadable or not an X3F container."""
    kind = ErrorKind.OPEN_FAILURE


class BadOption(X3FExtractError):
    """Unrecognized format or color token."""
    kind = ErrorKind.BAD_OPTION


class PathOverflow(X3FExtractError):
    """A computed output path exceeds the path length limit."""
    kind = ErrorKind.PATH_OVERFLOW


class SectionLoadFailure(X3FExtractError):
    """A required container section is missing or corrupt."""
    kind = ErrorKind.SECTION_LOAD_FAILURE


class EncodeFailure(X3FExtractError):
    """The output encoder could not produce the artifact."""
    kind = ErrorKind.ENCODE_FAILURE


class RenameFailure(X3FExtractError):
    """The finished temp file could not be moved to its final path."""
    kind = ErrorKind.RENAME_FAILURE
