"""Error types raised by keymaster.

Every failure the tool can report derives from ``KeymasterError`` so the CLI
can catch one type and print the whole ``__cause__`` chain.
"""
from __future__ import annotations

from typing import Optional


class KeymasterError(Exception):
    """Base class for all keymaster errors."""


class ConfigLoadError(KeymasterError):
    """A manifest or settings file could not be read or deserialized."""


class ValidationError(KeymasterError):
    """A manifest deserialized but breaks a naming or reference rule."""


class MissingSecretError(ValidationError):
    """A role references a same-team secret the team does not define."""


class GeneratorError(KeymasterError):
    """A generator could not be built, or cannot produce a value."""


class PathConstructionError(KeymasterError):
    """A store path was requested with an empty component."""


class BackendError(KeymasterError):
    """A store read/write/delete (or DNS lookup) failed.

    ``operation`` and ``path`` say what was being attempted; the underlying
    exception is chained as ``__cause__``.
    """

    def __init__(self, message: str, operation: str = "", path: Optional[str] = None):
        self.operation = operation
        self.path = path
        super().__init__(message)


def error_chain(err: BaseException) -> str:
    """Render an exception and its causes as ``outer: inner: root``."""
    parts = []
    cur: Optional[BaseException] = err
    while cur is not None:
        parts.append(str(cur) or cur.__class__.__name__)
        cur = cur.__cause__
    return ": ".join(parts)
