"""Error taxonomy shared by storage, indexing, search and the fetch queue."""

from __future__ import annotations

import enum


class ErrorKind(enum.Enum):
    INVALID_ARGUMENT = "invalid_argument"
    TRANSIENT = "transient"
    FATAL = "fatal"


class ModfinderError(Exception):
    """Error tagged with an :class:`ErrorKind`.

    API layers branch on ``kind``: ``INVALID_ARGUMENT`` maps to a client
    error and is never retried, ``TRANSIENT`` may be retried by whoever owns
    the work, ``FATAL`` aborts startup.
    """

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


def invalid_argument(message: str) -> ModfinderError:
    return ModfinderError(ErrorKind.INVALID_ARGUMENT, message)


def transient(message: str) -> ModfinderError:
    return ModfinderError(ErrorKind.TRANSIENT, message)


def fatal(message: str) -> ModfinderError:
    return ModfinderError(ErrorKind.FATAL, message)
