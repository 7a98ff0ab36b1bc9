#!/usr/bin/env python3
"""
Error kinds and step results shared by all migration components

The package tool adapter raises MigrationError subclasses. Managers catch
them and hand a StepResult back to the orchestrator, which only ever branches on StepResult.ok.
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    """Categories of failure a migration step can report"""
    NOT_FOUND = "not_found"
    TOOL_INVOCATION = "tool_invocation"
    NETWORK = "network"
    IO = "io"
    TIMED_OUT = "timed_out"
    VERIFICATION_FAILED = "verification_failed"


class MigrationError(Exception):
    """Base class for errors raised by migration adapters"""

    kind = ErrorKind.TOOL_INVOCATION

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind


class ToolInvocationError(MigrationError):
    """A command could not be launched or exited non-zero"""

    kind = ErrorKind.TOOL_INVOCATION

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class CommandTimeoutError(MigrationError):
    """A command did not finish within its time limit"""

    kind = ErrorKind.TIMED_OUT


class StepResult:
    """Outcome of a single operation: a value on success, an error kind and message on failure"""

    def __init__(self, ok: bool, value: Any = None, kind: Optional[ErrorKind] = None,
                 message: str = ""):
        self.ok = ok
        self.value = value
        self.kind = kind
        self.message = message

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> 'StepResult':
        return cls(True, value=value, message=message)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, value: Any = None) -> 'StepResult':
        return cls(False, value=value, kind=kind, message=message)

    @classmethod
    def from_error(cls, error: MigrationError) -> 'StepResult':
        return cls.failure(error.kind, error.message)

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self) -> str:
        if self.ok:
            return f"StepResult(ok, value={self.value!r})"
        return f"StepResult({self.kind.value if self.kind else 'error'}: {self.message})"
