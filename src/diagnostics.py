"""
Diagnostics - Error taxonomy and the per-call diagnostics sink.

Every lifecycle call collects its errors and warnings here instead of raising
them to the caller. A blocking error stops the remaining steps of that one
call; other resources are unaffected.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


class Severity(Enum):
    """Severity of a diagnostic."""

    ERROR = "error"
    WARNING = "warning"


class ReconcileError(Exception):
    """Base class for errors raised while reconciling a resource."""

    summary = "Reconciliation failed"

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        identifier: Optional[str] = None,
        attribute: Optional[str] = None,
    ):
        self.message = message
        self.kind = kind
        self.identifier = identifier
        self.attribute = attribute
        super().__init__(message)


class ValidationError(ReconcileError):
    """Desired attributes are missing, unknown or malformed."""

    summary = "Invalid resource attributes"


class PreconditionError(ReconcileError):
    """A principal or object the resource refers to does not exist."""

    summary = "Precondition failed"


class RemoteError(ReconcileError):
    """The server rejected a statement. The message is the driver's, verbatim."""

    summary = "Server rejected statement"


class NoRowsError(Exception):
    """Raised by the server handle when a row query returned no row."""


class PartialApplyError(RemoteError):
    """The primary change was applied but a follow-up statement failed."""

    summary = "Change partially applied"


class IrreplaceableAttributeError(ReconcileError):
    """An attribute changed that can neither be updated in place nor renamed."""

    summary = "Attribute cannot be updated in place"


@dataclass
class Diagnostic:
    """A single error or warning attached to a lifecycle call."""

    severity: Severity
    summary: str
    detail: str = ""
    kind: Optional[str] = None
    identifier: Optional[str] = None
    attribute: Optional[str] = None

    def __str__(self) -> str:
        where = ""
        if self.kind:
            where = self.kind
            if self.identifier:
                where += f" {self.identifier!r}"
            if self.attribute:
                where += f" ({self.attribute})"
            where = f"[{where}] "
        text = f"{self.severity.value}: {where}{self.summary}"
        if self.detail:
            text += f": {self.detail}"
        return text


class Diagnostics:
    """
    Append-only collection of diagnostics for one lifecycle call.

    Any ERROR makes the sink blocking. The reconciler checks
    has_blocking_error() after every validation and precondition step.
    """

    def __init__(self):
        self._items: List[Diagnostic] = []

    def add(
        self,
        severity: Severity,
        summary: str,
        detail: str = "",
        kind: Optional[str] = None,
        identifier: Optional[str] = None,
        attribute: Optional[str] = None,
    ) -> Diagnostic:
        diagnostic = Diagnostic(
            severity=severity,
            summary=summary,
            detail=detail,
            kind=kind,
            identifier=identifier,
            attribute=attribute,
        )
        self._items.append(diagnostic)
        if severity is Severity.ERROR:
            logger.error(str(diagnostic))
        else:
            logger.warning(str(diagnostic))
        return diagnostic

    def add_error(self, error: ReconcileError) -> Diagnostic:
        """Record a ReconcileError as an ERROR diagnostic."""
        return self.add(
            Severity.ERROR,
            error.summary,
            error.message,
            kind=error.kind,
            identifier=error.identifier,
            attribute=error.attribute,
        )

    def add_warning(self, summary: str, detail: str = "", **context) -> Diagnostic:
        return self.add(Severity.WARNING, summary, detail, **context)

    def extend(self, other: "Diagnostics") -> None:
        self._items.extend(other)

    def has_blocking_error(self) -> bool:
        return any(d.severity is Severity.ERROR for d in self._items)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self._items if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self._items if d.severity is Severity.WARNING]

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __repr__(self) -> str:
        return f"Diagnostics({self._items!r})"
