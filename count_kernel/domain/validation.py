"""
Validation result types (``count_kernel.domain.validation``).

Errors block a transition; warnings are advisory.  Both share the
``{field, message, code}`` shape so callers can render every problem at
once instead of a single message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Severity(str, Enum):
    """Severity of a validation outcome or an audit entry."""

    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class ValidationIssue:
    """One blocking error or advisory warning."""
    field: str
    message: str
    code: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message, "code": self.code}


def classify_severity(error_count: int, warning_count: int) -> Severity:
    """CRITICAL on any error; otherwise graded by the number of warnings."""
    if error_count > 0:
        return Severity.CRITICAL
    if warning_count > 5:
        return Severity.HIGH
    if warning_count > 2:
        return Severity.MEDIUM
    if warning_count > 0:
        return Severity.LOW
    return Severity.NONE


@dataclass(frozen=True)
class ValidationResult:
    """
    Outcome of one rule-validator call.  Transient, never persisted.

    ``valid`` is true iff there are no errors; warnings never block.
    """
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationIssue, ...] = ()
    timestamp: datetime | None = None

    @property
    def valid(self) -> bool:
        return not self.errors

    @property
    def severity(self) -> Severity:
        return classify_severity(len(self.errors), len(self.warnings))

    @property
    def error_codes(self) -> tuple[str, ...]:
        return tuple(e.code for e in self.errors)

    @property
    def warning_codes(self) -> tuple[str, ...]:
        return tuple(w.code for w in self.warnings)

    def has_error(self, code: str) -> bool:
        return code in self.error_codes

    def has_warning(self, code: str) -> bool:
        return code in self.warning_codes

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass(frozen=True)
class ValidationReport:
    """Summary of a ``ValidationResult`` with its severity classification."""
    timestamp: datetime | None
    valid: bool
    error_count: int
    warning_count: int
    severity: Severity
    errors: tuple[ValidationIssue, ...] = field(default_factory=tuple)
    warnings: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    @classmethod
    def from_result(cls, result: ValidationResult) -> ValidationReport:
        return cls(
            timestamp=result.timestamp,
            valid=result.valid,
            error_count=len(result.errors),
            warning_count=len(result.warnings),
            severity=result.severity,
            errors=result.errors,
            warnings=result.warnings,
        )


class IssueCollector:
    """Accumulates errors and warnings while a validator walks its rules."""

    def __init__(self) -> None:
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationIssue] = []

    def error(self, field: str, message: str, code: str) -> None:
        self.errors.append(ValidationIssue(field, message, code))

    def warn(self, field: str, message: str, code: str) -> None:
        self.warnings.append(ValidationIssue(field, message, code))

    def result(self, timestamp: datetime) -> ValidationResult:
        return ValidationResult(
            errors=tuple(self.errors),
            warnings=tuple(self.warnings),
            timestamp=timestamp,
        )
