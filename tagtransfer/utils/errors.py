"""Custom exceptions for core logic."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tagtransfer.context.models import ParseResult
    from tagtransfer.render.models import FillReport


class DocumentInputError(Exception):
    """Raised when a reference or target document cannot be used as input."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NoPlaceholdersError(DocumentInputError):
    """Raised when the reference document carries no {{TAG}} placeholder."""


class OracleError(Exception):
    """Raised when the semantic oracle cannot produce a response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TemplateError(Exception):
    """Raised when template placeholders are unsupported in error mode."""

    def __init__(
        self,
        message: str,
        *,
        result: ParseResult | None = None,
        fill_report: FillReport | None = None,
    ) -> None:
        super().__init__(message)
        self.result = result
        self.fill_report = fill_report
