"""
xetpl Template Errors
=====================

Exception hierarchy and structured diagnostics for the template compiler.

Compile-time problems are first recorded as Diagnostic objects. A strict
compile raises the matching exception for the first error-severity
diagnostic; a lenient compile skips the offending directive and keeps the
diagnostic on the CompileResult.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TemplateError(Exception):
    """Base exception for template errors."""
    pass


class TemplateNotFoundError(TemplateError):
    """Raised when template file is not found."""
    pass


class TemplateSyntaxError(TemplateError):
    """Raised when template has syntax errors."""

    def __init__(self, message: str, diagnostic: Optional["Diagnostic"] = None) -> None:
        super().__init__(message)
        self.diagnostic = diagnostic


class MalformedDirectiveError(TemplateSyntaxError):
    """A directive was recognised but could not be translated."""
    pass


class UnbalancedTagError(TemplateSyntaxError):
    """A loop/cond tag or a control-flow block was never closed."""
    pass


class UnresolvedPathError(TemplateSyntaxError):
    """A directive path could not be resolved against the application root."""
    pass


class IncludeDepthError(TemplateError):
    """Raised when nested includes exceed the configured depth."""
    pass


class TemplateRenderError(TemplateError):
    """Raised when rendering fails."""
    pass


class DiagnosticKind(Enum):
    """Diagnostic categories."""
    MALFORMED_DIRECTIVE = "malformed_directive"
    UNBALANCED_TAG = "unbalanced_tag"
    UNRESOLVED_PATH = "unresolved_path"


class Severity(Enum):
    WARNING = "warning"
    ERROR = "error"


_EXCEPTIONS = {
    DiagnosticKind.MALFORMED_DIRECTIVE: MalformedDirectiveError,
    DiagnosticKind.UNBALANCED_TAG: UnbalancedTagError,
    DiagnosticKind.UNRESOLVED_PATH: UnresolvedPathError,
}


@dataclass
class Diagnostic:
    """
    A compile problem tied to a template location.

    Attributes:
        kind: Diagnostic category
        message: Human readable description
        file: Template file being compiled
        offset: Character offset in the buffer of the stage that found it
        line: 1-based line in the original source, 0 if unknown
        text: Offending directive text
        severity: Error or warning
    """
    kind: DiagnosticKind
    message: str
    file: str = ""
    offset: int = -1
    line: int = 0
    text: str = ""
    severity: Severity = Severity.ERROR

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "file": self.file,
            "offset": self.offset,
            "line": self.line,
            "text": self.text,
        }

    def to_exception(self) -> TemplateSyntaxError:
        return _EXCEPTIONS[self.kind](str(self), self)

    def __str__(self) -> str:
        where = self.file or "<string>"
        if self.line:
            where = f"{where}:{self.line}"
        snippet = f" near {self.text!r}" if self.text else ""
        return f"{where}: {self.message}{snippet}"


@dataclass
class Diagnostics:
    """
    Collector shared by the compile stages of one template.

    In strict mode the first error raises immediately, so later stages never
    see a partially translated buffer.
    """
    file: str = ""
    source: str = ""
    strict: bool = True
    items: List[Diagnostic] = field(default_factory=list)

    def report(
        self,
        kind: DiagnosticKind,
        message: str,
        text: str = "",
        offset: int = -1,
        severity: Severity = Severity.ERROR,
    ) -> Diagnostic:
        diagnostic = Diagnostic(
            kind=kind,
            message=message,
            file=self.file,
            offset=offset,
            line=self._line_of(text, offset),
            text=text,
            severity=severity,
        )
        self.items.append(diagnostic)
        if self.strict and diagnostic.is_error:
            raise diagnostic.to_exception()
        return diagnostic

    def _line_of(self, text: str, offset: int) -> int:
        # Stage buffers drift from the source, so locate the text itself first.
        if text and self.source:
            found = self.source.find(text)
            if found >= 0:
                return self.source.count("\n", 0, found) + 1
        if 0 <= offset <= len(self.source):
            return self.source.count("\n", 0, offset) + 1
        return 0

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.items if d.is_error]

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)
