"""
xetpl Engine Module
===================

The template compiler and its runtime.

Components:
- variables, paths: expression and path rewriting
- tagscope, directives, forms: compile stages over the template buffer
- codegen: marked buffer to Python module
- pipeline: runs the stages in order
- handler: caching, include recursion and rendering
- runtime: context, resource queue and template helpers
"""

from xetpl.engine.errors import (
    Diagnostic,
    DiagnosticKind,
    IncludeDepthError,
    MalformedDirectiveError,
    Severity,
    TemplateError,
    TemplateNotFoundError,
    TemplateRenderError,
    TemplateSyntaxError,
    UnbalancedTagError,
    UnresolvedPathError,
)
from xetpl.engine.handler import TemplateHandler, TemplateUnit
from xetpl.engine.pipeline import CompileResult, parse
from xetpl.engine.runtime import MISSING, Context, ResourceQueue

__all__ = [
    "Diagnostic",
    "DiagnosticKind",
    "Severity",
    "TemplateError",
    "TemplateNotFoundError",
    "TemplateSyntaxError",
    "MalformedDirectiveError",
    "UnbalancedTagError",
    "UnresolvedPathError",
    "IncludeDepthError",
    "TemplateRenderError",
    "TemplateHandler",
    "TemplateUnit",
    "CompileResult",
    "parse",
    "MISSING",
    "Context",
    "ResourceQueue",
]
