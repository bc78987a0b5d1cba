"""
xetpl Variable Rewriting
========================

Turns template expressions into Python source rooted at the rendering
context.

Template code names variables with a ``$`` sigil::

    {$document.title}          ->  _ctx.document.title
    cond="$a && !$b"           ->  _ctx.a and not _ctx.b
    {@ $i++; $total = 0}       ->  _ctx.i += 1 / _ctx.total = 0

String literals are copied through untouched.
"""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

CONTEXT_NAME = "_ctx"

# $name, $_name ... but not $__Context style internals, Cls::$x or \$x
_VAR_RE = re.compile(r"(?<!::)(?<![.\\])\$(?=[a-zA-Z]|_[a-zA-Z0-9])")

_OPERATORS = [
    (re.compile(r"\s*\n\s*"), " "),
    (re.compile(r"->"), "."),
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
    (re.compile(r"(?<![\w$.])true\b"), "True"),
    (re.compile(r"(?<![\w$.])false\b"), "False"),
    (re.compile(r"(?<![\w$.])null\b"), "None"),
]

_INCREMENT_RE = re.compile(r"^(?:(?P<post>.+?)\s*(?P<op>\+\+|--)|(?P<pre_op>\+\+|--)\s*(?P<pre>.+))$")

_OPEN = "([{"
_CLOSE = ")]}"


def split_literals(code: str) -> List[Tuple[bool, str]]:
    """
    Split code into (is_literal, text) segments.

    Quoted strings honour backslash escapes; an unterminated quote runs to
    the end of the input.
    """
    segments: List[Tuple[bool, str]] = []
    buf: List[str] = []
    i = 0
    n = len(code)

    while i < n:
        ch = code[i]
        if ch in "'\"":
            if buf:
                segments.append((False, "".join(buf)))
                buf = []
            start = i
            i += 1
            while i < n and code[i] != ch:
                i += 2 if code[i] == "\\" else 1
            i = min(i + 1, n)
            segments.append((True, code[start:i]))
        else:
            buf.append(ch)
            i += 1

    if buf:
        segments.append((False, "".join(buf)))
    return segments


def _map_code(code: str, func) -> str:
    return "".join(
        text if literal else func(text)
        for literal, text in split_literals(code)
    )


def replace_var(code: str) -> str:
    """Rewrite bare ``$name`` references into context attribute access."""
    if not code:
        return ""
    return _map_code(code, lambda text: _VAR_RE.sub(CONTEXT_NAME + ".", text))


def _normalize_operators(text: str) -> str:
    for pattern, replacement in _OPERATORS:
        text = pattern.sub(replacement, text)
    return text


def normalize_expression(code: str) -> str:
    """Translate a template expression into a Python expression."""
    if not code:
        return ""
    return replace_var(_map_code(code.strip(), _normalize_operators)).strip()


def normalize_statement(code: str, split_commas: bool = False) -> List[str]:
    """
    Translate template statements into Python statements.

    Statements are separated by top-level ``;`` (and ``,`` for the init and
    step clauses of counting loops). Increments are rewritten to augmented
    assignments.
    """
    statements = []
    for part in split_top_level(code, ";"):
        pieces = split_top_level(part, ",") if split_commas else [part]
        for piece in pieces:
            piece = piece.strip()
            if not piece:
                continue
            match = _INCREMENT_RE.match(piece)
            if match and "$" in piece:
                target = match.group("post") or match.group("pre")
                op = match.group("op") or match.group("pre_op")
                piece = f"{target} {'+' if op == '++' else '-'}= 1"
            statements.append(normalize_expression(piece))
    return statements


def split_top_level(code: str, sep: str) -> List[str]:
    """Split on ``sep`` outside brackets and string literals."""
    parts: List[str] = []
    current: List[str] = []
    depth = 0

    for literal, text in split_literals(code):
        if literal:
            current.append(text)
            continue
        for ch in text:
            if ch in _OPEN:
                depth += 1
            elif ch in _CLOSE:
                depth = max(depth - 1, 0)
            elif ch == sep and depth == 0:
                parts.append("".join(current))
                current = []
                continue
            current.append(ch)

    parts.append("".join(current))
    return parts


def unwrap_parens(code: str) -> str:
    """Strip one pair of parentheses enclosing the whole expression."""
    code = code.strip()
    if not (code.startswith("(") and code.endswith(")")):
        return code

    depth = 0
    last = len(code) - 1
    for pos, ch in _code_chars(code):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            # "(a) or (b)": the first paren closes before the end
            if depth == 0 and pos != last:
                return code
    if depth != 0:
        return code
    return code[1:-1].strip()


def _code_chars(code: str):
    """Yield (position, char) for characters outside string literals."""
    offset = 0
    for literal, text in split_literals(code):
        if not literal:
            for i, ch in enumerate(text):
                yield offset + i, ch
        offset += len(text)


def split_assignment(code: str) -> Optional[Tuple[str, str]]:
    """
    Split ``target = expr`` at a top-level single ``=``.

    Comparison and arrow operators (``==``, ``!=``, ``<=``, ``>=``, ``=>``)
    are not assignments.
    """
    depth = 0
    for pos, ch in _code_chars(code):
        if ch in _OPEN:
            depth += 1
        elif ch in _CLOSE:
            depth -= 1
        elif ch == "=" and depth == 0:
            prev = code[pos - 1] if pos else ""
            nxt = code[pos + 1] if pos + 1 < len(code) else ""
            if prev in "=!<>+-*/%&|^:" or nxt in "=>":
                continue
            target, expr = code[:pos].strip(), code[pos + 1:].strip()
            if target and expr:
                return target, expr
            return None
    return None
