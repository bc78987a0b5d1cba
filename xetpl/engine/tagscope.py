"""
xetpl Tag-Scope Compiler
========================

Compiles ``loop`` and ``cond`` attributes into blocks that wrap the whole
element carrying them::

    <li loop="$list=>$item" class="row">{$item}</li>
    <li loop="$list=>$key,$item">...</li>
    <tr loop="$i=0;$i<3;$i++">...</tr>
    <p loop="$row = $query.fetch()">...</p>
    <div cond="$logged_in">...</div>
    <a href="#" class="on"|cond="$active">

Only tag names observed to carry these attributes take part in
tokenizing. The buffer is split into alternating text and tag tokens, and a
stack matcher pairs every opening tag with its closing tag of the same name
before any token is rewritten.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from xetpl.engine.codegen import marker
from xetpl.engine.errors import Diagnostics, DiagnosticKind
from xetpl.engine.variables import (
    normalize_expression,
    normalize_statement,
    split_assignment,
)

SELF_CLOSING = frozenset(
    "area,base,basefont,br,hr,input,img,link,meta,param,frame,col".split(",")
)

_TAG_START = re.compile(r"<([a-zA-Z]+\d?)(?=[\s/>])")
_HAS_CONTROL = re.compile(r"(?:[\s|]cond|\sloop)=\"")
_CONTROL_ATTR = re.compile(r"\s(loop|cond)=\"([^\"]+)\"")
_INLINE_COND = re.compile(r"(\s[\w:-]+=\"[^\"]*\")\|cond=\"([^\"]+)\"")

_LOOP_FOREACH = re.compile(r"^(.+?)=>(.+?)(?:,(.+?))?$", re.S)
_LOOP_COUNTING = re.compile(r"^(.*?);(.*?);(.*?)$", re.S)


@dataclass
class TagToken:
    """Parsed view of a tag token."""
    name: str
    closing: bool
    self_closing: bool


def scan_tag_end(buffer: str, pos: int) -> int:
    """
    Find the end of the tag starting at ``pos``.

    Quoted values, ``{...}`` expressions and ``<!--...-->`` comments inside
    the tag are skipped whole, so a ``>`` inside them does not end the tag.

    Returns:
        Index just past the closing ``>``, or -1 if the tag never ends
    """
    i = pos + 1
    n = len(buffer)

    while i < n:
        ch = buffer[i]
        if ch == ">":
            return i + 1

        end = -1
        if ch in "\"'":
            end = buffer.find(ch, i + 1)
        elif ch == "{":
            end = buffer.find("}", i + 1)
        elif buffer.startswith("<!--", i):
            end = buffer.find("-->", i + 4)
            if end >= 0:
                end += 2

        # An unterminated quote or brace is an ordinary character
        i = end + 1 if end >= 0 else i + 1

    return -1


def collect_control_tags(buffer: str) -> Set[str]:
    """Names of the tags carrying ``loop``/``cond`` attributes."""
    names: Set[str] = set()
    for match in _TAG_START.finditer(buffer):
        end = scan_tag_end(buffer, match.start())
        if end >= 0 and _HAS_CONTROL.search(buffer, match.start(), end):
            names.add(match.group(1))
    return names


def tokenize(buffer: str, names: Set[str]) -> List[str]:
    """
    Split the buffer into ``[text, tag, text, tag, ..., text]``.

    Only opening and closing tags whose name is in ``names`` become tag
    tokens. ``"".join(tokens) == buffer`` always holds.
    """
    alternatives = "|".join(re.escape(name) for name in sorted(names, key=len, reverse=True))
    boundary = re.compile(rf"</?(?:{alternatives})(?=[\s/>])")

    tokens: List[str] = []
    text_start = 0
    pos = 0

    while True:
        match = boundary.search(buffer, pos)
        if match is None:
            break
        end = scan_tag_end(buffer, match.start())
        if end < 0:
            pos = match.end()
            continue
        tokens.append(buffer[text_start:match.start()])
        tokens.append(buffer[match.start():end])
        text_start = pos = end

    tokens.append(buffer[text_start:])
    return tokens


def parse_tag(token: str) -> TagToken:
    closing = token.startswith("</")
    name = re.match(r"</?([a-zA-Z]+\d?)", token).group(1)
    self_closing = (
        not closing
        and (token.rstrip(">").rstrip().endswith("/") or name.lower() in SELF_CLOSING)
    )
    return TagToken(name=name, closing=closing, self_closing=self_closing)


def match_tags(tokens: List[str]) -> Dict[int, int]:
    """
    Pair opening tag indexes with their closing tag indexes.

    Each tag name has its own stack; a closing tag pops the innermost open
    tag of the same name. Stray closing tags are ignored and unclosed
    opening tags are absent from the result.
    """
    stacks: Dict[str, List[int]] = defaultdict(list)
    pairs: Dict[int, int] = {}

    for idx in range(1, len(tokens), 2):
        tag = parse_tag(tokens[idx])
        if tag.closing:
            if stacks[tag.name]:
                pairs[stacks[tag.name].pop()] = idx
        elif not tag.self_closing:
            stacks[tag.name].append(idx)

    return pairs


class TagScopeCompiler:
    """Rewrites loop/cond bearing elements into code blocks."""

    def __init__(self, diagnostics: Diagnostics) -> None:
        self.diagnostics = diagnostics

    def compile(self, buffer: str) -> str:
        names = collect_control_tags(buffer)
        if not names:
            return buffer

        tokens = tokenize(buffer, names)
        pairs = match_tags(tokens)

        offsets = []
        position = 0
        for token in tokens:
            offsets.append(position)
            position += len(token)

        before: Dict[int, str] = {}
        after: Dict[int, str] = {}
        trailer: List[str] = []

        for idx in range(1, len(tokens), 2):
            node = tokens[idx]
            tag = parse_tag(node)
            if tag.closing:
                continue

            controls = _CONTROL_ATTR.findall(node)
            if controls:
                opened = [
                    code for code in (
                        self._open(stmt, expr, node, offsets[idx])
                        for stmt, expr in controls
                    )
                    if code
                ]
                node = _CONTROL_ATTR.sub("", node)

                if opened:
                    before[idx] = "".join(opened)
                    closing = marker("end") * len(opened)

                    if tag.self_closing:
                        after[idx] = closing
                    elif idx in pairs:
                        after[pairs[idx]] = closing
                    else:
                        self.diagnostics.report(
                            DiagnosticKind.UNBALANCED_TAG,
                            f"<{tag.name}> with loop/cond has no closing tag",
                            text=tokens[idx],
                            offset=offsets[idx],
                        )
                        trailer.append(closing)

            if '|cond="' in node:
                node = _INLINE_COND.sub(self._inline_cond, node)

            tokens[idx] = node

        output = [tokens[0]]
        for idx in range(1, len(tokens), 2):
            output.append(before.get(idx, ""))
            output.append(tokens[idx])
            output.append(after.get(idx, ""))
            output.append(tokens[idx + 1])
        output.extend(trailer)

        return "".join(output)

    def _open(self, stmt: str, expr: str, node: str, offset: int) -> Optional[str]:
        if stmt == "cond":
            return marker("if", normalize_expression(expr))

        code = self._loop(expr)
        if code is None:
            self.diagnostics.report(
                DiagnosticKind.MALFORMED_DIRECTIVE,
                "loop must be 'list=>value', 'init;cond;step' or 'var = expr'",
                text=f'loop="{expr}"',
                offset=offset,
            )
        return code

    def _loop(self, expr: str) -> Optional[str]:
        foreach = _LOOP_FOREACH.match(expr)
        if foreach:
            iterable, first, second = foreach.groups()
            # list=>value, or list=>key,value
            key, value = (first, second) if second else (None, first)
            return marker(
                "foreach",
                normalize_expression(iterable),
                normalize_expression(value),
                normalize_expression(key) if key else None,
            )

        counting = _LOOP_COUNTING.match(expr)
        if counting:
            init, cond, step = counting.groups()
            return marker(
                "for",
                normalize_statement(init, split_commas=True),
                normalize_expression(cond),
                normalize_statement(step, split_commas=True),
            )

        assignment = split_assignment(expr)
        if assignment:
            target, value = assignment
            return marker("whileset", normalize_expression(target), normalize_expression(value))

        return None

    @staticmethod
    def _inline_cond(match: re.Match) -> str:
        return marker("if", normalize_expression(match.group(2))) + match.group(1) + marker("end")
