"""
xetpl Code Generation
=====================

Turns a marked template buffer into the source of a Python module.

The compile stages work on one text buffer. Wherever they need code, they
insert a marker::

    <?py if _ctx.user ?>Hello {name}<?py end ?>

Markers are ``<?py KIND PAYLOAD ?>``. PAYLOAD is raw Python for single
argument kinds and a JSON array for the rest. The generator walks the
buffer once, keeping a stack of open blocks, and emits a ``render``
function::

    def render(_ctx, _res, _tpl, _out, _depth=0):
        _append = _out.append
        if _ctx.user:
            _append('Hello {name}')

Kinds:
    echo EXPR           append _str(EXPR)
    exec STMT           run a statement
    if/elif EXPR, else  conditional blocks
    foreach [it, v, k]  guarded iteration over values or (key, value)
    for [init, c, st]   counting loop
    while EXPR          while loop
    whileset [t, e]     while loop whose condition is ``t = e``
    switch EXPR         switch block; case EXPR / default / break
    end                 close the innermost block
    include [dir, f]    render another template inline
    meta PATH           record a loaded asset in the module header
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

import orjson

from xetpl.engine.errors import Diagnostics, DiagnosticKind

# A payload never starts with "?>", so "<?py end ?>" stops at its own close
MARKER_RE = re.compile(r"<\?py (\w+)(?: (?!\?>)(.*?))? \?>", re.S)

MODULE_NAME = "__xetpl__"
RENDER_SIGNATURE = "def render(_ctx, _res, _tpl, _out, _depth=0):"

_JSON_KINDS = {"foreach", "for", "whileset", "include"}


def marker(kind: str, *args: Any) -> str:
    """Build a code marker for the compile buffer."""
    if not args:
        return f"<?py {kind} ?>"
    if kind in _JSON_KINDS:
        payload = orjson.dumps(list(args)).decode()
    else:
        payload = args[0]
    return f"<?py {kind} {payload} ?>"


def find_meta_files(source: str) -> List[str]:
    """List the asset paths recorded in a compiled module header."""
    files = []
    for line in source.splitlines():
        if line.startswith("# Meta: "):
            files.append(line[len("# Meta: "):])
        elif line and not line.startswith("#"):
            break
    return files


class CodeBuilder:
    """Line buffer with indentation tracking."""

    def __init__(self, indent_level: int = 0) -> None:
        self.indent_level = indent_level
        self.lines: List[str] = []
        # Whether each open scope received a statement yet
        self._filled: List[bool] = []

    def indent(self) -> str:
        return "    " * self.indent_level

    def emit(self, code: str) -> None:
        self.lines.append(f"{self.indent()}{code}")
        if self._filled:
            self._filled[-1] = True

    def enter_scope(self) -> None:
        self.indent_level += 1
        self._filled.append(False)

    def exit_scope(self) -> None:
        if not self._filled.pop():
            self.lines.append(f"{self.indent()}pass")
        self.indent_level -= 1
        if self._filled:
            self._filled[-1] = True

    def get_code(self) -> str:
        return "\n".join(self.lines)


@dataclass
class BlockFrame:
    """An open block in the generated code."""
    kind: str
    levels: int = 1
    tail: List[str] = field(default_factory=list)
    switch_id: int = 0
    # switch only: case expressions and the line deciding whether default runs
    cases: List[str] = field(default_factory=list)
    default_line: int = -1
    has_default: bool = False
    text: str = ""


class CodeGenerator:
    """
    Generates a render function from a marked buffer.

    Example:
        generator = CodeGenerator(diagnostics)
        source = generator.generate(buffer, name="skins/default/list.html")
    """

    def __init__(self, diagnostics: Diagnostics) -> None:
        self.diagnostics = diagnostics
        self.builder = CodeBuilder()
        self.stack: List[BlockFrame] = []
        self.meta: List[str] = []
        self._counter = 0

    def generate(self, buffer: str, name: str = "template") -> str:
        """Return the module source for ``buffer``."""
        self.builder.emit(RENDER_SIGNATURE)
        self.builder.enter_scope()
        self.builder.emit("_append = _out.append")

        pos = 0
        for match in MARKER_RE.finditer(buffer):
            self._text(buffer[pos:match.start()])
            self._code(match.group(1), match.group(2) or "", match.group(0), match.start())
            pos = match.end()
        self._text(buffer[pos:])

        while self.stack:
            frame = self.stack[-1]
            self.diagnostics.report(
                DiagnosticKind.UNBALANCED_TAG,
                f"'{frame.kind}' block is never closed",
                text=frame.text,
            )
            self._close()

        self.builder.exit_scope()
        return self.prologue(name) + self.builder.get_code() + "\n"

    def prologue(self, name: str) -> str:
        """Module header: origin, loaded assets and the entry point guard."""
        lines = [f"# xetpl compiled template: {name}"]
        lines.extend(f"# Meta: {path}" for path in self.meta)
        lines.append(f"if __name__ != {MODULE_NAME!r}:")
        lines.append("    raise ImportError('compiled templates run through TemplateHandler only')")
        return "\n".join(lines) + "\n\n\n"

    def _next_id(self) -> int:
        self._counter += 1
        return self._counter

    def _text(self, text: str) -> None:
        if not text:
            return
        if self.stack and self.stack[-1].kind == "switch":
            # Only whitespace may sit between a switch and its first case
            if text.strip():
                self.diagnostics.report(
                    DiagnosticKind.MALFORMED_DIRECTIVE,
                    "output between switch and its first case",
                    text=text.strip()[:40],
                )
            return
        self.builder.emit(f"_append({text!r})")

    def _code(self, kind: str, payload: str, raw: str, offset: int) -> None:
        handler = getattr(self, f"_emit_{kind}", None)
        if handler is None:
            self.diagnostics.report(
                DiagnosticKind.MALFORMED_DIRECTIVE,
                f"unknown code marker '{kind}'",
                text=raw,
                offset=offset,
            )
            return
        args = orjson.loads(payload) if kind in _JSON_KINDS else payload
        handler(args, raw)

    def _open(self, kind: str, header: str, raw: str, **frame: Any) -> BlockFrame:
        self.builder.emit(header)
        self.builder.enter_scope()
        block = BlockFrame(kind=kind, text=raw, **frame)
        self.stack.append(block)
        return block

    def _close(self) -> BlockFrame:
        frame = self.stack.pop()
        for line in frame.tail:
            self.builder.emit(line)
        for _ in range(frame.levels):
            self.builder.exit_scope()
        if frame.kind == "switch":
            self._close_switch(frame)
        return frame

    def _close_switch(self, frame: BlockFrame) -> None:
        """Make default run only when no case matches, wherever it is placed."""
        lines = self.builder.lines
        if not frame.has_default:
            del lines[frame.default_line]
        elif frame.cases:
            sw = f"_sw{frame.switch_id}"
            matches = " or ".join(f"{sw} == ({expr})" for expr in frame.cases)
            lines[frame.default_line] = lines[frame.default_line].replace(
                f"_def{frame.switch_id} = True",
                f"_def{frame.switch_id} = not ({matches})",
            )

    def _top(self, *kinds: str) -> Optional[BlockFrame]:
        if self.stack and self.stack[-1].kind in kinds:
            return self.stack[-1]
        return None

    def _emit_echo(self, expr: str, raw: str) -> None:
        self.builder.emit(f"_append(_str({expr}))")

    def _emit_exec(self, stmt: str, raw: str) -> None:
        self.builder.emit(stmt)

    def _emit_if(self, expr: str, raw: str) -> None:
        self._open("if", f"if {expr}:", raw)

    def _emit_elif(self, expr: str, raw: str) -> None:
        self._branch(f"elif {expr}:", raw, "if")

    def _emit_else(self, _: str, raw: str) -> None:
        self._branch("else:", raw, "else")

    def _branch(self, header: str, raw: str, kind: str) -> None:
        frame = self._top("if")
        if frame is None:
            self.diagnostics.report(
                DiagnosticKind.MALFORMED_DIRECTIVE,
                "else branch without an open if block",
                text=raw,
            )
            return
        self.builder.exit_scope()
        self.builder.emit(header)
        self.builder.enter_scope()
        frame.kind = kind

    def _emit_foreach(self, args: List[Optional[str]], raw: str) -> None:
        iterable, value, key = args
        var = f"_it{self._next_id()}"
        self.builder.emit(f"{var} = {iterable}")
        self._open("foreach", f"if {var}:", raw, levels=2)
        if key:
            self.builder.emit(f"for {key}, {value} in _pairs({var}):")
        else:
            self.builder.emit(f"for {value} in _values({var}):")
        self.builder.enter_scope()

    def _emit_for(self, args: List[Any], raw: str) -> None:
        init, cond, step = args
        for stmt in init:
            self.builder.emit(stmt)
        self._open("for", f"while {cond or 'True'}:", raw, tail=list(step))

    def _emit_while(self, expr: str, raw: str) -> None:
        self._open("while", f"while {expr}:", raw)

    def _emit_whileset(self, args: List[str], raw: str) -> None:
        target, expr = args
        self._open("while", "while True:", raw)
        self.builder.emit(f"{target} = {expr}")
        self.builder.emit(f"if not {target}:")
        self.builder.enter_scope()
        self.builder.emit("break")
        self.builder.exit_scope()

    def _emit_switch(self, expr: str, raw: str) -> None:
        switch_id = self._next_id()
        self.builder.emit(f"_sw{switch_id} = {expr}")
        self.builder.emit(f"_hit{switch_id} = False")
        # Rewritten once the cases are known, see _close_switch()
        default_line = len(self.builder.lines)
        self.builder.emit(f"_def{switch_id} = True")
        # A one-shot loop so that break leaves the switch
        self._open(
            "switch",
            f"for _once{switch_id} in (0,):",
            raw,
            switch_id=switch_id,
            default_line=default_line,
        )

    def _emit_case(self, expr: str, raw: str) -> None:
        self._label(raw, expr)

    def _emit_default(self, _: str, raw: str) -> None:
        self._label(raw, None)

    def _label(self, raw: str, expr: Optional[str]) -> None:
        if self._top("case"):
            self._close()
        frame = self._top("switch")
        if frame is None:
            self.diagnostics.report(
                DiagnosticKind.MALFORMED_DIRECTIVE,
                "case label outside a switch block",
                text=raw,
            )
            return
        hit = f"_hit{frame.switch_id}"
        if expr is None:
            frame.has_default = True
            self.builder.emit(f"if not {hit} and _def{frame.switch_id}:")
        else:
            frame.cases.append(expr)
            self.builder.emit(f"if not {hit} and _sw{frame.switch_id} == ({expr}):")
        self.builder.enter_scope()
        self.builder.emit(f"{hit} = True")
        self.builder.exit_scope()
        self._open("case", f"if {hit}:", raw)

    def _emit_break(self, _: str, raw: str) -> None:
        if self._top("switch"):
            # break@case before the first case has nothing to leave
            return
        if not any(f.kind in ("foreach", "for", "while", "switch") for f in self.stack):
            self.diagnostics.report(
                DiagnosticKind.MALFORMED_DIRECTIVE,
                "break outside a loop or switch",
                text=raw,
            )
            return
        self.builder.emit("break")

    def _emit_end(self, _: str, raw: str) -> None:
        if not self.stack:
            self.diagnostics.report(
                DiagnosticKind.UNBALANCED_TAG,
                "block end without an open block",
                text=raw,
            )
            return
        if self._close().kind == "case":
            self._close()

    def _emit_include(self, args: List[str], raw: str) -> None:
        directory, filename = args
        self.builder.emit(
            f"_append(_tpl.include({directory!r}, {filename!r}, _ctx, _res, _depth))"
        )

    def _emit_meta(self, path: str, raw: str) -> None:
        self.meta.append(path)
