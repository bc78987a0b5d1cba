"""
xetpl Compilation Pipeline
==========================

Runs the compile stages over one template buffer, in order:

1. strip ``<!--// ... -->`` comments
2. rewrite relative ``src`` attributes of img/input/script tags
3. Tag-Scope Compiler (loop/cond attributes)
4. Directive Dispatcher (expressions, resources, control flow)
5. strip ``<block>`` wrappers and leftover comments
6. Form Security Augmenter
7. code generation with the entry point guard

Later stages depend on earlier ones: the form pass expects plain hidden
inputs, not loop/cond attributes, and code generation expects every
directive to be a code marker.

Example:
    result = parse(source, file="/app/modules/board/skins/default/list.html", root="/app")
    print(result.source)
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from xetpl.engine.codegen import CodeGenerator
from xetpl.engine.directives import DirectiveDispatcher
from xetpl.engine.errors import Diagnostic, Diagnostics, TemplateSyntaxError, UnresolvedPathError
from xetpl.engine.forms import FormAugmenter
from xetpl.engine.paths import rewrite_src, to_root_relative
from xetpl.engine.tagscope import TagScopeCompiler
from xetpl.utils.logger import get_logger

logger = get_logger("xetpl.pipeline")

_COMMENT_RE = re.compile(r"<!--//.*?-->", re.S)
_SRC_RE = re.compile(
    r"<(?:img|input|script)(?:(?![\"'/]\s*>).)* src=\"(?!https?://|[/{])([^\"]+)\"",
    re.I | re.S,
)
_BLOCK_RE = re.compile(r"</?block\s*>|\s?<!--//(.*?)-->", re.I | re.S)


@dataclass
class CompileResult:
    """Generated module source plus the diagnostics found on the way."""
    source: str
    diagnostics: List[Diagnostic] = field(default_factory=list)
    meta: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not any(d.is_error for d in self.diagnostics)


def strip_comments(buffer: str) -> str:
    return _COMMENT_RE.sub("", buffer)


def rewrite_asset_paths(buffer: str, web_path: str) -> str:
    """Point relative ``src`` attributes at the template's web path."""
    def replace(match: re.Match) -> str:
        head = match.group(0)[:-len(match.group(1)) - 6]
        return f'{head}src="{rewrite_src(match.group(1), web_path)}"'

    return _SRC_RE.sub(replace, buffer)


def strip_blocks(buffer: str) -> str:
    return _BLOCK_RE.sub("", buffer)


def parse(
    source: str,
    file: Optional[Union[str, Path]] = None,
    root: Optional[Union[str, Path]] = None,
    web_path: str = "",
    strict: bool = True,
    csrf_field: Optional[str] = None,
) -> CompileResult:
    """
    Compile template source into a Python module.

    Args:
        source: Template source
        file: Template file, needed to resolve relative directive paths
        root: Application root
        web_path: URL prefix of the template directory
        strict: Raise on the first error instead of collecting it
        csrf_field: Name of the CSRF hidden field added to forms, None to skip

    Returns:
        CompileResult with the module source and diagnostics

    Raises:
        TemplateSyntaxError: On a strict-mode error, or if the generated
            code does not compile
    """
    name = str(file) if file else "<string>"
    diagnostics = Diagnostics(file=name, source=source, strict=strict)

    template_dir = ""
    if file and root:
        try:
            template_dir = to_root_relative(os.path.realpath(os.path.dirname(file)), root)
        except UnresolvedPathError:
            template_dir = Path(file).parent.as_posix()

    buffer = strip_comments(source)
    buffer = rewrite_asset_paths(buffer, web_path)
    buffer = TagScopeCompiler(diagnostics).compile(buffer)
    buffer = DirectiveDispatcher(diagnostics, file=file, root=root).compile(buffer)
    buffer = strip_blocks(buffer)
    buffer = FormAugmenter(diagnostics, template_dir=template_dir, csrf_field=csrf_field).compile(buffer)

    generator = CodeGenerator(diagnostics)
    code = generator.generate(buffer, name=name)

    try:
        compile(code, name, "exec")
    except SyntaxError as e:
        raise TemplateSyntaxError(f"{name}: generated code does not compile: {e.msg} (line {e.lineno})")

    for diagnostic in diagnostics:
        logger.warning(
            str(diagnostic),
            kind=diagnostic.kind.value,
            severity=diagnostic.severity.value,
        )

    return CompileResult(source=code, diagnostics=list(diagnostics), meta=list(generator.meta))
