"""
xetpl Template Handler
======================

Compiles template files on demand, caches the compiled modules and renders
them.

Lifecycle of ``compile()``:

    init          resolve the file, compute the TemplateUnit
    lookup        backend entry ``template:<file>``, or the compiled file
                  ``<md5(file + version)>.compiled.py`` when the backend is
                  unsupported; valid only if not older than
                  max(source mtime, compiler mtime)
    compile       on a miss: run the pipeline and store the result
    fetch         execute the module and call ``render`` inside an output
                  capture region

One handler serves a whole render: includes call back into the handler
that rendered their parent, with ``is_root=False`` and one more level of
depth.

Example:
    handler = TemplateHandler(config)
    html = handler.compile("modules/board/skins/default", "list", context=Context(items=rows))
"""

from __future__ import annotations

import hashlib
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from types import CodeType
from typing import Any, Dict, List, Mapping, Optional, Union

from xetpl import __version__
from xetpl.cache import CacheBackend, create_backend
from xetpl.core.config import Config, get_config
from xetpl.engine.codegen import MODULE_NAME
from xetpl.engine.errors import (
    IncludeDepthError,
    TemplateError,
    TemplateNotFoundError,
    TemplateRenderError,
)
from xetpl.engine.paths import web_path_for
from xetpl.engine.pipeline import CompileResult, parse
from xetpl.engine.runtime import (
    MISSING,
    Context,
    ResourceQueue,
    build_globals,
    capture_output,
    context_vars,
    escape,
    is_logged,
)
from xetpl.security.csrf import CSRFProtection
from xetpl.utils.logger import get_logger

logger = get_logger("xetpl.handler")

COMPILED_SUFFIX = ".compiled.py"

PathLike = Union[str, Path]


def compiler_mtime() -> float:
    """Newest modification time among the engine modules."""
    engine_dir = Path(__file__).parent
    return max(p.stat().st_mtime for p in engine_dir.glob("*.py"))


@dataclass(frozen=True)
class TemplateUnit:
    """
    Identity of one template file.

    Attributes:
        path: Directory holding the template, with a trailing slash
        filename: Template file name
        file: Full template path
        web_path: URL prefix of the template directory
        cache_key: md5 of the file path and the compiler version
        compiled_file: Compiled module on disk
        is_root: Whether this is the outermost template of a render
    """
    path: str
    filename: str
    file: str
    web_path: str
    cache_key: str
    compiled_file: str
    is_root: bool = True

    @property
    def backend_key(self) -> str:
        return f"template:{self.file}"


@dataclass
class RenderStats:
    """Counters for debug output."""
    calls: int = 0
    compiles: int = 0
    cache_hits: int = 0
    elapsed: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calls": self.calls,
            "compiles": self.compiles,
            "cache_hits": self.cache_hits,
            "elapsed": round(self.elapsed, 6),
        }


class CodeCache:
    """
    LRU cache of compiled code objects keyed by source digest.

    Lets a compiled template run many times with a single ``compile()``.
    """

    def __init__(self, max_size: int = 100) -> None:
        self.max_size = max_size
        self._cache: Dict[str, CodeType] = {}
        self._access_order: List[str] = []

    def get(self, key: str) -> Optional[CodeType]:
        if key in self._cache:
            self._access_order.remove(key)
            self._access_order.append(key)
            return self._cache[key]
        return None

    def set(self, key: str, code: CodeType) -> None:
        if key in self._cache:
            self._access_order.remove(key)
        elif len(self._cache) >= self.max_size:
            # Evict least recently used
            oldest = self._access_order.pop(0)
            del self._cache[oldest]

        self._cache[key] = code
        self._access_order.append(key)

    def clear(self) -> None:
        self._cache.clear()
        self._access_order.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)


class TemplateHandler:
    """
    Template compile, cache and render service.

    Args:
        config: Configuration, the global one if omitted
        backend: Cache backend, built from ``cache.backend`` if omitted
        csrf: CSRF token issuer for forms, built from config when
            ``forms.csrf`` is enabled
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        backend: Optional[CacheBackend] = None,
        csrf: Optional[CSRFProtection] = None,
    ) -> None:
        self.config = config if config is not None else get_config()
        self.root = Path(os.path.realpath(self.config.get("template.root", ".")))
        self.web_root = self.config.get("template.web_root", "")
        self.extension = self.config.get("template.extension", ".html")
        self.strict = self.config.get_bool("template.strict", True)
        self.max_include_depth = self.config.get_int("template.max_include_depth", 16)
        self.debug = self.config.get_bool("template.debug", False)

        compiled_dir = Path(self.config.get("template.compiled_dir", "files/cache/template_compiled"))
        self.compiled_dir = compiled_dir if compiled_dir.is_absolute() else self.root / compiled_dir

        self.backend = backend if backend is not None else create_backend(self.config)

        self.csrf_field: Optional[str] = None
        self.csrf = csrf
        if self.config.get_bool("forms.csrf", False):
            self.csrf_field = self.config.get("forms.csrf_field", "_csrf_token")
            if self.csrf is None:
                self.csrf = CSRFProtection.from_config(self.config)

        self.handler_mtime = compiler_mtime()
        self.stats = RenderStats()
        self._code_cache = CodeCache(max_size=self.config.get_int("cache.max_size", 100))

    def init(
        self,
        tpl_path: PathLike,
        tpl_filename: str,
        tpl_file: Optional[PathLike] = None,
        is_root: bool = True,
    ) -> TemplateUnit:
        """
        Resolve a template file.

        The configured extension is appended to ``tpl_filename`` when only
        the extended name exists.
        """
        path = str(tpl_path)
        if not path.endswith("/"):
            path += "/"
        if not os.path.isabs(path):
            path = f"{self.root.as_posix()}/{path}"

        if not os.path.exists(path + tpl_filename) and os.path.exists(path + tpl_filename + self.extension):
            tpl_filename += self.extension

        file = str(tpl_file) if tpl_file else path + tpl_filename
        cache_key = hashlib.md5((file + __version__).encode()).hexdigest()

        return TemplateUnit(
            path=path,
            filename=tpl_filename,
            file=file,
            web_path=web_path_for(path, self.root, self.web_root),
            cache_key=cache_key,
            compiled_file=str(self.compiled_dir / f"{cache_key}{COMPILED_SUFFIX}"),
            is_root=is_root,
        )

    def compile(
        self,
        tpl_path: PathLike,
        tpl_filename: str,
        tpl_file: Optional[PathLike] = None,
        context: Optional[Mapping[str, Any]] = None,
        resources: Optional[ResourceQueue] = None,
        *,
        is_root: bool = True,
        depth: int = 0,
    ) -> str:
        """
        Compile if needed and render a template.

        Args:
            tpl_path: Directory holding the template
            tpl_filename: Template file name, extension optional
            tpl_file: Full path, overriding path and filename
            context: Template variables
            resources: Queue receiving load directives
            is_root: False for includes
            depth: Include nesting level

        Returns:
            Rendered output, or an ``Err : ...`` line if the file is missing

        Raises:
            TemplateSyntaxError: Strict-mode compile error
            IncludeDepthError: Includes nested deeper than allowed
            TemplateRenderError: The template raised while rendering
        """
        unit = self.init(tpl_path, tpl_filename, tpl_file, is_root=is_root)

        if not os.path.isfile(unit.file):
            return f"Err : '{unit.file}' template file does not exists."

        if resources is None:
            resources = ResourceQueue()
        return self._render(unit, self._as_context(context), resources, depth)

    def compile_direct(self, tpl_path: PathLike, tpl_filename: str) -> str:
        """
        Return the compiled module source of a template without caching.

        Raises:
            TemplateNotFoundError: If the file does not exist
        """
        unit = self.init(tpl_path, tpl_filename)
        if not os.path.isfile(unit.file):
            raise TemplateNotFoundError(f"Cannot find the template file: '{unit.file}'")
        return self.parse(unit).source

    def parse(self, unit: TemplateUnit, source: Optional[str] = None) -> CompileResult:
        """Run the compile pipeline over a template."""
        if source is None:
            source = Path(unit.file).read_text(encoding="utf-8")

        return parse(
            source,
            file=unit.file,
            root=self.root,
            web_path=unit.web_path,
            strict=self.strict,
            csrf_field=self.csrf_field,
        )

    def include(
        self,
        directory: str,
        filename: str,
        context: Context,
        resources: ResourceQueue,
        depth: int = 0,
    ) -> str:
        """
        Render an included template inline.

        ``directory`` is relative to the application root. A missing file
        renders as nothing.
        """
        path = self.root if directory == "." else self.root / directory
        unit = self.init(path, filename, is_root=False)

        if not os.path.isfile(unit.file):
            logger.warning("Included template not found", file=unit.file)
            return ""

        return self._render(unit, context, resources, depth + 1)

    def csrf_token(self, context: Union[Context, Mapping[str, Any]]) -> str:
        """Escaped CSRF token for a form rendered with ``context``."""
        if self.csrf is None:
            return ""
        return escape(self.csrf.token_for(context_vars(context)))

    def clear_cache(self) -> int:
        """
        Drop every compiled template.

        Returns:
            Number of compiled files removed
        """
        self.backend.clear()
        self._code_cache.clear()

        removed = 0
        if self.compiled_dir.is_dir():
            for compiled in self.compiled_dir.glob(f"*{COMPILED_SUFFIX}"):
                compiled.unlink()
                removed += 1
        logger.info("Template cache cleared", removed=removed)
        return removed

    def _as_context(self, context: Optional[Union[Context, Mapping[str, Any]]]) -> Context:
        if isinstance(context, Context):
            return context
        return Context(context or {})

    def _render(
        self,
        unit: TemplateUnit,
        context: Context,
        resources: ResourceQueue,
        depth: int,
    ) -> str:
        if depth > self.max_include_depth:
            raise IncludeDepthError(
                f"{unit.file}: includes nested deeper than {self.max_include_depth}"
            )

        start = time.perf_counter()

        source_mtime = os.path.getmtime(unit.file)
        latest = max(source_mtime, self.handler_mtime)

        payload = self._lookup(unit, latest)
        if payload is None:
            payload = self.parse(unit).source
            self._store(unit, payload)
            self.stats.compiles += 1
            logger.debug("Template compiled", file=unit.file)
        else:
            self.stats.cache_hits += 1
            logger.debug("Template cache hit", file=unit.file)

        output = self._fetch(unit, payload, context, resources, depth)

        self.stats.calls += 1
        self.stats.elapsed += time.perf_counter() - start
        if unit.is_root:
            logger.debug("Template rendered", file=unit.file, **self.stats.to_dict())

        return output

    def _lookup(self, unit: TemplateUnit, latest: float) -> Optional[str]:
        """Fresh compiled source, or None on a miss."""
        if self.backend.supports():
            return self.backend.get(unit.backend_key, latest)

        try:
            stat = os.stat(unit.compiled_file)
        except FileNotFoundError:
            return None

        if stat.st_size and latest <= stat.st_mtime:
            return Path(unit.compiled_file).read_text(encoding="utf-8")
        return None

    def _store(self, unit: TemplateUnit, payload: str) -> None:
        if self.backend.supports():
            self.backend.put(unit.backend_key, payload)
            return

        # Write then rename, so readers never see a partial file
        self.compiled_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.compiled_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, unit.compiled_file)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _code(self, payload: str, filename: str) -> CodeType:
        digest = hashlib.md5(payload.encode()).hexdigest()
        code = self._code_cache.get(digest)
        if code is None:
            code = compile(payload, filename, "exec")
            self._code_cache.set(digest, code)
        return code

    def _fetch(
        self,
        unit: TemplateUnit,
        payload: str,
        context: Context,
        resources: ResourceQueue,
        depth: int,
    ) -> str:
        previous_path = context.tpl_path
        context.tpl_path = unit.path

        if is_logged(context):
            context.logged_info = context["session"].get("logged_info")

        namespace = build_globals(self.debug)
        namespace["__name__"] = MODULE_NAME

        try:
            with capture_output() as output:
                exec(self._code(payload, unit.file), namespace)
                namespace["render"](context, resources, self, output, depth)
        except TemplateError:
            raise
        except Exception as e:
            logger.error("Template render failed", exception=e, file=unit.file, depth=depth)
            raise TemplateRenderError(f"Render error in {unit.file}: {e}") from e
        finally:
            if not unit.is_root:
                if previous_path is MISSING:
                    del context.tpl_path
                else:
                    context.tpl_path = previous_path

        return output.getvalue()
