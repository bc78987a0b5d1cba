"""
xetpl Runtime
=============

Objects that compiled templates run against:

- Context: the mutable variable store behind ``$name`` references
- MISSING: value of undefined variables
- ResourceQueue: scripts, stylesheets and bundles registered by directives
- capture_output(): scoped output buffer for one render
- TEMPLATE_GLOBALS: helper functions visible to template expressions
"""

from __future__ import annotations

from collections.abc import Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from html import escape as html_escape
from typing import Any, Dict, Iterator, List, Optional, Tuple

import orjson

from xetpl import __version__


class Missing:
    """
    Value of an undefined template variable.

    Falsy, renders as an empty string and acts like ``0`` in arithmetic
    and comparisons. Attribute and item access on it give MISSING again,
    so ``$document.title`` on an undefined ``$document`` renders nothing.
    """

    __slots__ = ()
    _instance: Optional["Missing"] = None

    def __new__(cls) -> "Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __str__(self) -> str:
        return ""

    def __bool__(self) -> bool:
        return False

    def __len__(self) -> int:
        return 0

    def __iter__(self) -> Iterator[Any]:
        return iter(())

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        return self

    def __getitem__(self, key: Any) -> "Missing":
        return self

    def __call__(self, *args: Any, **kwargs: Any) -> "Missing":
        return self

    def __int__(self) -> int:
        return 0

    def __float__(self) -> float:
        return 0.0

    def __hash__(self) -> int:
        return hash(None)

    @staticmethod
    def _zero(other: Any) -> Any:
        # The empty value of the other operand's type
        return "" if isinstance(other, str) else 0

    def __eq__(self, other: Any) -> bool:
        if other is self or other is None:
            return True
        if isinstance(other, (bool, int, float, str)):
            return not other
        return False

    def __ne__(self, other: Any) -> bool:
        return not self.__eq__(other)

    def __lt__(self, other: Any) -> bool:
        return self._zero(other) < other

    def __le__(self, other: Any) -> bool:
        return self._zero(other) <= other

    def __gt__(self, other: Any) -> bool:
        return self._zero(other) > other

    def __ge__(self, other: Any) -> bool:
        return self._zero(other) >= other

    def __add__(self, other: Any) -> Any:
        return self._zero(other) + other

    def __radd__(self, other: Any) -> Any:
        return other + self._zero(other)

    def __sub__(self, other: Any) -> Any:
        return 0 - other

    def __rsub__(self, other: Any) -> Any:
        return other

    def __mul__(self, other: Any) -> Any:
        return 0 * other

    __rmul__ = __mul__

    def __neg__(self) -> int:
        return 0


MISSING = Missing()


class Context:
    """
    Template variable store with attribute access.

    Variables live in the instance ``__dict__`` and the class defines only
    dunder methods, so any ``$name`` a template can spell reaches the
    variable and never a method. Undefined names read as MISSING through
    attribute access, which is how compiled templates read them. Item
    access keeps plain mapping semantics.

    Example:
        ctx = Context(title="Home", items=[1, 2])
        ctx.title        # "Home"
        ctx.items        # [1, 2]
        ctx.unknown      # MISSING
        ctx["unknown"]   # KeyError
        vars(ctx)        # {"title": "Home", "items": [1, 2]}
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.__dict__.update(*args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__"):
            raise AttributeError(name)
        return MISSING

    def __delattr__(self, name: str) -> None:
        self.__dict__.pop(name, None)

    def __getitem__(self, key: str) -> Any:
        return self.__dict__[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self.__dict__[key] = value

    def __delitem__(self, key: str) -> None:
        del self.__dict__[key]

    def __contains__(self, key: object) -> bool:
        return key in self.__dict__

    def __iter__(self) -> Iterator[str]:
        return iter(self.__dict__)

    def __len__(self) -> int:
        return len(self.__dict__)

    def __repr__(self) -> str:
        return f"<Context {sorted(self.__dict__)}>"


def context_vars(context: Any) -> Mapping:
    """Variables of a Context, or the mapping itself."""
    if isinstance(context, Context):
        return vars(context)
    return context if isinstance(context, Mapping) else {}


def is_logged(context: Any) -> bool:
    """Whether the context's session mapping reports a logged-in user."""
    session = context_vars(context).get("session")
    return bool(isinstance(session, Mapping) and session.get("is_logged"))


@dataclass
class Resource:
    """A script or stylesheet registered by a load directive."""
    target: str
    media: str = ""
    target_ie: str = ""
    index: int = 0
    use_cdn: bool = False
    cdn_prefix: str = ""
    cdn_version: str = ""

    @property
    def kind(self) -> str:
        return "css" if self.target.lower().endswith(".css") else "js"

    @property
    def key(self) -> Tuple[str, str, str]:
        return resource_key(self.target, self.target_ie, self.media)


def resource_key(target: str, target_ie: str = "", media: str = "") -> Tuple[str, str, str]:
    """
    Identity of a loaded file.

    Stylesheets loaded for different media are distinct entries. A script's
    ``type`` only says where it is placed, so one script is one entry.
    """
    if target.lower().endswith(".css"):
        return (target, target_ie, media)
    return (target, target_ie, "")


@dataclass
class ResourceQueue:
    """
    Host-side registry of the assets a page needs.

    Templates register into it while rendering; the host reads it back
    when building the page head.
    """
    files: Dict[Tuple[str, str, str], Resource] = field(default_factory=dict)
    plugins: List[str] = field(default_factory=list)
    langs: List[str] = field(default_factory=list)
    filters: List[Tuple[str, str]] = field(default_factory=list)
    rulesets: List[str] = field(default_factory=list)

    def load_file(
        self,
        target: str,
        media: str = "",
        target_ie: str = "",
        index: int = 0,
        use_cdn: bool = False,
        cdn_prefix: str = "",
        cdn_version: str = "",
    ) -> None:
        resource = Resource(
            target=target,
            media=media,
            target_ie=target_ie,
            index=index,
            use_cdn=use_cdn,
            cdn_prefix=cdn_prefix,
            cdn_version=cdn_version,
        )
        self.files[resource.key] = resource

    def unload_file(self, target: str, target_ie: str = "", media: str = "") -> None:
        self.files.pop(resource_key(target, target_ie, media), None)

    def load_js_plugin(self, name: Any) -> None:
        name = _str(name)
        if name and name not in self.plugins:
            self.plugins.append(name)

    def load_lang(self, directory: str) -> None:
        if directory not in self.langs:
            self.langs.append(directory)

    def load_filter(self, directory: str, filename: str) -> None:
        if (directory, filename) not in self.filters:
            self.filters.append((directory, filename))

    def load_ruleset(self, path: str) -> None:
        if path not in self.rulesets:
            self.rulesets.append(path)

    def _ordered(self, kind: str) -> List[Resource]:
        # sorted() is stable, so equal indexes keep registration order
        return sorted(
            (r for r in self.files.values() if r.kind == kind),
            key=lambda r: r.index,
        )

    def scripts(self) -> List[Resource]:
        return self._ordered("js")

    def stylesheets(self) -> List[Resource]:
        return self._ordered("css")


class OutputBuffer:
    """Collects the chunks appended by one render."""

    def __init__(self) -> None:
        self.parts: List[str] = []
        self.closed = False

    def append(self, chunk: str) -> None:
        if self.closed:
            raise ValueError("output buffer is closed")
        self.parts.append(chunk)

    def getvalue(self) -> str:
        return "".join(self.parts)


@contextmanager
def capture_output() -> Iterator[OutputBuffer]:
    """
    Scoped output capture.

    The buffer is closed when the block exits, whether or not the render
    raised.
    """
    buffer = OutputBuffer()
    try:
        yield buffer
    finally:
        buffer.closed = True


def _str(value: Any) -> str:
    """Render a value as template output."""
    if value is None or value is MISSING or value is False:
        return ""
    if value is True:
        return "1"
    return str(value)


def _values(iterable: Any) -> Iterator[Any]:
    if isinstance(iterable, Mapping):
        return iter(iterable.values())
    return iter(iterable)


def _pairs(iterable: Any) -> Iterator[Tuple[Any, Any]]:
    if isinstance(iterable, Mapping):
        return iter(iterable.items())
    return enumerate(iterable)


def escape(value: Any) -> str:
    """HTML-escape a value for attribute or text output."""
    return html_escape(_str(value), quote=True)


def json_encode(value: Any) -> str:
    """Serialize a value for inline scripts."""
    if value is MISSING:
        value = None
    return orjson.dumps(value, default=str).decode()


def count(value: Any) -> int:
    if value is MISSING or value is None:
        return 0
    try:
        return len(value)
    except TypeError:
        return 1


def build_globals(debug: bool = False) -> Dict[str, Any]:
    """Globals a compiled template module executes with."""
    namespace = dict(TEMPLATE_GLOBALS)
    namespace["__DEBUG__"] = debug
    return namespace


TEMPLATE_GLOBALS: Dict[str, Any] = {
    "MISSING": MISSING,
    "_str": _str,
    "_values": _values,
    "_pairs": _pairs,
    "escape": escape,
    "json_encode": json_encode,
    "count": count,
    "__VERSION__": __version__,
    "__DEBUG__": False,
}
