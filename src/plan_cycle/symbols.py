"""Best-effort function/export scanner for JavaScript and TypeScript sources.

This is a line/regex scanner, not a parser.  Each pass is independent, so a
pattern that fails to match only loses its own symbols.  Nothing here raises
on malformed input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_IDENT = r"[A-Za-z_$][\w$]*"

_CONTROL_KEYWORDS = frozenset(
    {"if", "for", "while", "switch", "catch", "function", "return", "with", "else", "do", "typeof", "new"}
)

# Strings are matched first so comment markers inside them survive.
_TOKEN_RE = re.compile(
    r"""
    (?P<string>"(?:\\.|[^"\\\n])*"|'(?:\\.|[^'\\\n])*'|`(?:\\.|[^`\\])*`)
    | (?P<block>/\*.*?\*/)
    | (?P<line>(?<!:)//[^\n]*)
    """,
    re.VERBOSE | re.DOTALL,
)

_FUNCTION_PATTERNS = (
    re.compile(rf"\bfunction\s*\*?\s*({_IDENT})\s*\("),
    re.compile(rf"\b(?:const|let|var)\s+({_IDENT})\s*=\s*(?:async\s+)?function\b"),
    re.compile(rf"\b(?:const|let|var)\s+({_IDENT})\s*=\s*(?:async\s*)?\([^)]*\)\s*(?::\s*[^=]+)?=>"),
    re.compile(rf"\b(?:const|let|var)\s+({_IDENT})\s*=\s*(?:async\s+)?{_IDENT}\s*=>"),
)
_METHOD_RE = re.compile(
    rf"^\s*(?:(?:public|private|protected|static|async|get|set)\s+)*({_IDENT})\s*\([^)]*\)\s*(?::\s*[^{{]+)?\{{",
    re.MULTILINE,
)

_EXPORT_OBJECT_RE = re.compile(r"module\.exports\s*=\s*\{([^}]*)\}")
_EXPORT_PROPERTY_RE = re.compile(rf"(?:\bmodule\.)?\bexports\.({_IDENT})\s*=")
_EXPORT_IDENTIFIER_RE = re.compile(rf"module\.exports\s*=\s*({_IDENT})\s*;?\s*$", re.MULTILINE)
_EXPORT_LIST_RE = re.compile(r"\bexport\s*\{([^}]*)\}")
_EXPORT_DECLARATION_RE = re.compile(
    rf"\bexport\s+(?:declare\s+)?(?:async\s+)?(?:const|let|var|function\s*\*?|class|interface|type|enum)\s*({_IDENT})"
)
_EXPORT_DEFAULT_RE = re.compile(rf"\bexport\s+default\s+({_IDENT})?")
_DEFAULT_NON_NAMES = frozenset({"function", "class", "new", "async"})


@dataclass
class SymbolTable:
    functions: list[str] = field(default_factory=list)
    exports: list[str] = field(default_factory=list)


def strip_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments, keeping string literals and line numbers."""

    def _replace(match: re.Match[str]) -> str:
        if match.group("string") is not None:
            return match.group(0)
        if match.group("block") is not None:
            return "\n" * match.group(0).count("\n")
        return ""

    return _TOKEN_RE.sub(_replace, text)


def _unique(names: list[str]) -> list[str]:
    return list(dict.fromkeys(name for name in names if name))


def _functions(text: str) -> list[str]:
    found: list[str] = []
    for pattern in _FUNCTION_PATTERNS:
        found.extend(match.group(1) for match in pattern.finditer(text))
    for match in _METHOD_RE.finditer(text):
        name = match.group(1)
        if name not in _CONTROL_KEYWORDS:
            found.append(name)
    return found


def _object_keys(body: str) -> list[str]:
    keys: list[str] = []
    for item in body.split(","):
        item = item.strip()
        if not item or item.startswith("..."):
            continue
        key = re.split(r"[:(\s]", item, maxsplit=1)[0].strip("'\"")
        if re.fullmatch(_IDENT, key):
            keys.append(key)
    return keys


def _exports(text: str) -> list[str]:
    found: list[str] = []
    for match in _EXPORT_OBJECT_RE.finditer(text):
        found.extend(_object_keys(match.group(1)))
    found.extend(match.group(1) for match in _EXPORT_PROPERTY_RE.finditer(text))
    found.extend(match.group(1) for match in _EXPORT_IDENTIFIER_RE.finditer(text))
    for match in _EXPORT_LIST_RE.finditer(text):
        for item in match.group(1).split(","):
            parts = item.split()
            if parts and re.fullmatch(_IDENT, parts[-1]):
                found.append(parts[-1])
    found.extend(match.group(1) for match in _EXPORT_DECLARATION_RE.finditer(text))
    for match in _EXPORT_DEFAULT_RE.finditer(text):
        found.append("default")
        name = match.group(1)
        if name and name not in _DEFAULT_NON_NAMES:
            found.append(name)
    return found


def extract_symbols(text: str) -> SymbolTable:
    """Scan *text* for declared functions and exported names.

    Results are deduplicated in first-seen order.
    """
    cleaned = strip_comments(text)
    return SymbolTable(functions=_unique(_functions(cleaned)), exports=_unique(_exports(cleaned)))
