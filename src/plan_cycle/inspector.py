from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .symbols import SymbolTable, extract_symbols, strip_comments

logger = logging.getLogger(__name__)

RESOLVE_EXTENSIONS = (".js", ".mjs", ".cjs", ".json", ".node", ".ts")
MANIFEST_DEPENDENCY_KEYS = ("dependencies", "devDependencies", "peerDependencies", "optionalDependencies")
_SKIPPED_DIRS = frozenset({"node_modules"})

_REQUIRE_RE = re.compile(r"""require\s*\(\s*['"]([^'"]+)['"]\s*\)""")
_IMPORT_FROM_RE = re.compile(r"""import\s+(?:[^'"]+\s+from\s+)?['"]([^'"]+)['"]""")
_DYNAMIC_IMPORT_RE = re.compile(r"""import\s*\(\s*['"]([^'"]+)['"]\s*\)""")


@dataclass(frozen=True)
class ImportInfo:
    module: str
    is_local: bool
    resolved_path: Path | None = None


@dataclass(frozen=True)
class DependencyInfo:
    exists: bool
    version: str | None = None
    is_dev: bool = False


@dataclass(frozen=True)
class SignatureCheck:
    exists: bool
    params: tuple[str, ...] = ()
    matches: bool = False


@dataclass
class PathCheck:
    found: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a single path segment glob (``*`` and ``?``) into a regex."""
    escaped = "".join(
        ".*" if char == "*" else "." if char == "?" else re.escape(char) for char in pattern
    )
    return re.compile(f"^{escaped}$")


def _is_local_specifier(spec: str) -> bool:
    return spec.startswith(".") or spec.startswith("/")


class CodeInspector:
    """Read-only view of a source tree rooted at ``base_dir``.

    File contents, symbol tables and the package manifest are cached for the
    lifetime of the instance.  Create a fresh inspector per validation pass
    when the tree may have changed.
    """

    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = Path(base_dir).resolve()
        self._contents: dict[Path, str | None] = {}
        self._symbols: dict[Path, SymbolTable] = {}
        self._manifest_loaded = False
        self._manifest: dict[str, Any] | None = None

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def resolve_file_path(self, path: Path | str) -> Path:
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.base_dir / candidate

    def file_exists(self, path: Path | str) -> bool:
        return self.resolve_file_path(path).is_file()

    def directory_exists(self, path: Path | str) -> bool:
        return self.resolve_file_path(path).is_dir()

    def check_files_exist(self, paths: list[str]) -> PathCheck:
        result = PathCheck()
        for path in paths:
            (result.found if self.file_exists(path) else result.missing).append(path)
        return result

    def check_directories_exist(self, paths: list[str]) -> PathCheck:
        result = PathCheck()
        for path in paths:
            (result.found if self.directory_exists(path) else result.missing).append(path)
        return result

    def find_files(self, pattern: str) -> list[str]:
        """Return files matching *pattern* relative to ``base_dir``, sorted.

        ``**`` anywhere in the pattern makes the search recursive.  A literal
        directory prefix narrows the search root.
        """
        recursive = "**" in pattern
        search_root = self.base_dir
        file_pattern = pattern
        if "/" in pattern:
            dir_part, file_pattern = pattern.rsplit("/", 1)
            dir_part = dir_part.replace("**/", "").replace("**", "").strip("/")
            if dir_part and "*" not in dir_part:
                search_root = self.base_dir / dir_part
        regex = glob_to_regex(file_pattern)

        results: list[str] = []
        if not search_root.is_dir():
            return results
        for dirpath, dirnames, filenames in os.walk(search_root):
            if recursive:
                dirnames[:] = [
                    name for name in dirnames if not name.startswith(".") and name not in _SKIPPED_DIRS
                ]
            else:
                dirnames[:] = []
            for filename in filenames:
                if regex.match(filename):
                    relative = Path(dirpath, filename).relative_to(self.base_dir)
                    results.append(relative.as_posix())
        return sorted(results)

    # ------------------------------------------------------------------
    # Contents and symbols
    # ------------------------------------------------------------------

    def read_file(self, path: Path | str) -> str | None:
        resolved = self.resolve_file_path(path)
        if resolved not in self._contents:
            try:
                self._contents[resolved] = resolved.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                self._contents[resolved] = None
        return self._contents[resolved]

    def symbols(self, path: Path | str) -> SymbolTable:
        resolved = self.resolve_file_path(path)
        if resolved not in self._symbols:
            content = self.read_file(resolved)
            self._symbols[resolved] = extract_symbols(content) if content else SymbolTable()
        return self._symbols[resolved]

    def get_functions(self, path: Path | str) -> list[str]:
        return list(self.symbols(path).functions)

    def get_exports(self, path: Path | str) -> list[str]:
        return list(self.symbols(path).exports)

    def function_exists(self, path: Path | str, name: str) -> bool:
        return name in self.symbols(path).functions

    def export_exists(self, path: Path | str, name: str) -> bool:
        return name in self.symbols(path).exports

    def check_function_signature(
        self, path: Path | str, name: str, expected_params: list[str]
    ) -> SignatureCheck:
        """Locate *name* in *path* and compare its parameter names."""
        content = self.read_file(path)
        if not content:
            return SignatureCheck(exists=False)

        escaped = re.escape(name)
        patterns = (
            rf"function\s+{escaped}\s*\(([^)]*)\)",
            rf"(?:const|let|var)\s+{escaped}\s*=\s*(?:async\s*)?\(([^)]*)\)\s*=>",
            rf"(?:const|let|var)\s+{escaped}\s*=\s*(?:async\s*)?function\s*\(([^)]*)\)",
            rf"^\s*(?:async\s+)?{escaped}\s*\(([^)]*)\)\s*\{{",
        )
        for pattern in patterns:
            match = re.search(pattern, content, re.MULTILINE)
            if match is None:
                continue
            params = tuple(
                cleaned for cleaned in (_param_name(raw) for raw in match.group(1).split(",")) if cleaned
            )
            return SignatureCheck(exists=True, params=params, matches=params == tuple(expected_params))
        return SignatureCheck(exists=False)

    # ------------------------------------------------------------------
    # Imports and dependencies
    # ------------------------------------------------------------------

    def get_imports(self, path: Path | str) -> list[ImportInfo]:
        content = self.read_file(path)
        if not content:
            return []
        cleaned = strip_comments(content)
        seen: dict[str, ImportInfo] = {}
        for pattern in (_REQUIRE_RE, _IMPORT_FROM_RE, _DYNAMIC_IMPORT_RE):
            for match in pattern.finditer(cleaned):
                module = match.group(1)
                if module in seen:
                    continue
                local = _is_local_specifier(module)
                seen[module] = ImportInfo(
                    module=module,
                    is_local=local,
                    resolved_path=self.resolve_import(module, path) if local else None,
                )
        return list(seen.values())

    def resolve_import(self, spec: str, from_file: Path | str) -> Path | None:
        """Resolve a local import *spec* written inside *from_file*.

        Tries the exact path, then known extensions, then ``index.*`` inside a
        directory.  Returns ``None`` if nothing on disk matches.
        """
        from_dir = self.resolve_file_path(from_file).parent
        base = Path(os.path.normpath(from_dir / spec))
        if base.is_file():
            return base
        for extension in RESOLVE_EXTENSIONS:
            candidate = base.with_name(base.name + extension)
            if candidate.is_file():
                return candidate
        if base.is_dir():
            for extension in RESOLVE_EXTENSIONS:
                candidate = base / f"index{extension}"
                if candidate.is_file():
                    return candidate
        return None

    def _load_manifest(self) -> dict[str, Any] | None:
        if self._manifest_loaded:
            return self._manifest
        self._manifest_loaded = True
        manifest_path = self.base_dir / "package.json"
        try:
            payload = json.loads(manifest_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable manifest %s: %s", manifest_path, exc)
            return None
        if isinstance(payload, dict):
            self._manifest = payload
        return self._manifest

    def check_npm_dependency(self, name: str) -> DependencyInfo:
        manifest = self._load_manifest()
        if manifest is None:
            return DependencyInfo(exists=False)
        for key in MANIFEST_DEPENDENCY_KEYS:
            section = manifest.get(key)
            if isinstance(section, dict) and section.get(name):
                return DependencyInfo(
                    exists=True,
                    version=str(section[name]),
                    is_dev=key == "devDependencies",
                )
        return DependencyInfo(exists=False)

    def get_missing_dependencies(self, names: list[str]) -> list[str]:
        return [name for name in names if not self.check_npm_dependency(name).exists]


def _param_name(raw: str) -> str:
    cleaned = raw.strip()
    cleaned = re.sub(r"\s*=.*$", "", cleaned)
    cleaned = re.sub(r"^\.\.\.", "", cleaned)
    if re.fullmatch(r"\{.*\}|\[.*\]", cleaned):
        return "destructured"
    return cleaned.strip()
