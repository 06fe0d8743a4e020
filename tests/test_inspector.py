import json
from pathlib import Path

from plan_cycle.inspector import CodeInspector, glob_to_regex


def _write(root: Path, relative: str, content: str = "") -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def test_paths_resolve_against_base_dir(tmp_path: Path) -> None:
    absolute = _write(tmp_path, "lib/a.js")
    inspector = CodeInspector(tmp_path)
    assert inspector.file_exists("lib/a.js")
    assert inspector.file_exists(absolute)
    assert not inspector.file_exists("lib")
    assert inspector.directory_exists("lib")
    assert inspector.resolve_file_path("lib/a.js") == tmp_path.resolve() / "lib" / "a.js"

    files = inspector.check_files_exist(["lib/a.js", "lib/b.js"])
    assert files.found == ["lib/a.js"]
    assert files.missing == ["lib/b.js"]
    directories = inspector.check_directories_exist(["lib", "src"])
    assert directories.found == ["lib"]
    assert directories.missing == ["src"]


def test_find_files_recursive_skips_hidden_and_node_modules(tmp_path: Path) -> None:
    _write(tmp_path, "src/a.js")
    _write(tmp_path, "src/nested/b.js")
    _write(tmp_path, "src/nested/c.ts")
    _write(tmp_path, "src/.cache/d.js")
    _write(tmp_path, "node_modules/pkg/e.js")
    _write(tmp_path, "top.js")
    inspector = CodeInspector(tmp_path)

    assert inspector.find_files("**/*.js") == ["src/a.js", "src/nested/b.js", "top.js"]
    assert inspector.find_files("src/**/*.js") == ["src/a.js", "src/nested/b.js"]
    assert inspector.find_files("src/*.js") == ["src/a.js"]
    assert inspector.find_files("src/nested/?.ts") == ["src/nested/c.ts"]
    assert inspector.find_files("missing/*.js") == []


def test_glob_to_regex_escapes_literals() -> None:
    regex = glob_to_regex("*.test.js")
    assert regex.match("a.test.js")
    assert not regex.match("a-test-js")


def test_functions_and_exports_are_cached(tmp_path: Path) -> None:
    path = _write(tmp_path, "lib/x.js", "function helper() {}\nmodule.exports = { helper };\n")
    inspector = CodeInspector(tmp_path)
    assert inspector.get_functions("lib/x.js") == ["helper"]
    assert inspector.export_exists("lib/x.js", "helper")
    assert inspector.function_exists("lib/x.js", "helper")

    path.write_text("function other() {}\n", encoding="utf-8")
    assert inspector.get_functions("lib/x.js") == ["helper"]
    assert CodeInspector(tmp_path).get_functions("lib/x.js") == ["other"]


def test_missing_file_has_no_symbols(tmp_path: Path) -> None:
    inspector = CodeInspector(tmp_path)
    assert inspector.get_functions("nope.js") == []
    assert inspector.get_exports("nope.js") == []
    assert inspector.read_file("nope.js") is None


def test_get_imports_and_resolution(tmp_path: Path) -> None:
    _write(tmp_path, "lib/util.js")
    _write(tmp_path, "lib/helpers/index.js")
    _write(
        tmp_path,
        "lib/main.js",
        "const util = require('./util');\n"
        "import helpers from './helpers';\n"
        "import fs from 'fs';\n"
        "// const gone = require('./gone');\n"
        "const later = import('./missing');\n"
        "const again = require('./util');\n",
    )
    inspector = CodeInspector(tmp_path)
    imports = inspector.get_imports("lib/main.js")

    assert [item.module for item in imports] == ["./util", "./helpers", "fs", "./missing"]
    by_module = {item.module: item for item in imports}
    assert by_module["./util"].resolved_path == tmp_path.resolve() / "lib" / "util.js"
    assert by_module["./helpers"].resolved_path == tmp_path.resolve() / "lib" / "helpers" / "index.js"
    assert by_module["fs"].is_local is False
    assert by_module["fs"].resolved_path is None
    assert by_module["./missing"].is_local is True
    assert by_module["./missing"].resolved_path is None


def test_check_function_signature(tmp_path: Path) -> None:
    _write(
        tmp_path,
        "lib/sig.js",
        "function build(name, options = {}, ...rest) {}\n"
        "const apply = async ({ a, b }) => a;\n",
    )
    inspector = CodeInspector(tmp_path)

    build = inspector.check_function_signature("lib/sig.js", "build", ["name", "options", "rest"])
    assert build.exists is True
    assert build.params == ("name", "options", "rest")
    assert build.matches is True

    mismatch = inspector.check_function_signature("lib/sig.js", "build", ["name"])
    assert mismatch.exists is True
    assert mismatch.matches is False

    missing = inspector.check_function_signature("lib/sig.js", "absent", [])
    assert missing.exists is False


def test_npm_dependencies_from_manifest(tmp_path: Path) -> None:
    (tmp_path / "package.json").write_text(
        json.dumps(
            {
                "dependencies": {"chalk": "^5.0.0"},
                "devDependencies": {"jest": "^29.0.0"},
                "peerDependencies": {"react": "*"},
                "optionalDependencies": {"fsevents": "^2"},
            }
        ),
        encoding="utf-8",
    )
    inspector = CodeInspector(tmp_path)
    chalk = inspector.check_npm_dependency("chalk")
    assert chalk.exists and chalk.version == "^5.0.0" and not chalk.is_dev
    assert inspector.check_npm_dependency("jest").is_dev is True
    assert inspector.check_npm_dependency("react").exists
    assert inspector.check_npm_dependency("fsevents").exists
    assert inspector.get_missing_dependencies(["chalk", "lodash", "jest"]) == ["lodash"]


def test_unreadable_manifest_is_remembered_as_absent(tmp_path: Path) -> None:
    manifest = tmp_path / "package.json"
    manifest.write_text("{broken", encoding="utf-8")
    inspector = CodeInspector(tmp_path)
    assert inspector.check_npm_dependency("chalk").exists is False

    manifest.write_text(json.dumps({"dependencies": {"chalk": "1"}}), encoding="utf-8")
    assert inspector.check_npm_dependency("chalk").exists is False
    assert CodeInspector(tmp_path).check_npm_dependency("chalk").exists is True
