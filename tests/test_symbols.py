from plan_cycle.symbols import extract_symbols, strip_comments


def test_function_declarations_and_assignments() -> None:
    source = """
function formatDate(value) {
  return value;
}
async function* stream() {}
const parse = (text) => JSON.parse(text);
let loadAll = async (items) => items;
var single = item => item;
const legacy = function (a, b) { return a + b; };
"""
    table = extract_symbols(source)
    assert table.functions == ["formatDate", "stream", "legacy", "parse", "loadAll", "single"]


def test_method_shorthand_excludes_control_keywords() -> None:
    source = """
class Store {
  constructor(path) {
    if (path) {
      this.path = path;
    }
    for (const x of []) {
    }
  }
  async save(state) {
    while (true) {
    }
  }
}
"""
    table = extract_symbols(source)
    assert "constructor" in table.functions
    assert "save" in table.functions
    for keyword in ("if", "for", "while"):
        assert keyword not in table.functions


def test_commonjs_exports() -> None:
    source = """
function a() {}
module.exports = { a, b: helper, c };
exports.d = 1;
module.exports.e = () => {};
"""
    table = extract_symbols(source)
    assert table.exports == ["a", "b", "c", "d", "e"]


def test_module_exports_identifier() -> None:
    table = extract_symbols("class Analyzer {}\nmodule.exports = Analyzer;\n")
    assert table.exports == ["Analyzer"]


def test_es_module_exports() -> None:
    source = """
export const VERSION = '1';
export function run() {}
export class Runner {}
export { helper as publicHelper, other };
export default Runner;
"""
    table = extract_symbols(source)
    assert table.exports == ["publicHelper", "other", "VERSION", "run", "Runner", "default"]


def test_export_default_function_only_adds_default() -> None:
    table = extract_symbols("export default function () {}\n")
    assert table.exports == ["default"]


def test_comments_are_ignored_but_urls_and_strings_survive() -> None:
    source = """
// function commented() {}
/* module.exports = { hidden };
   function alsoHidden() {} */
const url = "http://example.com/a"; function visible() {}
const marker = '// not a comment'; exports.kept = 1;
"""
    table = extract_symbols(source)
    assert table.functions == ["visible"]
    assert table.exports == ["kept"]
    assert "http://example.com/a" in strip_comments(source)


def test_block_comment_keeps_line_count() -> None:
    source = "a\n/* one\ntwo\nthree */\nb\n"
    assert strip_comments(source).count("\n") == source.count("\n")


def test_results_are_deduplicated_in_first_seen_order() -> None:
    source = "function x() {}\nfunction y() {}\nfunction x() {}\nexports.y = y;\nexports.y = y;\n"
    table = extract_symbols(source)
    assert table.functions == ["x", "y"]
    assert table.exports == ["y"]


def test_garbage_input_never_raises() -> None:
    table = extract_symbols("}{ ( => export { , } module.exports = { ...rest } 'unterminated")
    assert isinstance(table.functions, list)
    assert isinstance(table.exports, list)
