from __future__ import annotations

import logging
import posixpath
import re
from datetime import date
from pathlib import Path

from . import plan_parser
from .inspector import CodeInspector
from .models import (
    AutoFixEntry,
    AutoFixResult,
    DirectoryReview,
    FileExpectation,
    PlanInfo,
    PlanReview,
    PlanTask,
    ReviewedTask,
    Suggestion,
    SuggestionType,
    TaskStatus,
    TaskValidation,
    ValidationIssue,
    utc_now,
)
from .utils import atomic_write_text, resolve_under

logger = logging.getLogger(__name__)

ALREADY_COMPLETE_MARKER = "<!-- ALREADY_COMPLETE -->"
LOCAL_PROBE_SUFFIXES = ("", ".js", ".ts", ".mjs", ".cjs", ".json")

# Most severe first.
STATUS_PRECEDENCE = (
    TaskStatus.PATH_ERROR,
    TaskStatus.MISSING_DEPENDENCY,
    TaskStatus.CONFLICT,
)

STATUS_ICONS = {
    TaskStatus.OK: "✓",
    TaskStatus.ALREADY_COMPLETE: "✔️",
    TaskStatus.PATH_ERROR: "📁",
    TaskStatus.MISSING_DEPENDENCY: "📦",
    TaskStatus.CONFLICT: "⚠️",
}

_REQUIRE_IN_TEXT_RE = re.compile(r"""require\s*\(\s*['"]([^'"]+)['"]\s*\)""")
_IMPORT_IN_TEXT_RE = re.compile(r"""import\s+.*?\s+from\s+['"]([^'"]+)['"]""")


class PlanValidator:
    """Validate plan tasks against the source tree under ``root``.

    A fresh ``CodeInspector`` is created per ``review_plan`` call, so every
    review sees the tree as it is on disk at that moment.

    Args:
        root: Project root that plan paths are relative to.
        strict: Report functions/exports that already exist as conflicts.
        auto_fix: Write mechanical fixes back into reviewed plans.
    """

    def __init__(self, root: Path | str, *, strict: bool = False, auto_fix: bool = False) -> None:
        self.root = Path(root).resolve()
        self.strict = strict
        self.auto_fix = auto_fix
        self.inspector = CodeInspector(self.root)

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    def extract_tasks(self, content: str) -> list[PlanTask]:
        return plan_parser.extract_tasks(content)

    def parse_plan_content(self, content: str) -> PlanInfo:
        return plan_parser.parse_plan_content(content)

    def extract_files(self, task: PlanTask) -> list[str]:
        return plan_parser.extract_files(task)

    def extract_expected_functions(self, task: PlanTask) -> list[FileExpectation]:
        return plan_parser.extract_expected_functions(task)

    def extract_expected_exports(self, task: PlanTask) -> list[FileExpectation]:
        return plan_parser.extract_expected_exports(task)

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def check_file_targets(self, files: list[str]) -> tuple[list[ValidationIssue], list[Suggestion]]:
        issues: list[ValidationIssue] = []
        suggestions: list[Suggestion] = []
        for file in files:
            if "\\" in file:
                issues.append(
                    ValidationIssue(
                        type=TaskStatus.PATH_ERROR,
                        message=f"File path uses backslashes: {file}",
                        file=file,
                    )
                )
                suggestions.append(
                    Suggestion(type=SuggestionType.FIX_PATH, original=file, suggested=file.replace("\\", "/"))
                )
            if "//" in file:
                issues.append(
                    ValidationIssue(
                        type=TaskStatus.PATH_ERROR,
                        message=f"File path has duplicate slashes: {file}",
                        file=file,
                    )
                )
                suggestions.append(
                    Suggestion(type=SuggestionType.FIX_PATH, original=file, suggested=re.sub(r"/+", "/", file))
                )

            directory = posixpath.dirname(file)
            if directory and directory != "." and not self.inspector.directory_exists(directory):
                similar = self.find_similar_path(directory)
                if similar:
                    issues.append(
                        ValidationIssue(
                            type=TaskStatus.PATH_ERROR,
                            message=f"Directory does not exist: {directory}",
                            file=file,
                        )
                    )
                    suggestions.append(
                        Suggestion(type=SuggestionType.FIX_DIRECTORY, original=directory, suggested=similar)
                    )
        return issues, suggestions

    def find_similar_path(self, target: str) -> str | None:
        """Suggest an existing directory close to *target*.

        Walks up to the deepest existing ancestor, then looks for a child whose
        name matches the next expected segment case-insensitively (equal or
        containing).  Falls back to the ancestor itself.
        """
        parts = [part for part in target.split("/") if part]
        for index in range(len(parts), 0, -1):
            ancestor = "/".join(parts[:index])
            if not self.inspector.directory_exists(ancestor):
                continue
            remaining = parts[index:]
            if remaining:
                expected = remaining[0].lower()
                try:
                    children = sorted(child.name for child in self.inspector.resolve_file_path(ancestor).iterdir())
                except OSError as exc:
                    logger.debug("Cannot list %s: %s", ancestor, exc)
                    children = []
                for child in children:
                    lowered = child.lower()
                    if lowered == expected or expected in lowered:
                        return "/".join([ancestor, child, *remaining[1:]])
            return ancestor
        return None

    def check_task_completion(
        self,
        task: PlanTask,
        files: list[str],
        expected_functions: list[FileExpectation],
        expected_exports: list[FileExpectation],
    ) -> ValidationIssue | None:
        """Return an ``already_complete`` issue when the task's work is on disk."""
        if not files:
            return None
        existing = [file for file in files if self.inspector.file_exists(file)]
        if len(existing) != len(files):
            return None

        details = tuple(f"File exists: {file}" for file in existing)
        if expected_functions or expected_exports:
            functions_present = all(
                name in self.inspector.get_functions(expectation.file)
                for expectation in expected_functions
                for name in expectation.names
            )
            exports_present = all(
                name in self.inspector.get_exports(expectation.file)
                for expectation in expected_exports
                for name in expectation.names
            )
            if functions_present and exports_present:
                return ValidationIssue(
                    type=TaskStatus.ALREADY_COMPLETE,
                    message="All target files exist with expected functions/exports",
                    details=details,
                )
            return None

        if task.done and "exists" in task.done:
            return ValidationIssue(
                type=TaskStatus.ALREADY_COMPLETE,
                message="Target files already exist",
                details=details,
            )
        return None

    def check_function_targets(self, file: str, names: tuple[str, ...]) -> list[ValidationIssue]:
        if not self.strict:
            return []
        existing = self.inspector.get_functions(file)
        return [
            ValidationIssue(
                type=TaskStatus.CONFLICT,
                message=f"Function already exists: {name} in {file}",
                file=file,
                function=name,
            )
            for name in names
            if name in existing
        ]

    def check_export_targets(self, file: str, names: tuple[str, ...]) -> list[ValidationIssue]:
        if not self.strict:
            return []
        existing = self.inspector.get_exports(file)
        return [
            ValidationIssue(
                type=TaskStatus.CONFLICT,
                message=f"Export already exists: {name} in {file}",
                file=file,
                export=name,
            )
            for name in names
            if name in existing
        ]

    def _local_reference_exists(self, base_dir: str, module: str) -> bool:
        joined = posixpath.normpath(posixpath.join(base_dir, module))
        if any(self.inspector.file_exists(joined + suffix) for suffix in LOCAL_PROBE_SUFFIXES):
            return True
        if self.inspector.directory_exists(joined):
            return any(
                self.inspector.file_exists(posixpath.join(joined, f"index{suffix}"))
                for suffix in LOCAL_PROBE_SUFFIXES
                if suffix
            )
        return False

    def check_dependencies(self, task: PlanTask) -> tuple[list[ValidationIssue], list[Suggestion]]:
        issues: list[ValidationIssue] = []
        suggestions: list[Suggestion] = []
        if not task.action:
            return issues, suggestions

        modules = [match.group(1) for match in _REQUIRE_IN_TEXT_RE.finditer(task.action)]
        modules.extend(match.group(1) for match in _IMPORT_IN_TEXT_RE.finditer(task.action))
        files = self.extract_files(task)
        base_dir = posixpath.dirname(files[0] if files else ".")

        for module in dict.fromkeys(modules):
            if module.startswith("."):
                if "*" in module or self._local_reference_exists(base_dir, module):
                    continue
                issues.append(
                    ValidationIssue(
                        type=TaskStatus.MISSING_DEPENDENCY,
                        message=f"Local dependency not found: {module}",
                        module=module,
                    )
                )
            elif not module.startswith("@") and "/" not in module:
                if self.inspector.check_npm_dependency(module).exists:
                    continue
                issues.append(
                    ValidationIssue(
                        type=TaskStatus.MISSING_DEPENDENCY,
                        message=f"NPM dependency not found: {module}",
                        module=module,
                    )
                )
                suggestions.append(
                    Suggestion(type=SuggestionType.INSTALL_DEPENDENCY, command=f"npm install {module}")
                )
        return issues, suggestions

    def validate_task(self, task: PlanTask) -> TaskValidation:
        """Classify one task against the current tree.

        Path problems are collected first.  An already-complete task stops
        there; otherwise symbol conflicts and dependencies are checked and the
        most severe issue type becomes the status.
        """
        result = TaskValidation()
        files = self.extract_files(task)
        expected_functions = self.extract_expected_functions(task)
        expected_exports = self.extract_expected_exports(task)

        path_issues, path_suggestions = self.check_file_targets(files)
        result.issues.extend(path_issues)
        result.suggestions.extend(path_suggestions)

        completion = self.check_task_completion(task, files, expected_functions, expected_exports)
        if completion is not None:
            result.status = TaskStatus.ALREADY_COMPLETE
            result.issues.append(completion)
            return result

        for expectation in expected_functions:
            if self.inspector.file_exists(expectation.file):
                result.issues.extend(self.check_function_targets(expectation.file, expectation.names))
        for expectation in expected_exports:
            if self.inspector.file_exists(expectation.file):
                result.issues.extend(self.check_export_targets(expectation.file, expectation.names))

        dependency_issues, dependency_suggestions = self.check_dependencies(task)
        result.issues.extend(dependency_issues)
        result.suggestions.extend(dependency_suggestions)

        for status in STATUS_PRECEDENCE:
            if result.has_issue(status):
                result.status = status
                break
        return result

    # ------------------------------------------------------------------
    # Reviews
    # ------------------------------------------------------------------

    def review_plan(self, plan_path: Path | str) -> PlanReview:
        resolved = resolve_under(self.root, plan_path)
        review = PlanReview(plan_path=str(plan_path))
        if not resolved.is_file():
            review.success = False
            review.error = f"Plan file not found: {plan_path}"
            return review

        # Files may have changed since the last review.
        self.inspector = CodeInspector(self.root)
        content = resolved.read_text(encoding="utf-8")
        review.info = self.parse_plan_content(content)
        for task in self.extract_tasks(content):
            validation = self.validate_task(task)
            review.tasks.append(ReviewedTask(task=task, validation=validation))
            review.summary.record(validation.status)
        review.summary.total = len(review.tasks)

        if not review.summary.ready:
            review.report = self.generate_report(review)
            if self.auto_fix:
                flagged = [reviewed for reviewed in review.tasks if reviewed.validation.status != TaskStatus.OK]
                review.fixes = self.auto_fix_plan(resolved, flagged)
        return review

    def review_all_plans(self, directory: Path | str) -> DirectoryReview:
        resolved = resolve_under(self.root, directory)
        result = DirectoryReview(directory=str(directory))
        if not resolved.is_dir():
            result.success = False
            result.error = f"Directory not found: {directory}"
            return result

        for plan_file in plan_parser.find_plan_files(resolved):
            review = self.review_plan(plan_file)
            result.plans.append(review)
            result.total_tasks += review.summary.total
            result.ok += review.summary.ok
            result.issues += review.summary.total - review.summary.ok
        result.total_plans = len(result.plans)
        return result

    def generate_report(self, review: PlanReview, *, today: date | None = None) -> str:
        """Render *review* as Markdown.  Output depends only on its inputs."""
        report_date = (today or utc_now().date()).isoformat()
        summary = review.summary
        lines = [
            "# Plan Review Report",
            "",
            f"**Plan:** {review.plan_path}",
            f"**Date:** {report_date}",
            f"**Status:** {'✓ Ready' if summary.ready else '⚠️ Issues Found'}",
            "",
            "## Summary",
            "",
            "| Metric | Count |",
            "|--------|-------|",
            f"| Total Tasks | {summary.total} |",
            f"| Ready to Execute | {summary.ok} |",
            f"| Already Complete | {summary.already_complete} |",
            f"| Path Errors | {summary.path_errors} |",
            f"| Missing Dependencies | {summary.missing_dependencies} |",
            f"| Conflicts | {summary.conflicts} |",
            "",
            "## Task Details",
            "",
        ]

        for reviewed in review.tasks:
            task, validation = reviewed.task, reviewed.validation
            lines.append(f"### {STATUS_ICONS.get(validation.status, '❓')} {task.name}")
            lines.append("")
            if task.type:
                lines.append(f"**Type:** {task.type}")
            if validation.status == TaskStatus.OK:
                continue
            lines.append(f"**Status:** {validation.status.value}")
            lines.append("")
            if validation.issues:
                lines.append("**Issues:**")
                lines.extend(f"- {issue.message}" for issue in validation.issues)
                lines.append("")
            if validation.suggestions:
                lines.append("**Suggestions:**")
                lines.extend(_describe_suggestion(suggestion) for suggestion in validation.suggestions)
                lines.append("")

        actionable = [
            reviewed
            for reviewed in review.tasks
            if reviewed.validation.status not in (TaskStatus.OK, TaskStatus.ALREADY_COMPLETE)
        ]
        if actionable:
            lines.extend(["## Recommended Actions", ""])
            actions: list[str] = []
            for reviewed in actionable:
                for suggestion in reviewed.validation.suggestions:
                    if suggestion.type == SuggestionType.INSTALL_DEPENDENCY:
                        actions.append(f"Install missing dependency: `{suggestion.command}`")
            for reviewed in actionable:
                for suggestion in reviewed.validation.suggestions:
                    if suggestion.type == SuggestionType.FIX_PATH:
                        actions.append(
                            f'Fix path in task "{reviewed.task.name}": '
                            f"`{suggestion.original}` → `{suggestion.suggested}`"
                        )
            lines.extend(f"{number}. {action}" for number, action in enumerate(actions, start=1))
            lines.append("")

        return "\n".join(lines)

    def auto_fix_plan(self, plan_path: Path | str, tasks: list[ReviewedTask]) -> AutoFixResult:
        """Apply mechanical fixes to the plan at *plan_path*.

        Only ``fix_path`` suggestions are applied, as literal replacements of
        every occurrence in the document.  Already-complete tasks get an inert
        marker comment in front of their block, once.  The document is only
        written back when ``auto_fix`` is enabled.
        """
        resolved = resolve_under(self.root, plan_path)
        content = resolved.read_text(encoding="utf-8")
        result = AutoFixResult()
        modified = False

        for reviewed in tasks:
            task, validation = reviewed.task, reviewed.validation
            for suggestion in validation.suggestions:
                if suggestion.type == SuggestionType.FIX_PATH and suggestion.original and suggestion.suggested:
                    if suggestion.original in content:
                        content = content.replace(suggestion.original, suggestion.suggested)
                        result.fixed.append(
                            AutoFixEntry(
                                task=task.name,
                                type="path_fix",
                                original=suggestion.original,
                                suggested=suggestion.suggested,
                            )
                        )
                        modified = True
                else:
                    result.skipped.append(
                        AutoFixEntry(
                            task=task.name,
                            type=suggestion.type.value,
                            original=suggestion.original or suggestion.command,
                            suggested=suggestion.suggested,
                        )
                    )

            if validation.status == TaskStatus.ALREADY_COMPLETE and task.raw_content:
                marked = f"{ALREADY_COMPLETE_MARKER}\n{task.raw_content}"
                if task.raw_content in content and marked not in content:
                    content = content.replace(task.raw_content, marked, 1)
                    result.fixed.append(AutoFixEntry(task=task.name, type="marked_complete"))
                    modified = True

        if modified:
            result.new_content = content
            if self.auto_fix:
                atomic_write_text(resolved, content)
                result.written = True
                logger.info("Applied %d plan fix(es) to %s", len(result.fixed), resolved)
        return result


def _describe_suggestion(suggestion: Suggestion) -> str:
    if suggestion.type == SuggestionType.FIX_PATH:
        return f"- Change `{suggestion.original}` to `{suggestion.suggested}`"
    if suggestion.type == SuggestionType.INSTALL_DEPENDENCY:
        return f"- Run: `{suggestion.command}`"
    return f"- Use directory `{suggestion.suggested}` instead of `{suggestion.original}`"
