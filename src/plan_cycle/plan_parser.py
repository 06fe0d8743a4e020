"""Tag-grammar plan documents.

A plan is Markdown with embedded task blocks::

    <task name="Add helper" type="auto">
      <files>
      lib/helper.js
      </files>
      <action>Create function 'formatDate' in 'lib/helper.js'</action>
      <verify>npm test</verify>
      <done>lib/helper.js exists and exports formatDate</done>
    </task>

Every sub-element is optional and the first occurrence wins.  Tasks without a
name are dropped.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from .models import FileExpectation, PlanInfo, PlanTask

logger = logging.getLogger(__name__)

TASK_BLOCK_RE = re.compile(r"<task(?:\s+[^>]*)?>.*?</task>", re.IGNORECASE | re.DOTALL)
TASK_MARKERS = ("<task", "## Task")
PLAN_FILE_RE = re.compile(r"PLAN.*\.md$", re.IGNORECASE)

_OPEN_TAG_RE = re.compile(r"<task([^>]*)>", re.IGNORECASE)
_NAME_ATTR_RE = re.compile(r"""name\s*=\s*["']([^"']+)["']""")
_TYPE_ATTR_RE = re.compile(r"""type\s*=\s*["']([^"']+)["']""")
_NAME_TAG_RE = re.compile(r"<name>([^<]+)</name>", re.IGNORECASE)

_QUOTED_PATH_RE = re.compile(r"""['"`]((?:\./|/|[a-zA-Z_])[a-zA-Z0-9_\-./]+\.[a-zA-Z]+)['"`]""")
_FUNCTION_HINTS = (
    re.compile(r"""(?:create|add|implement)\s+(?:function|method)\s+['"`]?(\w+)['"`]?""", re.IGNORECASE),
    re.compile(r"""(?:function|method)\s+['"`]?(\w+)['"`]?\s+(?:that|which|to)""", re.IGNORECASE),
    re.compile(r"(\w+)\s*\([^)]*\)\s*(?:=>|\{)"),
)
_NOT_FUNCTIONS = frozenset({"if", "while", "for", "switch", "catch", "function", "return"})
_EXPORT_HINTS = (
    re.compile(r"""(?:export|exports)\s+(?:const|let|var|function|class)?\s*['"`]?(\w+)['"`]?""", re.IGNORECASE),
    re.compile(r"module\.exports\s*=\s*\{([^}]+)\}", re.IGNORECASE),
    re.compile(r"module\.exports\.(\w+)", re.IGNORECASE),
)


def has_task_marker(content: str) -> bool:
    return any(marker in content for marker in TASK_MARKERS)


def _element(block: str, tag: str) -> str | None:
    match = re.search(rf"<{tag}>(.*?)</{tag}>", block, re.IGNORECASE | re.DOTALL)
    return match.group(1).strip() if match else None


def parse_task(block: str) -> PlanTask | None:
    """Parse one ``<task>`` block, or return ``None`` when it has no name."""
    name = None
    task_type = None
    opening = _OPEN_TAG_RE.search(block)
    if opening and opening.group(1):
        attributes = opening.group(1)
        name_match = _NAME_ATTR_RE.search(attributes)
        if name_match:
            name = name_match.group(1)
        type_match = _TYPE_ATTR_RE.search(attributes)
        if type_match:
            task_type = type_match.group(1)
    if not name:
        tag_match = _NAME_TAG_RE.search(block)
        if tag_match:
            name = tag_match.group(1).strip()
    if not name:
        return None

    files_text = _element(block, "files")
    files = []
    if files_text:
        for line in files_text.splitlines():
            line = line.strip()
            if line and not line.startswith("#") and not line.startswith("//"):
                files.append(line)

    return PlanTask(
        name=name,
        type=task_type,
        files=files,
        action=_element(block, "action"),
        verify=_element(block, "verify"),
        done=_element(block, "done"),
        raw_content=block,
    )


def extract_tasks(content: str) -> list[PlanTask]:
    tasks = []
    for match in TASK_BLOCK_RE.finditer(content):
        task = parse_task(match.group(0))
        if task is not None:
            tasks.append(task)
    return tasks


def _section(content: str, heading: str) -> str | None:
    match = re.search(
        rf"##\s*{heading}\s*\n+(.*?)(?=\n##|\n<task|\Z)",
        content,
        re.IGNORECASE | re.DOTALL,
    )
    return match.group(1).strip() if match else None


def _bullets(section: str | None) -> list[str]:
    if not section:
        return []
    return [re.sub(r"^-\s*", "", line.strip()).strip() for line in section.splitlines() if line.strip().startswith("-")]


def parse_plan_content(content: str) -> PlanInfo:
    info = PlanInfo()
    title = re.search(r"^#\s+(.+)$", content, re.MULTILINE)
    if title:
        info.title = title.group(1).strip()
    info.objective = _section(content, "Objective")
    phase = re.search(r"Phase\s*(\d+)", content, re.IGNORECASE)
    if phase:
        info.phase = int(phase.group(1))
    plan = re.search(r"Plan\s*(\d+[-.]?\d*)", content, re.IGNORECASE)
    if plan:
        info.plan = plan.group(1)
    info.dependencies = _bullets(_section(content, "Dependencies"))
    info.success_criteria = _bullets(_section(content, r"Success\s*Criteria"))
    info.verification = _section(content, "Verification")
    return info


def extract_files(task: PlanTask) -> list[str]:
    """Explicit ``<files>`` entries followed by quoted paths found in the action."""
    files = list(task.files)
    if task.action:
        for match in _QUOTED_PATH_RE.finditer(task.action):
            if match.group(1) not in files:
                files.append(match.group(1))
    return files


def extract_expected_functions(task: PlanTask) -> list[FileExpectation]:
    if not task.action:
        return []
    names: dict[str, None] = {}
    for pattern in _FUNCTION_HINTS:
        for match in pattern.finditer(task.action):
            if match.group(1) not in _NOT_FUNCTIONS:
                names[match.group(1)] = None
    files = extract_files(task)
    if not files or not names:
        return []
    return [FileExpectation(file=files[0], names=tuple(names))]


def extract_expected_exports(task: PlanTask) -> list[FileExpectation]:
    if not task.action:
        return []
    names: dict[str, None] = {}
    for pattern in _EXPORT_HINTS:
        for match in pattern.finditer(task.action):
            for item in match.group(1).split(","):
                name = item.split(":", 1)[0].strip()
                if name:
                    names[name] = None
    files = extract_files(task)
    if not files or not names:
        return []
    return [FileExpectation(file=files[0], names=tuple(names))]


def find_plan_files(directory: Path) -> list[Path]:
    """Recursively list plan documents under *directory*, sorted."""
    found: list[Path] = []
    pending = [directory]
    while pending:
        current = pending.pop()
        try:
            entries = list(current.iterdir())
        except OSError as exc:
            logger.debug("Skipping unreadable directory %s: %s", current, exc)
            continue
        for entry in entries:
            if entry.is_file() and PLAN_FILE_RE.search(entry.name):
                found.append(entry)
            elif entry.is_dir() and not entry.name.startswith(".") and entry.name != "node_modules":
                pending.append(entry)
    return sorted(found)


def render_task(
    name: str,
    action: str,
    *,
    task_type: str = "auto",
    files: list[str] | None = None,
    verify: str | None = None,
    done: str | None = None,
) -> str:
    """Render a task block that ``parse_task`` reads back."""
    lines = [f'<task name="{name}" type="{task_type}">']
    if files:
        lines.extend(["<files>", *files, "</files>"])
    lines.append(f"<action>{action}</action>")
    if verify:
        lines.append(f"<verify>{verify}</verify>")
    if done:
        lines.append(f"<done>{done}</done>")
    lines.append("</task>")
    return "\n".join(lines)
