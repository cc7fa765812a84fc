"""
Heuristic Task Planner
======================

Keyword-based TaskPlanningGateway. It gives a supervisor something usable
without a language model; a model-backed planner replaces it by
implementing the same gateway methods.
"""

import logging
import re
from typing import Optional

from termwarden.ports import TaskPlanningGateway
from termwarden.tasks.task import ExecutionPlan, ParsedTask, ProgressReport, Task, TaskAnalysis, TaskType

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "claude"
HEURISTIC_CONFIDENCE = 0.7

# Checked in order, first match wins; anything else is a feature
TYPE_KEYWORDS: list[tuple[TaskType, tuple[str, ...]]] = [
    (TaskType.BUG, ("fix", "bug", "error")),
    (TaskType.REFACTOR, ("refactor", "clean")),
    (TaskType.TEST, ("test", "spec")),
    (TaskType.DOCUMENTATION, ("doc", "readme")),
    (TaskType.RESEARCH, ("research", "investigate")),
    (TaskType.REVIEW, ("review", "check")),
]

ISSUE_REFERENCE = re.compile(r"(?:beads-[a-z0-9]+|(?<!\w)#\d+)", re.IGNORECASE)

FILE_PATTERNS = [
    re.compile(
        r"(?:created?|modified|modify|updated?|wrote|write|edit(?:ed)?)\s+(?:file\s+)?"
        r"[`\"']?([^\s`\"']+\.[a-z]+)[`\"']?",
        re.IGNORECASE,
    ),
    re.compile(r"(?:src|lib|components?)/[^\s`\"']+\.[a-z]+", re.IGNORECASE),
]

COMPLETION_MARKERS = ("task complete", "successfully", "all done", "finished")
FAILURE_MARKERS = ("fatal error", "cannot proceed", "aborting")
BLOCKED_MARKERS = ("waiting for", "blocked by", "need help", "stuck")

# (keywords, progress) - later matches override earlier ones
PROGRESS_STAGES = [
    (("analyzing", "reading"), 20),
    (("planning", "designing"), 30),
    (("implementing", "writing"), 50),
    (("testing", "verifying"), 80),
]


def slugify(text: str, max_length: int = 30) -> str:
    """Lower-case branch slug: runs of non-alphanumerics become one dash."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())[:max_length]
    return slug.strip("-") or "task"


def classify(text: str) -> TaskType:
    lowered = text.lower()
    for task_type, keywords in TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return task_type
    return TaskType.FEATURE


class HeuristicTaskPlanner(TaskPlanningGateway):
    """Keyword heuristics for parsing, planning and progress analysis."""

    def __init__(self, confidence: float = HEURISTIC_CONFIDENCE):
        self.confidence = confidence

    async def parse(self, text: str, context: Optional[dict] = None) -> ParsedTask:
        task_type = classify(text)
        match = ISSUE_REFERENCE.search(text)

        agents = [DEFAULT_AGENT]
        preferred = (context or {}).get("preferred_agents", {}).get(task_type.value)
        if preferred:
            agents = [preferred]

        return ParsedTask(
            description=text.strip(),
            type=task_type,
            confidence=self.confidence,
            reasoning="Parsed using keyword heuristics",
            suggested_agents=tuple(agents),
            issue_reference=match.group(0) if match else None,
        )

    async def plan(
        self,
        task: Task,
        available_agents: list[str],
        context: Optional[dict] = None,
    ) -> ExecutionPlan:
        selected = available_agents[0] if available_agents else DEFAULT_AGENT
        for agent in task.type.recommended_agents:
            if agent in available_agents:
                selected = agent
                break

        if task.type in (TaskType.FEATURE, TaskType.REFACTOR):
            isolation = "worktree"
            branch_name = f"{task.type.value}/{slugify(task.description)}"
        elif task.type == TaskType.BUG:
            isolation = "branch"
            branch_name = f"fix/{slugify(task.description)}"
        else:
            isolation = "none"
            branch_name = None

        parts = [f"Task: {task.description}", f"Type: {task.type.value}"]
        conventions = (context or {}).get("conventions") or []
        if conventions:
            parts.append("\nCode conventions to follow:")
            parts.extend(f"- {c}" for c in conventions[:3])
        git_status = (context or {}).get("git_status")
        if git_status:
            parts.append(f"\nGit status:\n{git_status}")

        return ExecutionPlan(
            task_id=task.id,
            selected_agent=selected,
            isolation_strategy=isolation,
            branch_name=branch_name,
            context_to_inject="\n".join(parts),
            reasoning=f"Selected {selected} with {isolation} isolation based on task type",
        )

    async def analyze_transcript(self, task: Task, transcript: list[dict]) -> TaskAnalysis:
        """
        Summarize an agent transcript.

        Each chunk is a dict with at least a ``content`` key. Success needs a
        completion word and no error word in the last five chunks.
        """
        files: list[str] = []
        for chunk in transcript:
            content = chunk.get("content", "")
            for pattern in FILE_PATTERNS:
                for match in pattern.finditer(content):
                    path = match.group(1) if match.groups() else match.group(0)
                    if path not in files:
                        files.append(path)

        tail = [chunk.get("content", "").lower() for chunk in transcript[-5:]]
        has_error = any(w in c for c in tail for w in ("error", "failed", "cannot"))
        has_success = any(w in c for c in tail for w in ("complete", "success", "done"))
        success = has_success and not has_error

        if success:
            summary = f"Task completed. Modified {len(files)} files."
        else:
            summary = "Task may have encountered issues. Review transcript for details."
        return TaskAnalysis(
            task_id=task.id,
            success=success,
            summary=summary,
            files_modified=tuple(files[:20]),
        )

    async def generate_context_injection(
        self,
        task: Task,
        plan: ExecutionPlan,
        context: Optional[dict] = None,
    ) -> str:
        context = context or {}
        parts = [
            "# Task Assignment",
            "",
            "## Objective",
            task.description,
            "",
            "## Task Type",
            task.type.value,
            "",
        ]
        if plan.branch_name:
            parts += ["## Workspace", f"Work on branch `{plan.branch_name}` ({plan.isolation_strategy})", ""]
        for title, key in (("Conventions to Follow", "conventions"), ("Relevant Patterns", "patterns")):
            items = context.get(key) or []
            if items:
                parts.append(f"## {title}")
                parts.extend(f"- {item}" for item in items)
                parts.append("")
        parts += [
            "## Instructions",
            "1. Analyze the codebase to understand the current implementation",
            "2. Plan your approach before making changes",
            "3. Implement the changes following project conventions",
            "4. Test your changes if applicable",
            "5. Summarize what you did when complete",
        ]
        return "\n".join(parts)

    async def analyze_progress(self, task: Task, pane_content: str) -> ProgressReport:
        lines = pane_content.split("\n")
        recent = "\n".join(lines[-50:]).lower()

        if any(marker in recent for marker in COMPLETION_MARKERS):
            return ProgressReport(status="completed", progress=100, current_activity="Task completed")

        if any(marker in recent for marker in FAILURE_MARKERS):
            return ProgressReport(
                status="failed",
                progress=0,
                current_activity="Task failed",
                blocked_reason="Encountered fatal error",
                suggested_intervention="Review error messages and restart task",
            )

        if any(marker in recent for marker in BLOCKED_MARKERS):
            return ProgressReport(
                status="blocked",
                progress=50,
                current_activity="Waiting for input or blocked",
                blocked_reason="Agent appears to need assistance",
                suggested_intervention="Check if agent needs clarification or permissions",
            )

        last_line = lines[-1].strip() if lines else ""
        if last_line == "" or last_line.endswith(("$", ">")):
            return ProgressReport(
                status="idle",
                progress=50,
                current_activity="Agent appears idle at prompt",
                suggested_intervention="Agent may be waiting for input",
            )

        progress = 30
        for keywords, stage in PROGRESS_STAGES:
            if any(k in recent for k in keywords):
                progress = stage
        return ProgressReport(
            status="working",
            progress=progress,
            current_activity="Agent is actively working on task",
        )
