"""
Task Pipeline
=============

Free text becomes a typed Task, the Task gets an ExecutionPlan, and the
delegated session is watched until it completes, fails or blocks.

    parsed = await planner.parse("Fix the login redirect bug")
    plan = await planner.plan(task, available_agents=["claude", "codex"])
"""

from termwarden.tasks.task import (
    ExecutionPlan,
    ParsedTask,
    ProgressReport,
    Task,
    TaskAnalysis,
    TaskError,
    TaskResult,
    TaskStatus,
    TaskType,
)
from termwarden.tasks.planner import HeuristicTaskPlanner
