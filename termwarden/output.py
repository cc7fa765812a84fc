"""
Rich Output Utilities
=====================

Terminal output for people reviewing what supervisors did: a themed console,
Rich logging, and tables for audit trails, insights and sweep results.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from termwarden.audit import AuditActionType, AuditLogEntry
from termwarden.insight import Insight, InsightSeverity


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class WardenColors:
    """Palette in hex for truecolor terminals."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    accent: str = "#F59E0B"    # warm accent
    cool: str = "#22D3EE"      # cool accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"
    warn: str = "#FBBF24"
    err: str = "#EF4444"


def warden_theme(colors: WardenColors = WardenColors()) -> Theme:
    """
    Rich Theme with semantic style names:
      console.print("...", style="tw.ok")
    """
    return Theme(
        {
            "tw.accent": f"bold {colors.accent}",
            "tw.muted": f"{colors.dim}",
            "tw.text": f"{colors.ink}",
            "tw.border": f"{colors.cool}",
            "tw.ok": f"bold {colors.ok}",
            "tw.warn": f"bold {colors.warn}",
            "tw.err": f"bold {colors.err}",
            "tw.info": f"{colors.cool}",
            "tw.key": f"{colors.steel}",
            "tw.timestamp": f"{colors.dim}",
            "tw.table.header": f"bold {colors.cool}",

            # Insight severities
            "tw.severity.info": f"{colors.cool}",
            "tw.severity.warning": f"bold {colors.warn}",
            "tw.severity.error": f"bold {colors.err}",
            "tw.severity.critical": f"bold reverse {colors.err}",

            # Audit actions
            "tw.action.command_injected": f"bold {colors.accent}",
            "tw.action.status_changed": f"{colors.steel}",
            "tw.action.insight_generated": f"bold {colors.warn}",
            "tw.action.session_monitored": f"{colors.dim}",
            "tw.action.orchestrator_created": f"bold {colors.ok}",
            "tw.action.task_updated": f"{colors.cool}",
        }
    )


# Single source of truth for output
console = Console(theme=warden_theme())


def _out(target: Optional[Console]) -> Console:
    return target if target is not None else console


# =============================================================================
# Basic Messages
# =============================================================================

def print_success(message: str, target: Optional[Console] = None) -> None:
    _out(target).print(Text(message, style="tw.ok"))


def print_error(message: str, target: Optional[Console] = None) -> None:
    _out(target).print(Text(message, style="tw.err"))


def print_warning(message: str, target: Optional[Console] = None) -> None:
    _out(target).print(Text(message, style="tw.warn"))


def create_table(*, title: Optional[str] = None, columns: Optional[list[str]] = None) -> Table:
    """Create a styled Rich Table."""
    table = Table(
        title=title,
        header_style="tw.table.header",
        border_style="tw.border",
        title_style="tw.accent",
    )
    for col in columns or []:
        table.add_column(col)
    return table


# =============================================================================
# Supervision Displays
# =============================================================================

def _timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S")


def format_audit_entry(entry: AuditLogEntry) -> Text:
    """One styled line: timestamp, action and summary."""
    text = Text()
    text.append(_timestamp(entry.created_at), style="tw.timestamp")
    text.append("  ")
    text.append(entry.summary(), style=f"tw.action.{entry.action_type.value}")
    if entry.action_type == AuditActionType.COMMAND_INJECTED and entry.details.get("dangerous"):
        text.append("  dangerous", style="tw.err")
    return text


def print_audit_trail(
    entries: Iterable[AuditLogEntry],
    *,
    title: str = "Audit Trail",
    target: Optional[Console] = None,
) -> None:
    table = create_table(title=title, columns=["Time", "Action", "Session", "Details"])
    for entry in entries:
        details = ", ".join(f"{k}={v}" for k, v in entry.details.items() if v is not None)
        table.add_row(
            Text(_timestamp(entry.created_at), style="tw.timestamp"),
            Text(entry.action_type.value, style=f"tw.action.{entry.action_type.value}"),
            entry.target_session_id or "-",
            details,
        )
    _out(target).print(table)


def print_insights(
    insights: Iterable[Insight],
    *,
    title: str = "Insights",
    target: Optional[Console] = None,
) -> None:
    """Table of insights, most severe first."""
    ordered = sorted(insights, key=lambda i: (-i.severity.rank, i.created_at))
    table = create_table(title=title, columns=["Severity", "Type", "Session", "Message", "Actions"])
    for insight in ordered:
        actions = "\n".join(
            f"{a.label}{' (dangerous)' if a.dangerous else ''}" for a in insight.suggested_actions
        )
        message = Text(insight.message)
        if insight.resolved:
            message.stylize("tw.muted strike")
        table.add_row(
            _severity_text(insight.severity),
            insight.type.value,
            insight.session_id or "-",
            message,
            actions,
        )
    _out(target).print(table)


def _severity_text(severity: InsightSeverity) -> Text:
    return Text(severity.value.upper(), style=f"tw.severity.{severity.value}")


def print_sweep_summary(output, target: Optional[Console] = None) -> None:
    """Summarize a DetectStalledSessions result."""
    out = _out(target)
    table = create_table(
        title=f"Sweep by {output.supervisor.id}",
        columns=["Session", "Verdict", "Confidence", "Unchanged"],
    )
    for session_id, result in output.results.items():
        if result.is_stalled:
            verdict = Text("stalled", style="tw.warn")
        elif result.error_excerpt:
            verdict = Text("error output", style="tw.err")
        else:
            verdict = Text("active", style="tw.ok")
        table.add_row(session_id, verdict, f"{result.confidence:.2f}", f"{int(result.unchanged_duration)}s")
    for error in output.errors:
        table.add_row(error.session_id, Text(error.error_type, style="tw.err"), "-", error.message)
    out.print(table)

    if output.insights:
        print_insights(output.insights, target=out)
    if output.errors:
        print_warning(f"{len(output.errors)} session(s) could not be checked", target=out)
    else:
        print_success(f"{len(output.results)} session(s) checked", target=out)


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Configure Python logging to use Rich.

    Usage:
        setup_rich_logging()
        logging.getLogger("termwarden").info("Sweep started")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
        force=True,
    )
