"""Rich rendering of lab views, shared by the CLI tables and the TUI board."""

from __future__ import annotations

from collections.abc import Sequence

from rich.table import Table
from rich.text import Text

from grounds.engine.models import (
    BoardSummary,
    ContractDeployment,
    Difficulty,
    LabView,
    OperationResult,
    Outcome,
    SessionStatus,
)

# ── Styles ──

DIFFICULTY_STYLES: dict[Difficulty, str] = {
    Difficulty.EASY: "green",
    Difficulty.MEDIUM: "yellow",
    Difficulty.HARD: "red",
}

STATUS_STYLES: dict[SessionStatus, str] = {
    SessionStatus.RUNNING: "green bold",
    SessionStatus.STARTING: "blue",
    SessionStatus.STOPPING: "yellow",
    SessionStatus.STOPPED: "dim",
}

STATUS_LABELS: dict[SessionStatus, str] = {
    SessionStatus.RUNNING: "Running",
    SessionStatus.STARTING: "Starting...",
    SessionStatus.STOPPING: "Stopping...",
    SessionStatus.STOPPED: "Stopped",
}

OUTCOME_MESSAGES: dict[Outcome, str] = {
    Outcome.STARTED: "started",
    Outcome.STOPPED: "stopped",
    Outcome.ALREADY_ACTIVE: "is already active",
    Outcome.NOT_ACTIVE: "is not running",
    Outcome.OPERATION_IN_PROGRESS: "is busy",
    Outcome.PROVISION_FAILED: "failed to start",
    Outcome.DEPROVISION_FAILED: "failed to stop",
}

COLUMNS = ("ID", "Name", "Difficulty", "OS", "Category", "Status", "IP", "Time Left")


# ── Cells ──


def status_text(status: SessionStatus) -> Text:
    return Text(STATUS_LABELS[status], style=STATUS_STYLES[status])


def difficulty_text(difficulty: Difficulty) -> Text:
    return Text(difficulty.value, style=DIFFICULTY_STYLES[difficulty])


def view_cells(view: LabView) -> tuple[str | Text, ...]:
    """One table row for *view*, in COLUMNS order."""
    return (
        str(view.id),
        view.name,
        difficulty_text(view.difficulty),
        view.os,
        view.category,
        status_text(view.status),
        view.leased_address or "—",
        view.time_remaining or "—",
    )


def summary_line(summary: BoardSummary) -> str:
    line = f"Active Boxes: {summary.active}  |  Available: {summary.available}"
    if summary.starting:
        line += f"  |  Starting: {summary.starting}"
    return line


def outcome_line(result: OperationResult, name: str | None = None) -> Text:
    """Human sentence describing a start/stop result."""
    label = name or f"Box {result.environment_id}"
    style = "green" if result.ok else (
        "red" if result.outcome in (Outcome.PROVISION_FAILED, Outcome.DEPROVISION_FAILED)
        else "yellow"
    )
    text = Text(f"{label} {OUTCOME_MESSAGES[result.outcome]}", style=style)
    session = result.session
    if result.outcome == Outcome.STARTED and session is not None:
        text.append(f" — IP {session.leased_address}, {session.time_remaining} left")
    elif result.error and not result.ok:
        text.append(f": {result.error}")
    return text


# ── Tables ──


def build_table(views: Sequence[LabView], title: str = "Vulnerable Environments") -> Table:
    table = Table(title=title, title_justify="left")
    for column in COLUMNS:
        table.add_column(column, no_wrap=column in ("ID", "IP", "Time Left"))
    for view in views:
        table.add_row(*view_cells(view))
    return table


def contracts_table(
    deployments: Sequence[ContractDeployment], rpc_url: str | None = None,
) -> Table:
    title = "Contract Address Explorer"
    if rpc_url:
        title += f" ({rpc_url})"
    table = Table(title=title, title_justify="left")
    table.add_column("Contract Address", style="green bold", no_wrap=True)
    table.add_column("Block", justify="right")
    table.add_column("Deployed By", no_wrap=True)
    table.add_column("Gas Used", justify="right")
    for deployment in deployments:
        table.add_row(
            deployment.contract_address,
            str(deployment.block_number),
            deployment.sender,
            "" if deployment.gas_used is None else str(deployment.gas_used),
        )
    return table
