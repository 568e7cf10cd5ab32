from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import click

from vibearchitect.browser import (
    AuthSessionManager,
    BrowserAutomationService,
    BrowserDriverError,
    PlaywrightDriver,
    SessionStorageManager,
)
from vibearchitect.config import DEFAULT_CONFIG_FILE, VibeConfig, load_config, save_config
from vibearchitect.phases import (
    ComplexityAnalyzer,
    ContextMonitor,
    PhaseApprovalRequest,
    PhaseApprovalResponse,
    PhaseExecutionError,
    PhaseExecutor,
    PhaseGenerator,
    PhaseStateError,
    generate_summary,
)

ACTIVE_MISSION_FILE = "active-mission"
BUDGET_FILE = "phase-budget.json"


@dataclass(slots=True)
class Runtime:
    root: Path
    config_path: Path
    config: VibeConfig

    @property
    def workspace_dir(self) -> Path:
        return self.root / ".vibearch"

    def mission_folder(self, task_id: str) -> Path:
        return self.config.missions_dir(self.root) / task_id


def _resolve_config_path(root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = root / config_path
    return config_path.resolve()


def _configure_logging(config: VibeConfig) -> None:
    ctx = click.get_current_context(silent=True)
    override = None
    if ctx is not None and isinstance(ctx.find_root().obj, dict):
        override = ctx.find_root().obj.get("log_level")
    level = str(override or config.logging.level).upper()
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load_runtime(root: Path, config_value: str) -> Runtime:
    config_path = _resolve_config_path(root, config_value)
    config = load_config(config_path)
    _configure_logging(config)
    return Runtime(root=root, config_path=config_path, config=config)


def _build_analyzer(config: VibeConfig) -> ComplexityAnalyzer:
    return ComplexityAnalyzer(config.analyzer)


def _build_executor(config: VibeConfig) -> PhaseExecutor:
    analyzer = _build_analyzer(config)
    return PhaseExecutor(
        config.executor,
        analyzer=analyzer,
        generator=PhaseGenerator(config.generator, analyzer=analyzer),
        monitor=ContextMonitor(config.monitor),
        state_config=config.state.manager_config(),
    )


def _active_task_id(runtime: Runtime, task_id: str | None) -> str:
    if task_id:
        return task_id
    marker = runtime.workspace_dir / ACTIVE_MISSION_FILE
    if marker.exists():
        value = marker.read_text(encoding="utf-8").strip()
        if value:
            return value
    raise click.ClickException("No active mission. Run `vibearch start` or pass --task-id.")


def _restore_budget(executor: PhaseExecutor, folder: Path) -> None:
    path = folder / BUDGET_FILE
    phase = executor.get_current_phase()
    if phase is None or not path.exists():
        return
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if payload.get("phase_id") == phase.id and int(payload.get("used", 0)) > 0:
        executor.track_tokens(int(payload["used"]), "restored")


def _store_budget(executor: PhaseExecutor, folder: Path) -> None:
    phase = executor.get_current_phase()
    path = folder / BUDGET_FILE
    if phase is None:
        path.unlink(missing_ok=True)
        return
    payload = {"phase_id": phase.id, "used": executor.get_budget().used}
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def _open_mission(runtime: Runtime, task_id: str | None) -> tuple[PhaseExecutor, Path]:
    resolved = _active_task_id(runtime, task_id)
    folder = runtime.mission_folder(resolved)
    executor = _build_executor(runtime.config)
    if executor.initialize(folder, resolved) is None:
        raise click.ClickException(f"No phase state for mission {resolved} in {folder}")
    _restore_budget(executor, folder)
    return executor, folder


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


def _echo_request(request: PhaseApprovalRequest) -> None:
    click.echo(f"Phase {request.phase_index + 1}/{request.total_phases} complete: {request.phase_name}")
    click.echo(f"Summary: {request.summary}")
    click.echo(f"Tokens used: {request.token_usage:,}")
    click.echo(f"Verification: {'PASS' if request.verification_passed else 'FAIL'}")
    if request.next_phase_name:
        click.echo(f"Next phase: {request.next_phase_name}")


def _decision_response(decision: str, feedback: str | None) -> PhaseApprovalResponse:
    if decision == "approve":
        return PhaseApprovalResponse.approve(feedback)
    return PhaseApprovalResponse.reject(feedback, abort=decision == "abort")


@click.group()
@click.option("--log-level", default=None, help="Override the [logging] level from the config.")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None) -> None:
    """VibeArchitect phased execution and browser automation CLI."""
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = log_level


@cli.command("init")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def init_command(config_value: str) -> None:
    root = Path.cwd().resolve()
    runtime = _load_runtime(root, config_value)
    save_config(runtime.config_path, runtime.config)
    runtime.config.missions_dir(root).mkdir(parents=True, exist_ok=True)
    click.echo(f"Initialized VibeArchitect in {root}")
    click.echo(f"Config: {runtime.config_path}")
    click.echo(f"Missions: {runtime.config.missions_dir(root)}")


@cli.command("analyze")
@click.argument("requirement")
@click.option("--json", "as_json", is_flag=True, default=False)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def analyze_command(requirement: str, as_json: bool, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    score = _build_analyzer(runtime.config).analyze(requirement)
    if as_json:
        _echo_json(score.to_dict())
        return
    click.echo(f"Level: {score.level} (score {score.score})")
    click.echo(f"Estimated tokens: {score.estimated_tokens:,}")
    click.echo(f"Recommendation: {score.recommendation}")
    click.echo(f"Suggested phases: {score.suggested_phase_count}")
    if score.explanation:
        click.echo(score.explanation)


@cli.command("plan")
@click.argument("requirement")
@click.option(
    "--strategy",
    type=click.Choice(["auto", "feature-based", "layer-based", "incremental"]),
    default=None,
)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def plan_command(requirement: str, strategy: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    generator_config = runtime.config.generator
    if strategy:
        generator_config = replace(generator_config, preferred_strategy=strategy)
    generator = PhaseGenerator(generator_config, analyzer=_build_analyzer(runtime.config))
    click.echo(generate_summary(generator.generate_phases(requirement)))


@cli.command("start")
@click.argument("requirement")
@click.option("--task-id", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def start_command(requirement: str, task_id: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    resolved = task_id or f"mission-{datetime.now(UTC).strftime('%Y%m%d%H%M%S')}"
    folder = runtime.mission_folder(resolved)
    executor = _build_executor(runtime.config)
    if executor.initialize(folder, resolved) is not None:
        raise click.ClickException(
            f"Mission {resolved} already exists. Use `vibearch resume` or `vibearch reset` first."
        )

    analysis = executor.analyze_requirement(requirement)
    if analysis.recommended_mode == "phased" and analysis.phases is not None:
        executor.start_phased_execution(requirement, analysis.phases)
    else:
        executor.start_single_execution(requirement, analysis.complexity_score.estimated_tokens)
    executor.begin_phase_execution()
    _store_budget(executor, folder)

    runtime.workspace_dir.mkdir(parents=True, exist_ok=True)
    (runtime.workspace_dir / ACTIVE_MISSION_FILE).write_text(resolved, encoding="utf-8")

    state = executor.get_state()
    click.echo(f"Mission: {resolved}")
    click.echo(f"Mode: {analysis.recommended_mode} ({analysis.reason})")
    click.echo(f"Phases: {len(state.phases) if state else 0}")
    click.echo("")
    click.echo(executor.get_phase_prompt_context())


@cli.command("status")
@click.option("--task-id", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def status_command(task_id: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    executor, _ = _open_mission(runtime, task_id)
    state = executor.get_state()
    phase = executor.get_current_phase()
    _echo_json(
        {
            "task_id": executor.task_id,
            "status": executor.status,
            "mode": state.execution_mode if state else None,
            "overall_status": state.overall_status if state else None,
            "current_phase": phase.to_dict() if phase else None,
            "progress": executor.get_progress_summary().to_dict(),
            "budget": executor.get_budget().to_dict(),
        }
    )


@cli.command("track")
@click.argument("tokens", type=click.IntRange(min=0))
@click.option("--source", default="agent", show_default=True)
@click.option("--task-id", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def track_command(tokens: int, source: str, task_id: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    executor, folder = _open_mission(runtime, task_id)
    if executor.get_current_phase() is None:
        raise click.ClickException("No active phase to track tokens against.")
    budget = executor.track_tokens(tokens, source)
    _store_budget(executor, folder)
    click.echo(
        f"Budget: {budget.used:,}/{budget.total_budget:,} ({budget.percent_used}%) "
        f"{budget.status} -> {budget.recommended_action}"
    )
    if executor.should_trigger_phase_boundary():
        click.echo("Phase boundary reached: wrap up and run `vibearch complete`.")


@cli.command("complete")
@click.option("--summary", required=True)
@click.option("--created", "files_created", multiple=True)
@click.option("--modified", "files_modified", multiple=True)
@click.option("--result", "verification_results", multiple=True)
@click.option("--decision", type=click.Choice(["approve", "reject", "abort"]), default=None)
@click.option("--feedback", default=None)
@click.option("--task-id", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def complete_command(
    summary: str,
    files_created: tuple[str, ...],
    files_modified: tuple[str, ...],
    verification_results: tuple[str, ...],
    decision: str | None,
    feedback: str | None,
    task_id: str | None,
    config_value: str,
) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    executor, folder = _open_mission(runtime, task_id)

    def _answer(message: dict[str, Any]) -> None:
        request: PhaseApprovalRequest = message["request"]
        _echo_request(request)
        chosen = decision
        if chosen is None:
            try:
                approved = click.confirm("Approve this phase?", default=True)
            except click.Abort:
                executor.abort_mission("Approval prompt cancelled")
                return
            chosen = "approve" if approved else "reject"
        executor.provide_approval(_decision_response(chosen, feedback))

    executor.events.on("approval_needed", _answer)
    try:
        response = asyncio.run(
            executor.complete_phase(summary, files_created, files_modified, verification_results)
        )
    except (PhaseExecutionError, PhaseStateError) as exc:
        raise click.ClickException(str(exc)) from exc

    if executor.status == "all-complete":
        _store_budget(executor, folder)
        click.echo("All phases complete.")
        click.echo(executor.generate_progress_report())
        return
    if response.abort_mission:
        click.echo("Mission aborted.")
        return
    if response.continue_to_next:
        phase = executor.begin_phase_execution()
        _store_budget(executor, folder)
        if phase is not None:
            click.echo(f"Starting phase: {phase.name}")
            click.echo("")
            click.echo(executor.get_phase_prompt_context())
        return
    click.echo("Phase not approved; it stays current for another attempt.")


@cli.command("skip")
@click.option("--reason", required=True)
@click.option("--task-id", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def skip_command(reason: str, task_id: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    executor, folder = _open_mission(runtime, task_id)
    skipped = executor.get_current_phase()
    if skipped is None:
        raise click.ClickException("No active phase to skip.")
    executor.skip_current_phase(reason)
    next_phase = executor.begin_phase_execution()
    _store_budget(executor, folder)
    click.echo(f"Skipped phase: {skipped.name}")
    if next_phase is not None:
        click.echo(f"Starting phase: {next_phase.name}")
    else:
        click.echo("All phases complete.")


@cli.command("abort")
@click.option("--reason", default="Aborted from CLI", show_default=True)
@click.option("--task-id", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def abort_command(reason: str, task_id: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    executor, _ = _open_mission(runtime, task_id)
    executor.abort_mission(reason)
    click.echo(f"Mission {executor.task_id} paused: {reason}")


@cli.command("resume")
@click.option("--task-id", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def resume_command(task_id: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    executor, _ = _open_mission(runtime, task_id)
    phase = executor.resume_mission()
    if phase is None:
        click.echo("Mission resumed; no phase remains.")
        return
    click.echo(f"Mission resumed at phase: {phase.name}")
    click.echo("")
    click.echo(executor.get_phase_prompt_context())


@cli.command("report")
@click.option("--task-id", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def report_command(task_id: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    executor, _ = _open_mission(runtime, task_id)
    click.echo(executor.generate_progress_report())
    click.echo("")
    click.echo(executor.get_context_monitor().generate_report())


@cli.command("reset")
@click.option("--task-id", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def reset_command(task_id: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    resolved = _active_task_id(runtime, task_id)
    folder = runtime.mission_folder(resolved)
    executor = _build_executor(runtime.config)
    executor.initialize(folder, resolved)
    if executor.state_manager is not None:
        executor.state_manager.clear_state()
    (folder / BUDGET_FILE).unlink(missing_ok=True)
    marker = runtime.workspace_dir / ACTIVE_MISSION_FILE
    if marker.exists() and marker.read_text(encoding="utf-8").strip() == resolved:
        marker.unlink()
    click.echo(f"Cleared mission state for {resolved}")


def _session_manager(runtime: Runtime) -> SessionStorageManager:
    return SessionStorageManager(
        runtime.config.sessions.resolved_dir(), patterns=runtime.config.sessions.patterns()
    )


@cli.group("session")
def session_group() -> None:
    """Inspect and prune saved browser sessions."""


@session_group.command("list")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def session_list_command(config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    sessions = _session_manager(runtime)
    saved = sessions.get_all_sessions()
    if not saved:
        click.echo("No saved sessions.")
        return
    for session in saved:
        saved_at = datetime.fromtimestamp(session.saved_at, UTC).replace(microsecond=0).isoformat()
        marker = "" if sessions.is_session_valid(session.id) else " (expired)"
        click.echo(f"{session.id} {session.domain} {session.cookie_count} cookies {saved_at}{marker}")


@session_group.command("show")
@click.argument("session_id")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def session_show_command(session_id: str, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    sessions = _session_manager(runtime)
    session = sessions.get_session(session_id)
    if session is None:
        raise click.ClickException(f"Session not found: {session_id}")
    _echo_json(
        {
            "session": session.to_dict(),
            "health": sessions.analyze_session_health(session_id).to_dict(),
        }
    )


@session_group.command("delete")
@click.argument("session_id", required=False)
@click.option("--domain", default=None)
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def session_delete_command(session_id: str | None, domain: str | None, config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    sessions = _session_manager(runtime)
    if domain:
        click.echo(f"Deleted {sessions.delete_sessions_for_domain(domain)} session(s) for {domain}")
        return
    if not session_id:
        raise click.ClickException("Pass a SESSION_ID or --domain.")
    if sessions.get_session(session_id) is None:
        raise click.ClickException(f"Session not found: {session_id}")
    if not sessions.delete_session(session_id):
        raise click.ClickException(f"Failed to delete session: {session_id}")
    click.echo(f"Deleted session {session_id}")


@session_group.command("clear-expired")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def session_clear_expired_command(config_value: str) -> None:
    runtime = _load_runtime(Path.cwd().resolve(), config_value)
    removed = _session_manager(runtime).clear_expired_sessions()
    click.echo(f"Removed {removed} expired session(s)")


async def _browse(
    service: BrowserAutomationService, url: str, screenshot: str | None, record: bool
) -> dict[str, Any]:
    await service.launch(record_video=record)
    try:
        outcome = await service.navigate_to(url)
        payload = outcome.to_dict()
        if screenshot and outcome.success:
            shot = await service.take_screenshot(screenshot)
            payload["screenshot"] = str(shot.path) if shot.path else None
        payload["title"] = await service.get_title() if outcome.success else None
    finally:
        recording = await service.close()
    payload["recording"] = recording.to_dict() if recording is not None else None
    return payload


@cli.command("browse")
@click.argument("url")
@click.option("--screenshot", "screenshot", default=None, help="Capture a screenshot with this name.")
@click.option("--headed", is_flag=True, default=False, help="Show the browser window.")
@click.option("--record", is_flag=True, default=False, help="Record a video of the session.")
@click.option("--config", "config_value", default=DEFAULT_CONFIG_FILE, show_default=True)
def browse_command(
    url: str, screenshot: str | None, headed: bool, record: bool, config_value: str
) -> None:
    root = Path.cwd().resolve()
    runtime = _load_runtime(root, config_value)
    automation_config = runtime.config.automation_config(root)
    if headed:
        automation_config.headless = False
    sessions = _session_manager(runtime)
    auth = AuthSessionManager(
        sessions,
        login_patterns=runtime.config.browser.login_patterns(),
        prompt_timeout=runtime.config.browser.auth_timeout_seconds,
    )
    service = BrowserAutomationService(PlaywrightDriver(), sessions, auth, config=automation_config)
    try:
        payload = asyncio.run(_browse(service, url, screenshot, record))
    except BrowserDriverError as exc:
        raise click.ClickException(str(exc)) from exc
    _echo_json(payload)
    if not payload["success"]:
        raise click.ClickException(payload["message"])
