import asyncio
from pathlib import Path
from typing import Any

import pytest

from vibearchitect.phases.executor import ExecutorConfig, PhaseExecutionError, PhaseExecutor
from vibearchitect.phases.generator import PhaseGenerator
from vibearchitect.phases.models import PhaseApprovalResponse

FULL_STACK = "Build a full-stack app with a React frontend, a Node backend API and a Postgres database"


def _phased_executor(folder: Path, config: ExecutorConfig | None = None) -> PhaseExecutor:
    executor = PhaseExecutor(config)
    executor.initialize(folder, "task-1")
    executor.start_phased_execution(FULL_STACK, PhaseGenerator().generate_phases(FULL_STACK))
    executor.begin_phase_execution()
    return executor


def _auto_respond(executor: PhaseExecutor, response: PhaseApprovalResponse) -> list[dict[str, Any]]:
    requests: list[dict[str, Any]] = []

    def _handler(message: dict[str, Any]) -> None:
        requests.append(message)
        executor.provide_approval(response)

    executor.events.on("approval_needed", _handler)
    return requests


def test_small_requirement_runs_as_single_execution(tmp_path: Path) -> None:
    executor = PhaseExecutor()
    executor.initialize(tmp_path, "task-1")
    decided: list[dict[str, Any]] = []
    executor.events.on("mode_decided", decided.append)

    analysis = executor.analyze_requirement("Fix typo in README")
    state = executor.start_single_execution("Fix typo in README")

    assert analysis.recommended_mode == "single"
    assert analysis.phases is None
    assert decided[0]["analysis"] is analysis
    assert state.execution_mode == "single"
    assert state.estimated_total_tokens == 505
    assert executor.get_budget().total_budget == 505
    assert executor.status == "executing-phase"


def test_threshold_decides_phased_mode(tmp_path: Path) -> None:
    executor = PhaseExecutor(ExecutorConfig(phased_execution_threshold=0))
    executor.initialize(tmp_path, "task-1")

    analysis = executor.analyze_requirement("Fix typo in README")
    state = executor.start_phased_execution("Fix typo in README")

    assert analysis.recommended_mode == "phased"
    assert analysis.phases is not None
    assert [phase.id for phase in state.phases] == [phase.id for phase in analysis.phases.phases]


def test_begin_phase_resets_budget_to_phase_estimate(tmp_path: Path) -> None:
    executor = PhaseExecutor()
    executor.initialize(tmp_path, "task-1")
    started: list[dict[str, Any]] = []
    executor.events.on("phase_started", started.append)
    executor.start_phased_execution(FULL_STACK, PhaseGenerator().generate_phases(FULL_STACK))

    phase = executor.begin_phase_execution()

    assert phase is not None
    assert phase.status == "in-progress"
    assert started[0]["phase_index"] == 0
    assert started[0]["total_phases"] == 7
    assert executor.get_budget().total_budget == phase.estimated_tokens
    assert executor.get_context_monitor().phase_id == "phase-1"


def test_approved_phase_moves_to_next(tmp_path: Path) -> None:
    executor = _phased_executor(tmp_path)
    requests = _auto_respond(executor, PhaseApprovalResponse.approve("looks good"))
    executor.track_tokens(250, "agent")

    response = asyncio.run(
        executor.complete_phase("Scaffolded", ["setup.py"], [], ["Code compiles: PASS"])
    )

    request = requests[0]["request"]
    assert response.status == "approved"
    assert request.phase_id == "phase-1"
    assert request.token_usage == 250
    assert request.verification_passed is True
    assert request.next_phase_name == "Data Layer"
    state = executor.get_state()
    assert state is not None
    assert state.current_phase_index == 1
    assert state.phase_results[0].files_created == ("setup.py",)
    assert state.actual_tokens_used == 250
    assert executor.status == "executing-phase"
    assert executor.get_budget().used == 0
    assert executor.get_context_monitor().phase_id == "phase-2"
    assert executor.has_pending_approval() is False


def test_failed_verification_is_reported(tmp_path: Path) -> None:
    executor = _phased_executor(tmp_path)
    requests = _auto_respond(executor, PhaseApprovalResponse.approve())

    asyncio.run(executor.complete_phase("Done", verification_results=["Tests: FAIL"]))

    assert requests[0]["request"].verification_passed is False


def test_rejected_phase_stays_current(tmp_path: Path) -> None:
    executor = _phased_executor(tmp_path)
    _auto_respond(executor, PhaseApprovalResponse.reject("missing migrations"))

    response = asyncio.run(executor.complete_phase("Half done"))

    state = executor.get_state()
    assert state is not None
    assert response.continue_to_next is False
    assert state.current_phase_index == 0
    assert state.phase_results[0].status == "partial"
    assert state.phases[0].status == "failed"
    assert executor.status == "executing-phase"


def test_abort_response_fails_the_mission(tmp_path: Path) -> None:
    executor = _phased_executor(tmp_path)
    _auto_respond(executor, PhaseApprovalResponse.reject("stop", abort=True))

    asyncio.run(executor.complete_phase("Broken"))

    state = executor.get_state()
    assert state is not None
    assert state.overall_status == "failed"
    assert state.phase_results[0].error_message == "Mission aborted by user"
    assert executor.status == "aborted"


def test_abort_while_waiting_resolves_pending_approval(tmp_path: Path) -> None:
    executor = _phased_executor(tmp_path)

    async def _scenario() -> PhaseApprovalResponse:
        task = asyncio.create_task(executor.complete_phase("Waiting"))
        await asyncio.sleep(0)
        assert executor.has_pending_approval() is True
        assert executor.status == "awaiting-approval"
        executor.abort_mission("user left")
        return await task

    response = asyncio.run(_scenario())

    state = executor.get_state()
    assert state is not None
    assert response.abort_mission is True
    assert state.overall_status == "paused"
    assert state.phase_results == []
    assert executor.status == "aborted"

    phase = executor.resume_mission()
    assert phase is not None
    assert phase.id == "phase-1"
    assert executor.status == "executing-phase"


def test_auto_approve_skips_the_gate(tmp_path: Path) -> None:
    executor = _phased_executor(tmp_path, ExecutorConfig(auto_approve=True))
    requests = _auto_respond(executor, PhaseApprovalResponse.approve())

    response = asyncio.run(executor.complete_phase("Done"))

    assert response.feedback == "Auto-approved"
    assert requests == []
    assert executor.get_state().current_phase_index == 1


def test_completing_last_phase_reports_all_complete(tmp_path: Path) -> None:
    executor = PhaseExecutor(ExecutorConfig(auto_approve=True))
    executor.initialize(tmp_path, "task-1")
    executor.start_single_execution("Fix typo in README", 505)
    executor.begin_phase_execution()
    finished: list[dict[str, Any]] = []
    executor.events.on("all_complete", finished.append)
    executor.track_tokens(100)

    asyncio.run(executor.complete_phase("Typo fixed"))

    assert executor.status == "all-complete"
    assert finished[0]["total_tokens"] == 100
    with pytest.raises(PhaseExecutionError, match="No active phase"):
        asyncio.run(executor.complete_phase("Again"))


def test_skipping_every_phase_finishes_mission(tmp_path: Path) -> None:
    executor = _phased_executor(tmp_path)
    finished: list[dict[str, Any]] = []
    executor.events.on("all_complete", finished.append)

    for _ in range(7):
        executor.skip_current_phase("not needed")

    assert executor.status == "all-complete"
    assert len(finished) == 1
    assert executor.get_progress_summary().completed_phases == 7


def test_initialize_resumes_matching_task_only(tmp_path: Path) -> None:
    first = _phased_executor(tmp_path)
    first.skip_current_phase("done elsewhere")

    resumed = PhaseExecutor()
    state = resumed.initialize(tmp_path, "task-1")
    other = PhaseExecutor().initialize(tmp_path, "task-2")

    assert state is not None
    assert state.current_phase_index == 1
    assert resumed.status == "executing-phase"
    assert resumed.get_context_monitor().phase_id == "phase-2"
    assert other is None


def test_budget_status_changes_are_forwarded(tmp_path: Path) -> None:
    executor = _phased_executor(tmp_path)
    updates: list[dict[str, Any]] = []
    executor.events.on("budget_update", updates.append)
    total = executor.get_budget().total_budget

    executor.track_tokens(total)

    assert updates[-1]["budget"].status == "exhausted"
    assert executor.should_trigger_phase_boundary() is True


def test_prompt_context_describes_current_phase(tmp_path: Path) -> None:
    executor = _phased_executor(tmp_path)
    executor.skip_current_phase("covered")

    context = executor.get_phase_prompt_context()

    assert "## PHASE EXECUTION CONTEXT" in context
    assert "**Phase 2 of 7**: Data Layer" in context
    assert "- **phase-1**: skipped" in context
    assert "### Token Budget" in context


def test_uninitialized_executor_refuses_to_start() -> None:
    with pytest.raises(PhaseExecutionError):
        PhaseExecutor().start_single_execution("anything")
