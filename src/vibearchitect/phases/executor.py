from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from vibearchitect.events import EventEmitter
from vibearchitect.phases.complexity import ComplexityAnalyzer, ComplexityScore
from vibearchitect.phases.generator import PhaseGenerator
from vibearchitect.phases.models import (
    ExecutionMode,
    Phase,
    PhaseApprovalRequest,
    PhaseApprovalResponse,
    PhaseExecutionState,
    PhaseGenerationResult,
    PhaseResult,
)
from vibearchitect.phases.monitor import ContextBudget, ContextMonitor, MonitorConfig
from vibearchitect.phases.state import PhaseStateManager, ProgressSummary, StateManagerConfig

logger = logging.getLogger(__name__)

ExecutorStatus = Literal[
    "not-started",
    "analyzing",
    "executing-phase",
    "awaiting-approval",
    "all-complete",
    "aborted",
    "paused",
]


class PhaseExecutionError(RuntimeError):
    """Raised when the executor is driven out of order."""


@dataclass(slots=True)
class ExecutorConfig:
    token_budget_per_phase: int = 30000
    auto_approve: bool = False
    phased_execution_threshold: int = 40
    require_approval_between_phases: bool = True


@dataclass(slots=True)
class AnalysisResult:
    recommended_mode: ExecutionMode
    complexity_score: ComplexityScore
    reason: str
    phases: PhaseGenerationResult | None = None


@dataclass(slots=True)
class PendingApproval:
    request: PhaseApprovalRequest
    future: asyncio.Future[PhaseApprovalResponse]


class PhaseExecutor:
    """Drives one mission through analysis, per-phase budgets and approval gates."""

    def __init__(
        self,
        config: ExecutorConfig | None = None,
        *,
        analyzer: ComplexityAnalyzer | None = None,
        generator: PhaseGenerator | None = None,
        monitor: ContextMonitor | None = None,
        state_config: StateManagerConfig | None = None,
    ) -> None:
        self.config = config or ExecutorConfig()
        self.analyzer = analyzer or ComplexityAnalyzer()
        self.generator = generator or PhaseGenerator(analyzer=self.analyzer)
        self.monitor = monitor or ContextMonitor(
            MonitorConfig(total_budget=self.config.token_budget_per_phase)
        )
        self.state_config = state_config
        self.events = EventEmitter()
        self.state_manager: PhaseStateManager | None = None
        self.task_id: str | None = None
        self.status: ExecutorStatus = "not-started"
        self._analysis: AnalysisResult | None = None
        self._pending: PendingApproval | None = None
        self._unsubscribe_budget = self.monitor.events.on(
            "status_change",
            lambda message: self.events.emit("budget_update", budget=message["budget"]),
        )

    def initialize(self, mission_folder: Path, task_id: str) -> PhaseExecutionState | None:
        self.state_manager = PhaseStateManager(mission_folder, self.state_config)
        self.task_id = task_id
        existing = self.state_manager.load()
        if existing is None:
            return None
        if existing.task_id != task_id:
            logger.warning(
                "Ignoring phase state for task %s in %s (expected %s)",
                existing.task_id,
                mission_folder,
                task_id,
            )
            self.state_manager.state = None
            return None
        logger.info("Resuming execution for task %s", task_id)
        self.status = self._status_from_state(existing)
        phase = self.state_manager.get_current_phase()
        if phase is not None:
            self.monitor.reset(self._phase_budget(phase), phase.id)
        return existing

    def analyze_requirement(self, requirement: str) -> AnalysisResult:
        self.status = "analyzing"
        score = self.analyzer.analyze(requirement)
        phased = (
            score.score >= self.config.phased_execution_threshold
            or score.recommendation in {"SPLIT_PHASES", "REQUIRE_CLARIFICATION"}
        )
        if phased:
            reason = (
                f"Complexity score {score.score} ({score.level}) with recommendation "
                f"{score.recommendation} requires phased execution"
            )
            generation = self.generator.generate_phases(requirement, score)
        else:
            reason = f"Complexity score {score.score} ({score.level}) fits a single execution"
            generation = None
        analysis = AnalysisResult(
            recommended_mode="phased" if phased else "single",
            complexity_score=score,
            reason=reason,
            phases=generation,
        )
        self._analysis = analysis
        logger.info("Mode decided for %s: %s (%s)", self.task_id, analysis.recommended_mode, reason)
        self.events.emit("mode_decided", analysis=analysis)
        return analysis

    def start_phased_execution(
        self, requirement: str, generation: PhaseGenerationResult | None = None
    ) -> PhaseExecutionState:
        manager = self._require_manager()
        if generation is None:
            if self._analysis is not None and self._analysis.phases is not None:
                generation = self._analysis.phases
            else:
                generation = self.generator.generate_phases(requirement)
        state = manager.initialize_from_generation(self._require_task_id(), requirement, generation)
        first = state.phases[0]
        self.monitor.reset(self._phase_budget(first), first.id)
        self.status = "executing-phase"
        return state

    def start_single_execution(
        self, requirement: str, estimated_tokens: int | None = None
    ) -> PhaseExecutionState:
        manager = self._require_manager()
        if estimated_tokens is None:
            if self._analysis is not None:
                estimated_tokens = self._analysis.complexity_score.estimated_tokens
            else:
                estimated_tokens = self.config.token_budget_per_phase
        state = manager.initialize_single_phase(self._require_task_id(), requirement, estimated_tokens)
        self.monitor.reset(self._phase_budget(state.phases[0]), "phase-1")
        self.status = "executing-phase"
        return state

    def begin_phase_execution(self) -> Phase | None:
        manager = self._require_manager()
        phase = manager.get_current_phase()
        if phase is None:
            return None
        manager.mark_phase_started()
        state = manager.require_state()
        self.status = "executing-phase"
        self.events.emit(
            "phase_started",
            phase=phase,
            phase_index=state.current_phase_index,
            total_phases=len(state.phases),
        )
        self.monitor.reset(self._phase_budget(phase), phase.id)
        return phase

    def track_tokens(self, tokens: int, source: str = "agent") -> ContextBudget:
        return self.monitor.track_usage(tokens, "prompt", source)

    def get_budget(self) -> ContextBudget:
        return self.monitor.get_budget()

    def should_trigger_phase_boundary(self) -> bool:
        return self.monitor.should_trigger_phase_boundary()

    async def complete_phase(
        self,
        summary: str,
        files_created: Sequence[str] = (),
        files_modified: Sequence[str] = (),
        verification_results: Sequence[str] = (),
    ) -> PhaseApprovalResponse:
        manager = self._require_manager()
        state = manager.get_state()
        phase = manager.get_current_phase()
        if state is None or phase is None:
            raise PhaseExecutionError("No active phase to complete")
        if self._pending is not None:
            raise PhaseExecutionError(f"Approval already pending for {self._pending.request.phase_id}")

        next_index = state.current_phase_index + 1
        next_phase = state.phases[next_index] if next_index < len(state.phases) else None
        request = PhaseApprovalRequest(
            phase_id=phase.id,
            phase_name=phase.name,
            phase_index=state.current_phase_index,
            total_phases=len(state.phases),
            summary=summary,
            files_created=tuple(files_created),
            files_modified=tuple(files_modified),
            verification_results=tuple(verification_results),
            verification_passed=not any("fail" in item.lower() for item in verification_results),
            token_usage=self.monitor.get_budget().used,
            next_phase_name=next_phase.name if next_phase else None,
            next_phase_description=next_phase.description if next_phase else None,
        )

        if self.config.auto_approve or not self.config.require_approval_between_phases:
            response = PhaseApprovalResponse.approve("Auto-approved")
            self._process_approval(request, response)
            return response

        future: asyncio.Future[PhaseApprovalResponse] = asyncio.get_running_loop().create_future()
        self._pending = PendingApproval(request=request, future=future)
        self.status = "awaiting-approval"
        self.events.emit("approval_needed", request=request)
        return await future

    def provide_approval(self, response: PhaseApprovalResponse) -> None:
        pending = self._pending
        if pending is None:
            logger.warning("No pending approval to resolve; ignoring %s response", response.status)
            return
        self._pending = None
        try:
            self._process_approval(pending.request, response)
        except Exception as exc:
            self.events.emit("error", error=exc)
            if not pending.future.done():
                pending.future.set_exception(exc)
            return
        if not pending.future.done():
            pending.future.set_result(response)

    def abort_mission(self, reason: str) -> None:
        pending = self._pending
        if pending is not None:
            self._pending = None
            if not pending.future.done():
                pending.future.set_result(PhaseApprovalResponse.reject(reason, abort=True))
        if self.state_manager is not None:
            self.state_manager.pause()
        self.status = "aborted"
        logger.info("Mission %s aborted: %s", self.task_id, reason)

    def resume_mission(self) -> Phase | None:
        manager = self._require_manager()
        manager.resume()
        state = manager.get_state()
        if state is None:
            return None
        self.status = self._status_from_state(state)
        return manager.get_current_phase()

    def skip_current_phase(self, reason: str) -> None:
        manager = self._require_manager()
        manager.skip_current_phase(reason)
        if manager.is_complete():
            self._finish()
            return
        phase = manager.get_current_phase()
        if phase is not None:
            self.monitor.reset(self._phase_budget(phase), phase.id)

    def get_state(self) -> PhaseExecutionState | None:
        return self.state_manager.get_state() if self.state_manager is not None else None

    def get_current_phase(self) -> Phase | None:
        return self.state_manager.get_current_phase() if self.state_manager is not None else None

    def get_progress_summary(self) -> ProgressSummary:
        if self.state_manager is None:
            return ProgressSummary()
        return self.state_manager.get_progress_summary()

    def generate_progress_report(self) -> str:
        if self.state_manager is None:
            return "No execution state available."
        return self.state_manager.generate_progress_report()

    def get_phase_prompt_context(self) -> str:
        phase = self.get_current_phase()
        state = self.get_state()
        if phase is None or state is None:
            return ""
        budget = self.monitor.get_budget()
        lines = [
            "## PHASE EXECUTION CONTEXT",
            "",
            f"You are executing **Phase {state.current_phase_index + 1} of {len(state.phases)}**: {phase.name}",
            "",
            "### Phase Objective",
            phase.description,
            "",
            "### Requirements for This Phase",
            *[f"- {item}" for item in phase.requirements],
            "",
            "### Expected Deliverables",
            *[f"- {item}" for item in phase.deliverables],
            "",
            "### Verification Criteria",
            *[f"- {item}" for item in phase.verification_criteria],
            "",
        ]
        if state.phase_results:
            lines.append("### Previous Phase Results")
            for result in state.phase_results:
                lines.append(f"- **{result.phase_id}**: {result.status}")
                if result.summary:
                    lines.append(f"  - {result.summary}")
            lines.append("")
        lines += [
            "### Token Budget",
            f"- **Used:** {budget.used:,} / {budget.total_budget:,} ({budget.percent_used}%)",
            f"- **Status:** {budget.status}",
            f"- **Action:** {budget.recommended_action}",
            "",
            "### IMPORTANT CONSTRAINTS",
            "- Focus ONLY on this phase's requirements",
            "- Do NOT implement features from future phases",
            "- Complete deliverables before finishing",
            "- If budget is critical, wrap up and note remaining work",
        ]
        return "\n".join(lines)

    def has_pending_approval(self) -> bool:
        return self._pending is not None

    def get_pending_approval(self) -> PhaseApprovalRequest | None:
        return self._pending.request if self._pending is not None else None

    def get_context_monitor(self) -> ContextMonitor:
        return self.monitor

    def dispose(self) -> None:
        self._unsubscribe_budget()
        self.events.clear()

    def _process_approval(
        self, request: PhaseApprovalRequest, response: PhaseApprovalResponse
    ) -> PhaseResult:
        manager = self._require_manager()
        if response.abort_mission:
            status = "failed"
        elif response.status == "approved":
            status = "completed"
        else:
            status = "partial"
        result = PhaseResult(
            phase_id=request.phase_id,
            status=status,
            files_created=request.files_created,
            files_modified=request.files_modified,
            verification_passed=request.verification_passed,
            user_approved=response.status == "approved",
            token_usage=request.token_usage,
            error_message="Mission aborted by user" if response.abort_mission else None,
            summary=request.summary,
        )
        manager.mark_phase_complete(result)
        self.events.emit("phase_completed", result=result, response=response)

        if manager.is_complete():
            self._finish()
        elif response.abort_mission:
            self.status = "aborted"
        else:
            self.status = "executing-phase"
            next_phase = manager.get_current_phase()
            if response.continue_to_next and next_phase is not None:
                self.monitor.reset(self._phase_budget(next_phase), next_phase.id)
        return result

    def _finish(self) -> None:
        state = self._require_manager().require_state()
        self.status = "all-complete"
        logger.info("All %d phase(s) complete for %s", len(state.phases), state.task_id)
        self.events.emit("all_complete", total_tokens=state.actual_tokens_used)

    def _phase_budget(self, phase: Phase) -> int:
        if phase.estimated_tokens > 0:
            return phase.estimated_tokens
        return self.config.token_budget_per_phase

    @staticmethod
    def _status_from_state(state: PhaseExecutionState) -> ExecutorStatus:
        if state.overall_status == "paused":
            return "paused"
        if state.current_phase_index >= len(state.phases):
            return "all-complete"
        return "executing-phase"

    def _require_manager(self) -> PhaseStateManager:
        if self.state_manager is None:
            raise PhaseExecutionError("Phase executor not initialized; call initialize() first")
        return self.state_manager

    def _require_task_id(self) -> str:
        if self.task_id is None:
            raise PhaseExecutionError("Phase executor not initialized; call initialize() first")
        return self.task_id
