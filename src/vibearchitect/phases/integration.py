from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from vibearchitect.events import EventEmitter
from vibearchitect.phases.complexity import ComplexityMetrics, ComplexityScore
from vibearchitect.phases.executor import ExecutorConfig, PhaseExecutor
from vibearchitect.phases.models import (
    ExecutionMode,
    Phase,
    PhaseApprovalResponse,
    PhaseGenerationResult,
)
from vibearchitect.phases.monitor import ContextBudget
from vibearchitect.phases.state import StateManagerConfig

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IntegrationConfig:
    enabled: bool = True
    token_budget_per_phase: int = 30000
    phased_execution_threshold: int = 40
    auto_analyze: bool = True
    require_approval_between_phases: bool = True


@dataclass(slots=True)
class PreparedMission:
    mode: ExecutionMode
    score: ComplexityScore
    prompt_context: str
    phases: PhaseGenerationResult | None = None


@dataclass(slots=True)
class PhaseCompletion:
    continue_to_next: bool
    is_complete: bool


@dataclass(slots=True)
class PhaseExecutionInfo:
    enabled: bool
    mode: ExecutionMode
    current_phase_index: int
    total_phases: int
    phases: list[dict[str, Any]] = field(default_factory=list)
    budget: dict[str, Any] = field(default_factory=dict)
    total_tokens_used: int = 0
    total_tokens_estimated: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "mode": self.mode,
            "current_phase_index": self.current_phase_index,
            "total_phases": self.total_phases,
            "phases": [dict(item) for item in self.phases],
            "budget": dict(self.budget),
            "total_tokens_used": self.total_tokens_used,
            "total_tokens_estimated": self.total_tokens_estimated,
        }


def _disabled_score(requirement: str) -> ComplexityScore:
    return ComplexityScore(
        level="LOW",
        score=0,
        estimated_tokens=10000,
        metrics=ComplexityMetrics(
            feature_count=0,
            estimated_file_count=1,
            scope_indicators=(),
            risk_factors=(),
            text_length=len(requirement),
            technical_domains=(),
        ),
        recommendation="PROCEED",
        explanation="Phase execution disabled",
    )


class PhaseIntegration:
    """Registry of per-task executors used by the task runner."""

    def __init__(
        self,
        config: IntegrationConfig | None = None,
        *,
        state_config: StateManagerConfig | None = None,
    ) -> None:
        self.config = config or IntegrationConfig()
        self.state_config = state_config
        self.events = EventEmitter()
        self._executors: dict[str, PhaseExecutor] = {}

    def analyze_and_prepare(
        self, task_id: str, requirement: str, mission_folder: Path
    ) -> PreparedMission:
        if not self.config.enabled:
            return PreparedMission(mode="single", score=_disabled_score(requirement), prompt_context="")

        executor = PhaseExecutor(
            ExecutorConfig(
                token_budget_per_phase=self.config.token_budget_per_phase,
                phased_execution_threshold=self.config.phased_execution_threshold,
                require_approval_between_phases=self.config.require_approval_between_phases,
                auto_approve=not self.config.require_approval_between_phases,
            ),
            state_config=self.state_config,
        )
        executor.initialize(mission_folder, task_id)
        self.cleanup(task_id)
        self._executors[task_id] = executor
        self._forward_events(task_id, executor)

        analysis = executor.analyze_requirement(requirement)
        if analysis.recommended_mode == "phased" and analysis.phases is not None:
            executor.start_phased_execution(requirement, analysis.phases)
        else:
            executor.start_single_execution(requirement, analysis.complexity_score.estimated_tokens)
        executor.begin_phase_execution()
        prompt_context = executor.get_phase_prompt_context()
        self._fire_update(task_id)
        return PreparedMission(
            mode=analysis.recommended_mode,
            score=analysis.complexity_score,
            prompt_context=prompt_context,
            phases=analysis.phases,
        )

    def get_executor(self, task_id: str) -> PhaseExecutor | None:
        return self._executors.get(task_id)

    def get_prompt_context(self, task_id: str) -> str:
        executor = self._executors.get(task_id)
        return executor.get_phase_prompt_context() if executor is not None else ""

    def track_tokens(self, task_id: str, tokens: int, source: str) -> None:
        executor = self._executors.get(task_id)
        if executor is not None:
            executor.track_tokens(tokens, source)

    def track_text(self, task_id: str, text: str, source: str) -> None:
        executor = self._executors.get(task_id)
        if executor is not None:
            executor.track_tokens(executor.get_context_monitor().estimate_tokens(text), source)

    def should_end_phase(self, task_id: str) -> bool:
        executor = self._executors.get(task_id)
        return executor.should_trigger_phase_boundary() if executor is not None else False

    def get_budget(self, task_id: str) -> ContextBudget | None:
        executor = self._executors.get(task_id)
        return executor.get_budget() if executor is not None else None

    def get_phase_info(self, task_id: str) -> PhaseExecutionInfo | None:
        executor = self._executors.get(task_id)
        if executor is None:
            return None
        state = executor.get_state()
        if state is None:
            return None
        budget = executor.get_budget()
        progress = executor.get_progress_summary()
        phases: list[dict[str, Any]] = []
        for phase in state.phases:
            result = executor.state_manager.get_phase_result(phase.id) if executor.state_manager else None
            phases.append(
                {
                    "id": phase.id,
                    "name": phase.name,
                    "description": phase.description,
                    "status": result.status if result is not None else phase.status,
                    "token_usage": result.token_usage if result is not None else None,
                    "estimated_tokens": phase.estimated_tokens,
                }
            )
        return PhaseExecutionInfo(
            enabled=self.config.enabled,
            mode=state.execution_mode,
            current_phase_index=state.current_phase_index,
            total_phases=len(state.phases),
            phases=phases,
            budget={
                "used": budget.used,
                "total": budget.total_budget,
                "percent_used": budget.percent_used,
                "status": budget.status,
            },
            total_tokens_used=progress.tokens_used,
            total_tokens_estimated=progress.tokens_estimated,
        )

    async def complete_current_phase(
        self,
        task_id: str,
        summary: str,
        files_created: Sequence[str] = (),
        files_modified: Sequence[str] = (),
        verification_results: Sequence[str] = ("Code compiles: PASS",),
    ) -> PhaseCompletion:
        executor = self._executors.get(task_id)
        if executor is None:
            return PhaseCompletion(continue_to_next=False, is_complete=True)
        response = await executor.complete_phase(
            summary, files_created, files_modified, verification_results
        )
        state = executor.get_state()
        is_complete = state is None or state.current_phase_index >= len(state.phases)
        if not is_complete and response.continue_to_next and not response.abort_mission:
            executor.begin_phase_execution()
        return PhaseCompletion(
            continue_to_next=response.continue_to_next and not response.abort_mission,
            is_complete=is_complete,
        )

    def provide_approval(self, task_id: str, approved: bool, feedback: str | None = None) -> None:
        executor = self._executors.get(task_id)
        if executor is None:
            return
        if approved:
            executor.provide_approval(PhaseApprovalResponse.approve(feedback))
        else:
            executor.provide_approval(PhaseApprovalResponse.reject(feedback, abort=True))

    def skip_phase(self, task_id: str, reason: str) -> None:
        executor = self._executors.get(task_id)
        if executor is not None:
            executor.skip_current_phase(reason)

    def abort_mission(self, task_id: str, reason: str) -> None:
        executor = self._executors.get(task_id)
        if executor is not None:
            executor.abort_mission(reason)

    def has_phase_execution(self, task_id: str) -> bool:
        return task_id in self._executors

    def is_phased_mode(self, task_id: str) -> bool:
        executor = self._executors.get(task_id)
        state = executor.get_state() if executor is not None else None
        return state is not None and state.execution_mode == "phased"

    def get_current_phase(self, task_id: str) -> Phase | None:
        executor = self._executors.get(task_id)
        return executor.get_current_phase() if executor is not None else None

    def has_pending_approval(self, task_id: str) -> bool:
        executor = self._executors.get(task_id)
        return executor.has_pending_approval() if executor is not None else False

    def generate_report(self, task_id: str) -> str:
        executor = self._executors.get(task_id)
        if executor is None:
            return "No phase execution data available."
        return executor.generate_progress_report()

    def cleanup(self, task_id: str) -> None:
        executor = self._executors.pop(task_id, None)
        if executor is not None:
            executor.dispose()

    def update_config(self, **changes: Any) -> None:
        self.config = replace(self.config, **changes)

    def dispose(self) -> None:
        for task_id in list(self._executors):
            self.cleanup(task_id)
        self.events.clear()

    def _forward_events(self, task_id: str, executor: PhaseExecutor) -> None:
        executor.events.on(
            "approval_needed",
            lambda message: self.events.emit(
                "approval_needed", task_id=task_id, request=message["request"]
            ),
        )

        def _on_completed(message: dict[str, Any]) -> None:
            result = message["result"]
            self.events.emit(
                "phase_complete", task_id=task_id, phase_id=result.phase_id, result=result
            )
            self._fire_update(task_id)

        executor.events.on("phase_completed", _on_completed)
        executor.events.on(
            "all_complete",
            lambda message: self.events.emit(
                "all_complete", task_id=task_id, total_tokens=message["total_tokens"]
            ),
        )
        executor.events.on("budget_update", lambda _message: self._fire_update(task_id))

    def _fire_update(self, task_id: str) -> None:
        info = self.get_phase_info(task_id)
        if info is not None:
            self.events.emit("phase_update", task_id=task_id, info=info)
