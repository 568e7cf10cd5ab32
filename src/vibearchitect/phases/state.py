from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from vibearchitect.phases.models import (
    Phase,
    PhaseExecutionState,
    PhaseGenerationResult,
    PhaseResult,
    utcnow_iso,
)

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "phase-state.json"


class PhaseStateError(RuntimeError):
    """Raised when a mission state is required but missing."""


@dataclass(slots=True)
class ProgressSummary:
    current_phase: int = 0
    total_phases: int = 0
    completed_phases: int = 0
    failed_phases: int = 0
    percent_complete: int = 0
    tokens_used: int = 0
    tokens_estimated: int = 0
    status: str = "not-started"

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_phase": self.current_phase,
            "total_phases": self.total_phases,
            "completed_phases": self.completed_phases,
            "failed_phases": self.failed_phases,
            "percent_complete": self.percent_complete,
            "tokens_used": self.tokens_used,
            "tokens_estimated": self.tokens_estimated,
            "status": self.status,
        }


@dataclass(slots=True)
class StateManagerConfig:
    auto_save: bool = True
    state_file_name: str = DEFAULT_STATE_FILE


class PhaseStateManager:
    def __init__(self, mission_folder: Path, config: StateManagerConfig | None = None) -> None:
        self.config = config or StateManagerConfig()
        self.mission_folder = mission_folder
        self.state: PhaseExecutionState | None = None

    @property
    def state_path(self) -> Path:
        return self.mission_folder / self.config.state_file_name

    def initialize_from_generation(
        self, task_id: str, requirement: str, generation: PhaseGenerationResult
    ) -> PhaseExecutionState:
        self.state = PhaseExecutionState(
            task_id=task_id,
            original_requirement=requirement,
            phases=generation.phases,
            execution_mode="phased" if generation.total_phases > 1 else "single",
            complexity_score=generation.complexity_score,
            strategy_used=generation.strategy_used,
            estimated_total_tokens=generation.total_estimated_tokens,
        )
        self._autosave()
        return self.state

    def initialize_single_phase(
        self, task_id: str, requirement: str, estimated_tokens: int
    ) -> PhaseExecutionState:
        phase = Phase(
            id="phase-1",
            name="Implementation",
            description="Complete implementation of the requirement",
            requirements=[requirement],
            deliverables=["Working implementation"],
            verification_criteria=["Code compiles", "Basic functionality works"],
            estimated_tokens=estimated_tokens,
        )
        self.state = PhaseExecutionState(
            task_id=task_id,
            original_requirement=requirement,
            phases=[phase],
            execution_mode="single",
            strategy_used="none",
            estimated_total_tokens=estimated_tokens,
        )
        self._autosave()
        return self.state

    def load(self) -> PhaseExecutionState | None:
        path = self.state_path
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            state = PhaseExecutionState.from_dict(payload)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Failed to load phase state from %s: %s", path, exc)
            return None
        self.state = state
        logger.debug("Loaded phase state for %s from %s", state.task_id, path)
        return state

    def save(self) -> bool:
        if self.state is None:
            return False
        self.state.last_updated_at = utcnow_iso()
        serialized = json.dumps(self.state.to_dict(), ensure_ascii=False, indent=2)
        try:
            self.mission_folder.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.mission_folder,
                prefix=".phase-state-",
                suffix=".tmp",
                delete=False,
            ) as handle:
                handle.write(serialized)
                temp_path = handle.name
            os.replace(temp_path, self.state_path)
        except OSError as exc:
            logger.warning("Failed to save phase state to %s: %s", self.state_path, exc)
            return False
        return True

    def get_state(self) -> PhaseExecutionState | None:
        return self.state

    def require_state(self) -> PhaseExecutionState:
        if self.state is None:
            raise PhaseStateError(f"No phase state for mission folder {self.mission_folder}")
        return self.state

    def get_current_phase(self) -> Phase | None:
        if self.state is None:
            return None
        if 0 <= self.state.current_phase_index < len(self.state.phases):
            return self.state.phases[self.state.current_phase_index]
        return None

    def get_current_phase_index(self) -> int:
        return self.state.current_phase_index if self.state is not None else -1

    def get_total_phases(self) -> int:
        return len(self.state.phases) if self.state is not None else 0

    def is_complete(self) -> bool:
        if self.state is None:
            return False
        return self.state.current_phase_index >= len(self.state.phases)

    def is_phased_execution(self) -> bool:
        return self.state is not None and self.state.execution_mode == "phased"

    def mark_phase_started(self) -> None:
        phase = self.get_current_phase()
        if phase is None:
            return
        phase.status = "in-progress"
        self._autosave()

    def mark_phase_complete(self, result: PhaseResult) -> None:
        if self.state is None:
            return
        state = self.state
        phase = self.get_current_phase()
        if phase is not None and result.phase_id != phase.id:
            logger.warning(
                "Result for %s recorded against current phase %s", result.phase_id, phase.id
            )
            result = replace(result, phase_id=phase.id)
        state.phase_results.append(result)
        state.actual_tokens_used += result.token_usage

        if phase is not None:
            if result.status in {"completed", "skipped"}:
                phase.status = result.status
            else:
                phase.status = "failed"

        if result.status in {"completed", "skipped"} and result.user_approved:
            state.current_phase_index += 1
            if state.current_phase_index >= len(state.phases):
                state.overall_status = "completed"
        if result.status == "failed":
            state.overall_status = "failed"
        self._autosave()

    def skip_current_phase(self, reason: str) -> None:
        phase = self.get_current_phase()
        if phase is None:
            return
        self.mark_phase_complete(
            PhaseResult(
                phase_id=phase.id,
                status="skipped",
                verification_passed=False,
                user_approved=True,
                summary=f"Phase skipped: {reason}",
            )
        )

    def pause(self) -> None:
        if self.state is None:
            return
        self.state.overall_status = "paused"
        self._autosave()

    def resume(self) -> None:
        if self.state is None or self.state.overall_status != "paused":
            return
        self.state.overall_status = "in-progress"
        self._autosave()

    def update_token_usage(self, tokens: int) -> None:
        if self.state is not None:
            self.state.actual_tokens_used += tokens

    def get_phase_results(self) -> list[PhaseResult]:
        return list(self.state.phase_results) if self.state is not None else []

    def get_phase_result(self, phase_id: str) -> PhaseResult | None:
        for result in reversed(self.get_phase_results()):
            if result.phase_id == phase_id:
                return result
        return None

    def get_progress_summary(self) -> ProgressSummary:
        if self.state is None:
            return ProgressSummary()
        results = self.state.phase_results
        completed = sum(1 for item in results if item.status in {"completed", "skipped"})
        failed = sum(1 for item in results if item.status == "failed")
        total = len(self.state.phases)
        return ProgressSummary(
            current_phase=self.state.current_phase_index + 1,
            total_phases=total,
            completed_phases=completed,
            failed_phases=failed,
            percent_complete=round(completed / total * 100) if total else 0,
            tokens_used=self.state.actual_tokens_used,
            tokens_estimated=self.state.estimated_total_tokens,
            status=self.state.overall_status,
        )

    def generate_progress_report(self) -> str:
        if self.state is None:
            return "No execution state available."
        summary = self.get_progress_summary()
        lines = [
            "## Phase Execution Progress",
            "",
            f"**Status:** {summary.status.upper()}",
            (
                f"**Progress:** Phase {min(summary.current_phase, summary.total_phases)} of "
                f"{summary.total_phases} ({summary.percent_complete}% complete)"
            ),
            f"**Tokens:** {summary.tokens_used:,} / {summary.tokens_estimated:,} estimated",
            "",
            "### Phases",
            "",
            "| # | Phase | Status | Tokens |",
            "|---|-------|--------|--------|",
        ]
        for index, phase in enumerate(self.state.phases):
            result = self.get_phase_result(phase.id)
            status = result.status if result is not None else phase.status
            tokens = str(result.token_usage) if result is not None else "-"
            marker = ">" if index == self.state.current_phase_index else " "
            lines.append(f"| {marker}{index + 1} | {phase.name} | {status} | {tokens} |")

        if self.state.phase_results:
            lines += ["", "### Completed Phase Results", ""]
            for result in self.state.phase_results:
                lines.append(f"**{result.phase_id}:** {result.status}")
                if result.summary:
                    lines.append(f"  - {result.summary}")
                if result.files_created:
                    lines.append(f"  - Files created: {', '.join(result.files_created)}")
                if result.files_modified:
                    lines.append(f"  - Files modified: {', '.join(result.files_modified)}")
                lines.append("")
        return "\n".join(lines).rstrip() + "\n"

    def clear_state(self) -> None:
        self.state = None
        try:
            self.state_path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete phase state %s: %s", self.state_path, exc)

    def _autosave(self) -> None:
        if self.config.auto_save:
            self.save()
