from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from vibearchitect.phases.complexity import ComplexityScore

PhaseStatus = Literal["pending", "in-progress", "completed", "failed", "skipped"]
PhaseResultStatus = Literal["completed", "failed", "partial", "skipped"]
ExecutionMode = Literal["single", "phased"]
OverallStatus = Literal["in-progress", "completed", "failed", "paused"]
SplittingStrategy = Literal["feature-based", "layer-based", "incremental"]
ApprovalStatus = Literal["approved", "rejected", "modified"]


def utcnow_iso() -> str:
    return datetime.now(UTC).replace(microsecond=0).isoformat()


@dataclass(slots=True)
class Phase:
    id: str
    name: str
    description: str
    requirements: list[str] = field(default_factory=list)
    deliverables: list[str] = field(default_factory=list)
    verification_criteria: list[str] = field(default_factory=list)
    estimated_tokens: int = 0
    dependencies: list[str] = field(default_factory=list)
    status: PhaseStatus = "pending"
    order: int = 0
    domains: list[str] = field(default_factory=list)
    risk_factors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "requirements": list(self.requirements),
            "deliverables": list(self.deliverables),
            "verification_criteria": list(self.verification_criteria),
            "estimated_tokens": self.estimated_tokens,
            "dependencies": list(self.dependencies),
            "status": self.status,
            "order": self.order,
            "domains": list(self.domains),
            "risk_factors": list(self.risk_factors),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Phase:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            description=str(data.get("description", "")),
            requirements=list(data.get("requirements", [])),
            deliverables=list(data.get("deliverables", [])),
            verification_criteria=list(data.get("verification_criteria", [])),
            estimated_tokens=int(data.get("estimated_tokens", 0)),
            dependencies=list(data.get("dependencies", [])),
            status=data.get("status", "pending"),
            order=int(data.get("order", 0)),
            domains=list(data.get("domains", [])),
            risk_factors=list(data.get("risk_factors", [])),
        )


@dataclass(frozen=True, slots=True)
class PhaseResult:
    phase_id: str
    status: PhaseResultStatus
    files_created: tuple[str, ...] = ()
    files_modified: tuple[str, ...] = ()
    verification_passed: bool = False
    user_approved: bool = False
    token_usage: int = 0
    completed_at: str = field(default_factory=utcnow_iso)
    error_message: str | None = None
    summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "phase_id": self.phase_id,
            "status": self.status,
            "files_created": list(self.files_created),
            "files_modified": list(self.files_modified),
            "verification_passed": self.verification_passed,
            "user_approved": self.user_approved,
            "token_usage": self.token_usage,
            "completed_at": self.completed_at,
        }
        if self.error_message is not None:
            payload["error_message"] = self.error_message
        if self.summary is not None:
            payload["summary"] = self.summary
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhaseResult:
        return cls(
            phase_id=str(data["phase_id"]),
            status=data["status"],
            files_created=tuple(data.get("files_created", [])),
            files_modified=tuple(data.get("files_modified", [])),
            verification_passed=bool(data.get("verification_passed", False)),
            user_approved=bool(data.get("user_approved", False)),
            token_usage=int(data.get("token_usage", 0)),
            completed_at=str(data.get("completed_at") or utcnow_iso()),
            error_message=data.get("error_message"),
            summary=data.get("summary"),
        )


@dataclass(slots=True)
class PhaseExecutionState:
    task_id: str
    original_requirement: str
    phases: list[Phase]
    execution_mode: ExecutionMode
    current_phase_index: int = 0
    phase_results: list[PhaseResult] = field(default_factory=list)
    complexity_score: ComplexityScore | None = None
    strategy_used: str = "none"
    estimated_total_tokens: int = 0
    actual_tokens_used: int = 0
    started_at: str = field(default_factory=utcnow_iso)
    last_updated_at: str = field(default_factory=utcnow_iso)
    overall_status: OverallStatus = "in-progress"

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "original_requirement": self.original_requirement,
            "phases": [phase.to_dict() for phase in self.phases],
            "execution_mode": self.execution_mode,
            "current_phase_index": self.current_phase_index,
            "phase_results": [result.to_dict() for result in self.phase_results],
            "complexity_score": (
                self.complexity_score.to_dict() if self.complexity_score is not None else None
            ),
            "strategy_used": self.strategy_used,
            "estimated_total_tokens": self.estimated_total_tokens,
            "actual_tokens_used": self.actual_tokens_used,
            "started_at": self.started_at,
            "last_updated_at": self.last_updated_at,
            "overall_status": self.overall_status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PhaseExecutionState:
        score = data.get("complexity_score")
        return cls(
            task_id=str(data["task_id"]),
            original_requirement=str(data.get("original_requirement", "")),
            phases=[Phase.from_dict(item) for item in data.get("phases", [])],
            execution_mode=data.get("execution_mode", "single"),
            current_phase_index=int(data.get("current_phase_index", 0)),
            phase_results=[PhaseResult.from_dict(item) for item in data.get("phase_results", [])],
            complexity_score=ComplexityScore.from_dict(score) if isinstance(score, dict) else None,
            strategy_used=str(data.get("strategy_used", "none")),
            estimated_total_tokens=int(data.get("estimated_total_tokens", 0)),
            actual_tokens_used=int(data.get("actual_tokens_used", 0)),
            started_at=str(data.get("started_at") or utcnow_iso()),
            last_updated_at=str(data.get("last_updated_at") or utcnow_iso()),
            overall_status=data.get("overall_status", "in-progress"),
        )


@dataclass(slots=True)
class PhaseGenerationResult:
    phases: list[Phase]
    strategy_used: SplittingStrategy
    complexity_score: ComplexityScore
    total_estimated_tokens: int
    execution_order: list[str]
    warnings: list[str] = field(default_factory=list)

    @property
    def total_phases(self) -> int:
        return len(self.phases)


@dataclass(frozen=True, slots=True)
class PhaseApprovalRequest:
    phase_id: str
    phase_name: str
    phase_index: int
    total_phases: int
    summary: str
    files_created: tuple[str, ...]
    files_modified: tuple[str, ...]
    verification_results: tuple[str, ...]
    verification_passed: bool
    token_usage: int
    next_phase_name: str | None = None
    next_phase_description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase_id": self.phase_id,
            "phase_name": self.phase_name,
            "phase_index": self.phase_index,
            "total_phases": self.total_phases,
            "summary": self.summary,
            "files_created": list(self.files_created),
            "files_modified": list(self.files_modified),
            "verification_results": list(self.verification_results),
            "verification_passed": self.verification_passed,
            "token_usage": self.token_usage,
            "next_phase_name": self.next_phase_name,
            "next_phase_description": self.next_phase_description,
        }


@dataclass(frozen=True, slots=True)
class PhaseApprovalResponse:
    status: ApprovalStatus
    continue_to_next: bool
    abort_mission: bool = False
    feedback: str | None = None
    modified_requirements: tuple[str, ...] = ()

    @classmethod
    def approve(cls, feedback: str | None = None) -> PhaseApprovalResponse:
        return cls(status="approved", continue_to_next=True, feedback=feedback)

    @classmethod
    def reject(cls, feedback: str | None = None, *, abort: bool = False) -> PhaseApprovalResponse:
        return cls(status="rejected", continue_to_next=False, abort_mission=abort, feedback=feedback)
