from __future__ import annotations

import logging
import math
import re
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

from vibearchitect.events import EventEmitter
from vibearchitect.phases.complexity import TokenEstimator

logger = logging.getLogger(__name__)

UsageType = Literal["prompt", "response", "context", "tool-call", "tool-result", "system"]
BudgetStatus = Literal["healthy", "warning", "critical", "exhausted"]
RecommendedAction = Literal["continue", "wrap-up", "checkpoint", "stop"]

USAGE_TYPES: tuple[UsageType, ...] = ("prompt", "response", "context", "tool-call", "tool-result", "system")

CODE_SYNTAX_PATTERN = re.compile(
    r"[{}\[\]();=<>]|function|const|let|var|import|export|class|interface"
)
WHITESPACE_PATTERN = re.compile(r"\s")

ALERT_SUGGESTIONS: dict[str, tuple[str, ...]] = {
    "warning": (
        "Complete the current task",
        "Avoid starting new large operations",
        "Consider creating a checkpoint",
    ),
    "critical": (
        "Stop starting new tasks",
        "Save current progress",
        "Create a checkpoint now",
        "Prepare to transition to next phase",
    ),
    "exhausted": (
        "Stop all operations",
        "Save state immediately",
        "Transition to next phase",
        "Report partial completion",
    ),
    "healthy": ("Continue normal operation",),
}


def estimate_tokens(text: str, chars_per_token: float = 4) -> int:
    """Approximate token count; code-dense text costs more, airy text less."""
    if not text:
        return 0
    tokens = math.ceil(len(text) / chars_per_token)
    if len(CODE_SYNTAX_PATTERN.findall(text)) > 10:
        tokens = math.ceil(tokens * 1.2)
    if len(WHITESPACE_PATTERN.findall(text)) / len(text) > 0.3:
        tokens = math.ceil(tokens * 0.9)
    return tokens


@dataclass(slots=True)
class MonitorConfig:
    total_budget: int = 30000
    warning_threshold: float = 70
    critical_threshold: float = 90
    chars_per_token: float = 4
    wrap_up_reserve: int = 2000


@dataclass(frozen=True, slots=True)
class TokenUsageEvent:
    type: UsageType
    tokens: int
    source: str
    timestamp: float
    phase_id: str | None = None
    description: str | None = None


@dataclass(frozen=True, slots=True)
class ContextBudget:
    total_budget: int
    used: int
    remaining: int
    percent_used: float
    status: BudgetStatus
    recommended_action: RecommendedAction

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_budget": self.total_budget,
            "used": self.used,
            "remaining": self.remaining,
            "percent_used": self.percent_used,
            "status": self.status,
            "recommended_action": self.recommended_action,
        }


@dataclass(frozen=True, slots=True)
class BudgetAlert:
    level: BudgetStatus
    message: str
    budget: ContextBudget
    timestamp: float
    suggestions: tuple[str, ...] = ()


@dataclass(slots=True)
class UsageStatistics:
    total_tokens: int
    by_type: dict[str, int]
    by_source: dict[str, int]
    event_count: int
    average_per_event: int
    peak_usage: int
    time_span: float
    tokens_per_minute: int
    phase_id: str | None = None


class ContextMonitor:
    """Token budget tracker that alerts once per threshold crossing."""

    def __init__(
        self,
        config: MonitorConfig | None = None,
        *,
        estimator: TokenEstimator | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or MonitorConfig()
        self.events = EventEmitter()
        self._estimator = estimator
        self._clock = clock
        self._lock = threading.RLock()
        self._history: list[TokenUsageEvent] = []
        self._used = 0
        self._last_status: BudgetStatus = "healthy"
        self._phase_id: str | None = None
        self._started_at = clock()

    @property
    def phase_id(self) -> str | None:
        return self._phase_id

    def estimate_tokens(self, text: str) -> int:
        if self._estimator is not None:
            return self._estimator(text)
        return estimate_tokens(text, self.config.chars_per_token)

    def track_usage(
        self,
        tokens: int,
        usage_type: UsageType = "prompt",
        source: str = "unknown",
        *,
        description: str | None = None,
    ) -> ContextBudget:
        with self._lock:
            event = TokenUsageEvent(
                type=usage_type,
                tokens=max(0, int(tokens)),
                source=source,
                timestamp=self._clock(),
                phase_id=self._phase_id,
                description=description,
            )
            self._history.append(event)
            self._used += event.tokens
            self.events.emit("usage_tracked", usage=event)
            return self._check_status()

    def track_text(self, text: str, usage_type: UsageType, source: str) -> ContextBudget:
        tokens = self.estimate_tokens(text)
        return self.track_usage(
            tokens, usage_type, source, description=f"{len(text)} chars -> ~{tokens} tokens"
        )

    def track_prompt(self, prompt: str, source: str = "user") -> ContextBudget:
        return self.track_text(prompt, "prompt", source)

    def track_response(self, response: str, source: str = "assistant") -> ContextBudget:
        return self.track_text(response, "response", source)

    def track_tool_call(self, tool_name: str, arguments: str = "") -> ContextBudget:
        return self.track_usage(
            self.estimate_tokens(f"{tool_name} {arguments}".strip()),
            "tool-call",
            tool_name,
            description=f"Tool call: {tool_name}",
        )

    def track_tool_result(self, tool_name: str, result: str) -> ContextBudget:
        return self.track_usage(
            self.estimate_tokens(result),
            "tool-result",
            tool_name,
            description=f"Tool result: {tool_name}",
        )

    def track_context(self, content: str, source: str) -> ContextBudget:
        return self.track_text(content, "context", source)

    def track_system_prompt(self, prompt: str) -> ContextBudget:
        return self.track_text(prompt, "system", "system-prompt")

    def get_budget(self) -> ContextBudget:
        total = self.config.total_budget
        used = self._used
        remaining = max(0, total - used)
        raw_percent = used / total * 100 if total > 0 else 100.0
        percent = min(100.0, round(raw_percent, 1))
        status = self._status_for(raw_percent)
        return ContextBudget(
            total_budget=total,
            used=used,
            remaining=remaining,
            percent_used=percent,
            status=status,
            recommended_action=self._action_for(status, remaining),
        )

    def can_afford(self, estimated_tokens: int) -> bool:
        available = self.config.total_budget - self._used - self.config.wrap_up_reserve
        return estimated_tokens <= available

    def should_trigger_phase_boundary(self) -> bool:
        budget = self.get_budget()
        if budget.status in {"critical", "exhausted"}:
            return True
        return budget.remaining < self.config.wrap_up_reserve

    def reset(self, new_budget: int | None = None, phase_id: str | None = None) -> None:
        with self._lock:
            if new_budget is not None and new_budget > 0:
                self.config.total_budget = int(new_budget)
            self._history.clear()
            self._used = 0
            self._last_status = "healthy"
            self._phase_id = phase_id
            self._started_at = self._clock()
        logger.debug("Context budget reset to %d tokens (phase=%s)", self.config.total_budget, phase_id)

    def set_phase(self, phase_id: str | None) -> None:
        self._phase_id = phase_id

    def get_history(self, limit: int | None = None) -> list[TokenUsageEvent]:
        if limit:
            return self._history[-limit:]
        return list(self._history)

    def get_statistics(self) -> UsageStatistics:
        by_type = {usage_type: 0 for usage_type in USAGE_TYPES}
        by_source: dict[str, int] = {}
        peak = 0
        for event in self._history:
            by_type[event.type] = by_type.get(event.type, 0) + event.tokens
            by_source[event.source] = by_source.get(event.source, 0) + event.tokens
            peak = max(peak, event.tokens)
        time_span = max(0.0, self._clock() - self._started_at)
        minutes = time_span / 60
        count = len(self._history)
        return UsageStatistics(
            total_tokens=self._used,
            by_type=by_type,
            by_source=by_source,
            event_count=count,
            average_per_event=round(self._used / count) if count else 0,
            peak_usage=peak,
            time_span=time_span,
            tokens_per_minute=round(self._used / minutes) if minutes > 0 else 0,
            phase_id=self._phase_id,
        )

    def generate_report(self) -> str:
        budget = self.get_budget()
        stats = self.get_statistics()
        lines = [
            "## Context Budget Report",
            "",
            f"**Status:** {budget.status.upper()}",
            f"**Used:** {budget.used:,} / {budget.total_budget:,} tokens ({budget.percent_used}%)",
            f"**Remaining:** {budget.remaining:,} tokens",
            f"**Recommended Action:** {budget.recommended_action}",
            "",
            "### Usage Breakdown",
            "",
            "| Type | Tokens | % of Total |",
            "|------|--------|------------|",
        ]
        for usage_type in USAGE_TYPES:
            tokens = stats.by_type.get(usage_type, 0)
            share = tokens / stats.total_tokens * 100 if stats.total_tokens else 0.0
            lines.append(f"| {usage_type} | {tokens:,} | {share:.1f}% |")
        lines += [
            "",
            "### Statistics",
            "",
            f"- **Events Tracked:** {stats.event_count}",
            f"- **Average per Event:** {stats.average_per_event} tokens",
            f"- **Peak Usage:** {stats.peak_usage} tokens",
            f"- **Rate:** {stats.tokens_per_minute} tokens/minute",
        ]
        return "\n".join(lines)

    def _status_for(self, percent: float) -> BudgetStatus:
        if percent >= 100:
            return "exhausted"
        if percent >= self.config.critical_threshold:
            return "critical"
        if percent >= self.config.warning_threshold:
            return "warning"
        return "healthy"

    def _action_for(self, status: BudgetStatus, remaining: int) -> RecommendedAction:
        if status == "exhausted":
            return "stop"
        if status == "critical":
            return "checkpoint"
        if status == "warning":
            if remaining < self.config.wrap_up_reserve * 2:
                return "checkpoint"
            return "wrap-up"
        return "continue"

    def _check_status(self) -> ContextBudget:
        budget = self.get_budget()
        if budget.status == self._last_status:
            return budget
        self._last_status = budget.status
        logger.info(
            "Context budget status %s at %.1f%% (%d/%d tokens)",
            budget.status,
            budget.percent_used,
            budget.used,
            budget.total_budget,
        )
        self.events.emit("status_change", budget=budget)
        if budget.status != "healthy":
            self.events.emit(budget.status, alert=self._create_alert(budget))
        return budget

    def _create_alert(self, budget: ContextBudget) -> BudgetAlert:
        if budget.status == "warning":
            message = (
                f"Token budget is at {budget.percent_used}%. "
                "Consider completing current task and creating a checkpoint."
            )
        elif budget.status == "critical":
            message = (
                f"Token budget is CRITICAL at {budget.percent_used}%. "
                "Stop new work and save progress immediately."
            )
        elif budget.status == "exhausted":
            message = "Token budget is EXHAUSTED. Must stop and transition to next phase."
        else:
            message = f"Token budget is healthy at {budget.percent_used}%."
        return BudgetAlert(
            level=budget.status,
            message=message,
            budget=budget,
            timestamp=self._clock(),
            suggestions=ALERT_SUGGESTIONS[budget.status],
        )
