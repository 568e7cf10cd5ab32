from __future__ import annotations

import math
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

ComplexityLevel = Literal["LOW", "MEDIUM", "HIGH", "EXTREME"]
Recommendation = Literal["PROCEED", "SPLIT_PHASES", "REQUIRE_CLARIFICATION"]
TokenEstimator = Callable[[str], int]


@dataclass(frozen=True, slots=True)
class WeightedPattern:
    label: str
    pattern: re.Pattern[str]
    weight: int = 0


def _weighted(label: str, regex: str, weight: int = 0) -> WeightedPattern:
    return WeightedPattern(label=label, pattern=re.compile(regex, re.IGNORECASE), weight=weight)


SCOPE_INDICATORS: tuple[WeightedPattern, ...] = (
    _weighted("full-stack", r"\b(full[- ]?stack|end[- ]?to[- ]?end)\b", 15),
    _weighted("complete-app", r"\b(complete|entire|whole)\s+(app|application|system|platform)\b", 15),
    _weighted("from-scratch", r"\b(from\s+scratch|ground\s+up|greenfield)\b", 12),
    _weighted("microservices", r"\b(microservices?|distributed)\b", 10),
    _weighted("auth-system", r"\b(authentication|auth)\s*(and|&|\+|,)?\s*(authorization|authz)\b", 8),
    _weighted("crud-operations", r"\b(crud|create,?\s*read,?\s*update,?\s*delete)\b", 5),
    _weighted("api-layer", r"\b(api|rest|graphql)\s*(endpoints?|server|layer)\b", 6),
    _weighted("dashboard", r"\b(dashboard|admin\s*panel|control\s*panel)\b", 7),
    _weighted("real-time", r"\b(real[- ]?time|websocket|live\s+update)\b", 8),
    _weighted("multi-platform", r"\b(mobile|responsive|cross[- ]?platform)\b", 6),
)

RISK_FACTORS: tuple[WeightedPattern, ...] = (
    _weighted("database-migration", r"\b(migration|migrate|upgrade)\s*(database|db|schema|data)\b", 10),
    _weighted("major-refactor", r"\b(refactor|rewrite|restructure)\b", 8),
    _weighted("security-concerns", r"\b(security|encrypt|ssl|https|oauth|jwt)\b", 6),
    _weighted("performance-optimization", r"\b(performance|optimize|scale|caching)\b", 5),
    _weighted("testing-requirements", r"\b(test|testing|tdd|coverage|e2e|integration\s*test)\b", 4),
    _weighted("deployment-infra", r"\b(deploy|ci/cd|docker|kubernetes|aws|azure|gcp)\b", 6),
    _weighted("external-integrations", r"\b(third[- ]?party|external\s*api|integration)\b", 5),
    _weighted("legacy-concerns", r"\b(legacy|backward[- ]?compatible|deprecat)", 7),
    _weighted("concurrency", r"\b(concurrent|parallel|async|thread)\b", 5),
    _weighted("internationalization", r"\b(i18n|internationali[sz]ation|locali[sz]ation|l10n)\b", 4),
)

TECHNICAL_DOMAINS: tuple[WeightedPattern, ...] = (
    _weighted("frontend", r"\b(frontend|front[- ]?end|ui|ux|react|vue|angular|svelte)\b"),
    _weighted("backend", r"\b(backend|back[- ]?end|server|api|node|express|fastify)\b"),
    _weighted("database", r"\b(database|db|sql|nosql|postgres|mysql|mongo|redis)\b"),
    _weighted("mobile", r"\b(mobile|ios|android|react[- ]?native|flutter)\b"),
    _weighted("devops", r"\b(devops|infrastructure|cloud|aws|azure|gcp)\b"),
    _weighted("ml-ai", r"\b(machine\s*learning|ml|ai|neural|model)\b"),
    _weighted("blockchain", r"\b(blockchain|web3|smart\s*contract|ethereum)\b"),
)

# Each pattern captures the feature phrase in the ``feature`` group.
FEATURE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\b(?:create|build|implement|add|develop|design)\s+(?:a\s+)?(?P<feature>[\w\s]+?)(?:\.|,|$|\band\b)",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(?P<feature>[\w\s]+?)\s+(?:feature|functionality|module|component|page|screen|view)\b",
        re.IGNORECASE,
    ),
    re.compile(r"^\s*[-*•]\s*(?P<feature>.+)$", re.MULTILINE),
    re.compile(r"^\s*\d+[.)\s]+(?P<feature>.+)$", re.MULTILINE),
    re.compile(r"should\s+(?:be\s+able\s+to\s+)?(?P<feature>[\w\s]+?)(?:\.|,|$)", re.IGNORECASE),
    re.compile(r"(?:needs?|must|shall)\s+(?:to\s+)?(?P<feature>[\w\s]+?)(?:\.|,|$)", re.IGNORECASE),
)

LISTED_ITEMS_PATTERN = re.compile(
    r"\b(\w+)(?:\s*,\s*|\s+and\s+)(\w+)(?:\s*,\s*|\s+and\s+)(\w+)\b", re.IGNORECASE
)

NOISE_WORDS = frozenset(
    {
        "the", "this", "that", "with", "from", "they", "have", "been",
        "some", "them", "these", "those", "then", "than", "into", "also",
        "just", "only", "such", "like", "well", "back", "even", "still",
        "able", "following", "something", "anything", "everything",
    }
)


def estimate_text_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


@dataclass(slots=True)
class AnalyzerConfig:
    tokens_per_phase: int = 30000
    low_threshold: int = 20
    medium_threshold: int = 40
    high_threshold: int = 70


@dataclass(frozen=True, slots=True)
class ComplexityMetrics:
    feature_count: int
    estimated_file_count: int
    scope_indicators: tuple[str, ...]
    risk_factors: tuple[str, ...]
    text_length: int
    technical_domains: tuple[str, ...]
    features: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "feature_count": self.feature_count,
            "estimated_file_count": self.estimated_file_count,
            "scope_indicators": list(self.scope_indicators),
            "risk_factors": list(self.risk_factors),
            "text_length": self.text_length,
            "technical_domains": list(self.technical_domains),
            "features": list(self.features),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComplexityMetrics:
        return cls(
            feature_count=int(data.get("feature_count", 0)),
            estimated_file_count=int(data.get("estimated_file_count", 1)),
            scope_indicators=tuple(data.get("scope_indicators", [])),
            risk_factors=tuple(data.get("risk_factors", [])),
            text_length=int(data.get("text_length", 0)),
            technical_domains=tuple(data.get("technical_domains", [])),
            features=tuple(data.get("features", [])),
        )


@dataclass(frozen=True, slots=True)
class ComplexityScore:
    level: ComplexityLevel
    score: int
    estimated_tokens: int
    metrics: ComplexityMetrics
    recommendation: Recommendation
    explanation: str = ""
    suggested_phase_count: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "score": self.score,
            "estimated_tokens": self.estimated_tokens,
            "metrics": self.metrics.to_dict(),
            "recommendation": self.recommendation,
            "explanation": self.explanation,
            "suggested_phase_count": self.suggested_phase_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComplexityScore:
        return cls(
            level=data["level"],
            score=int(data["score"]),
            estimated_tokens=int(data["estimated_tokens"]),
            metrics=ComplexityMetrics.from_dict(data.get("metrics", {})),
            recommendation=data["recommendation"],
            explanation=str(data.get("explanation", "")),
            suggested_phase_count=int(data.get("suggested_phase_count", 1)),
        )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ComplexityAnalyzer:
    """Heuristic complexity scoring for natural-language requirements."""

    def __init__(
        self,
        config: AnalyzerConfig | None = None,
        *,
        token_estimator: TokenEstimator = estimate_text_tokens,
    ) -> None:
        self.config = config or AnalyzerConfig()
        self.token_estimator = token_estimator

    def analyze(self, requirement: str, context_files: Sequence[str] | None = None) -> ComplexityScore:
        metrics = self.extract_metrics(requirement, context_files)
        score = self.calculate_score(metrics)
        level = self.determine_level(score)
        estimated_tokens = self.estimate_tokens(requirement, metrics)
        recommendation = self.determine_recommendation(level, estimated_tokens)
        suggested = 1
        if recommendation == "SPLIT_PHASES":
            suggested = max(1, math.ceil(estimated_tokens / self.config.tokens_per_phase))
        return ComplexityScore(
            level=level,
            score=score,
            estimated_tokens=estimated_tokens,
            metrics=metrics,
            recommendation=recommendation,
            explanation=self.generate_explanation(metrics, score, level, recommendation),
            suggested_phase_count=suggested,
        )

    def extract_metrics(
        self, requirement: str, context_files: Sequence[str] | None = None
    ) -> ComplexityMetrics:
        features = self.extract_features(requirement)
        domains = _detect(TECHNICAL_DOMAINS, requirement)
        return ComplexityMetrics(
            feature_count=len(features),
            estimated_file_count=self.estimate_file_count(features, domains, context_files),
            scope_indicators=_detect(SCOPE_INDICATORS, requirement),
            risk_factors=_detect(RISK_FACTORS, requirement),
            text_length=len(requirement),
            technical_domains=domains,
            features=tuple(features),
        )

    @staticmethod
    def extract_features(text: str) -> list[str]:
        features: list[str] = []
        for pattern in FEATURE_PATTERNS:
            for match in pattern.finditer(text):
                feature = (match.group("feature") or "").strip().lower()
                if 3 < len(feature) < 100 and feature not in NOISE_WORDS and feature not in features:
                    features.append(feature)
        if LISTED_ITEMS_PATTERN.search(text) and "multiple-listed-items" not in features:
            features.append("multiple-listed-items")
        return features

    @staticmethod
    def estimate_file_count(
        features: Sequence[str],
        domains: Sequence[str],
        context_files: Sequence[str] | None = None,
    ) -> int:
        estimate = len(features) * 1.5 + len(domains) * 3
        if context_files:
            estimate += min(len(context_files) * 0.1, 10)
        return max(1, min(_round_half_up(estimate), 50))

    @staticmethod
    def calculate_score(metrics: ComplexityMetrics) -> int:
        score = min(metrics.feature_count * 3, 30)
        score += min(metrics.estimated_file_count * 2, 20)
        score += _weight_of(SCOPE_INDICATORS, metrics.scope_indicators)
        score += _weight_of(RISK_FACTORS, metrics.risk_factors)
        score += min(metrics.text_length // 100, 20)
        if len(metrics.technical_domains) > 1:
            score += (len(metrics.technical_domains) - 1) * 3
        return min(score, 100)

    def determine_level(self, score: int) -> ComplexityLevel:
        if score <= self.config.low_threshold:
            return "LOW"
        if score <= self.config.medium_threshold:
            return "MEDIUM"
        if score <= self.config.high_threshold:
            return "HIGH"
        return "EXTREME"

    def estimate_tokens(self, requirement: str, metrics: ComplexityMetrics) -> int:
        tokens = self.token_estimator(requirement)
        tokens += metrics.estimated_file_count * 500
        tokens += metrics.feature_count * 1000
        tokens += len(metrics.technical_domains) * 2000
        tokens += len(metrics.risk_factors) * 1500
        tokens += len(metrics.scope_indicators) * 3000
        return tokens

    def determine_recommendation(self, level: ComplexityLevel, estimated_tokens: int) -> Recommendation:
        if estimated_tokens > self.config.tokens_per_phase * 5:
            return "REQUIRE_CLARIFICATION"
        if level in {"HIGH", "EXTREME"}:
            return "SPLIT_PHASES"
        if estimated_tokens > self.config.tokens_per_phase:
            return "SPLIT_PHASES"
        return "PROCEED"

    @staticmethod
    def generate_explanation(
        metrics: ComplexityMetrics,
        score: int,
        level: ComplexityLevel,
        recommendation: Recommendation,
    ) -> str:
        lines = [
            f"Complexity Score: {score}/100 ({level})",
            "",
            "Analysis found:",
            f"- {metrics.feature_count} distinct feature(s)",
            f"- ~{metrics.estimated_file_count} file(s) estimated",
        ]
        if metrics.scope_indicators:
            lines.append(f"- Scope indicators: {', '.join(metrics.scope_indicators)}")
        if metrics.risk_factors:
            lines.append(f"- Risk factors: {', '.join(metrics.risk_factors)}")
        if metrics.technical_domains:
            lines.append(f"- Technical domains: {', '.join(metrics.technical_domains)}")
        lines.append("")
        if recommendation == "PROCEED":
            lines.append("Recommendation: PROCEED - this requirement fits a single execution.")
        elif recommendation == "SPLIT_PHASES":
            lines.append("Recommendation: SPLIT INTO PHASES - this requirement is too large for one execution.")
        else:
            lines.append("Recommendation: REQUIRE CLARIFICATION - this requirement is too broad, break it down.")
        return "\n".join(lines)


def _detect(catalog: Sequence[WeightedPattern], text: str) -> tuple[str, ...]:
    return tuple(entry.label for entry in catalog if entry.pattern.search(text))


def _weight_of(catalog: Sequence[WeightedPattern], labels: Sequence[str]) -> int:
    weights = {entry.label: entry.weight for entry in catalog}
    return sum(weights.get(label, 0) for label in labels)
