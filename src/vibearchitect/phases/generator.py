from __future__ import annotations

import logging
import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

from vibearchitect.phases.complexity import ComplexityAnalyzer, ComplexityScore
from vibearchitect.phases.models import Phase, PhaseGenerationResult, SplittingStrategy

logger = logging.getLogger(__name__)

PreferredStrategy = Literal["auto", "feature-based", "layer-based", "incremental"]


@dataclass(frozen=True, slots=True)
class LayerDefinition:
    name: str
    keywords: tuple[str, ...]
    domains: tuple[str, ...]
    order: int


@dataclass(frozen=True, slots=True)
class FeatureGroupDefinition:
    name: str
    patterns: tuple[re.Pattern[str], ...]


@dataclass(slots=True)
class FeatureGroup:
    name: str
    items: list[str] = field(default_factory=list)


LAYER_DEFINITIONS: tuple[LayerDefinition, ...] = (
    LayerDefinition(
        "Foundation",
        ("setup", "config", "initialize", "scaffold", "structure", "types", "interfaces", "models", "schema"),
        ("database", "backend"),
        0,
    ),
    LayerDefinition(
        "Data Layer",
        ("database", "model", "schema", "migration", "entity", "repository", "data"),
        ("database",),
        1,
    ),
    LayerDefinition(
        "Backend/API",
        ("api", "endpoint", "controller", "service", "backend", "server", "route", "handler"),
        ("backend",),
        2,
    ),
    LayerDefinition(
        "Business Logic",
        ("logic", "validation", "process", "workflow", "rule", "calculation"),
        ("backend",),
        3,
    ),
    LayerDefinition(
        "Frontend/UI",
        ("frontend", "ui", "component", "page", "view", "screen", "form", "display"),
        ("frontend",),
        4,
    ),
    LayerDefinition(
        "Integration",
        ("integrate", "connect", "sync", "webhook", "external", "third-party"),
        ("backend", "frontend"),
        5,
    ),
    LayerDefinition(
        "Testing & Polish",
        ("test", "testing", "qa", "fix", "polish", "refine", "optimize"),
        ("frontend", "backend", "database"),
        6,
    ),
)

DEFAULT_LAYERS = ("Foundation", "Backend/API", "Frontend/UI")


def _group(name: str, *patterns: str) -> FeatureGroupDefinition:
    return FeatureGroupDefinition(
        name=name, patterns=tuple(re.compile(item, re.IGNORECASE) for item in patterns)
    )


FEATURE_GROUPS: tuple[FeatureGroupDefinition, ...] = (
    _group("Authentication", "auth", "login", "register", "password", "session", "oauth", "jwt", "token"),
    _group("User Management", "user", "profile", "account", "role", "permission", "admin"),
    _group("Data Management", "crud", "create", "read", "update", "delete", "list", "view", "edit"),
    _group("Search & Filter", "search", "filter", "sort", "query", "find"),
    _group("Notifications", "notif", "email", "alert", "message", "sms", "push"),
    _group(
        "Payments", "payment", "checkout", "cart", "order", "invoice", "billing", "stripe", "paypal"
    ),
    _group("Dashboard & Analytics", "dashboard", "analytics", "report", "chart", "graph", "metric", "stat"),
    _group("Settings & Configuration", "setting", "config", "preference", "option", "customize"),
    _group("File Management", "file", "upload", "download", "image", "document", "media", "storage"),
    _group("Communication", "chat", "comment", "forum", "discussion", "real-?time", "websocket"),
)

CORE_GROUP_MARKERS = ("auth", "user", "data management")
POLISH_GROUP_MARKERS = ("analytics", "dashboard", "notification")

BULLET_PATTERN = re.compile(r"^\s*[-*•]\s*(.+)$", re.MULTILINE)
NUMBERED_PATTERN = re.compile(r"^\s*\d+[.)\s]+(.+)$", re.MULTILINE)
SENTENCE_SPLIT_PATTERN = re.compile(r"[.\n]")


@dataclass(slots=True)
class GeneratorConfig:
    max_tokens_per_phase: int = 30000
    min_features_per_phase: int = 1
    max_features_per_phase: int = 5
    preferred_strategy: PreferredStrategy = "auto"
    include_verification: bool = True


class PhaseGenerator:
    def __init__(
        self,
        config: GeneratorConfig | None = None,
        analyzer: ComplexityAnalyzer | None = None,
    ) -> None:
        self.config = config or GeneratorConfig()
        self.analyzer = analyzer or ComplexityAnalyzer()

    def generate_phases(
        self, requirement: str, complexity_score: ComplexityScore | None = None
    ) -> PhaseGenerationResult:
        score = complexity_score or self.analyzer.analyze(requirement)
        strategy = self.determine_strategy(requirement, score)
        warnings: list[str] = []

        if strategy == "layer-based":
            phases = self.split_by_layers(requirement, score)
        elif strategy == "incremental":
            phases = self.split_incremental(requirement, score)
        else:
            phases = self.split_by_features(requirement, score)

        if phases:
            warnings.extend(self.balance_phase_tokens(phases, score))
        else:
            phases = [self.create_single_phase(requirement, score)]

        self.calculate_dependencies(phases)
        if self.config.include_verification:
            for phase in phases:
                if not phase.verification_criteria:
                    phase.verification_criteria = self.generate_verification_criteria(phase)

        execution_order = self.build_execution_order(phases)
        total = sum(phase.estimated_tokens for phase in phases)
        logger.debug(
            "Generated %d phase(s) with %s strategy (~%d tokens)", len(phases), strategy, total
        )
        return PhaseGenerationResult(
            phases=phases,
            strategy_used=strategy,
            complexity_score=score,
            total_estimated_tokens=total,
            execution_order=execution_order,
            warnings=warnings,
        )

    def determine_strategy(self, requirement: str, score: ComplexityScore) -> SplittingStrategy:
        if self.config.preferred_strategy != "auto":
            return self.config.preferred_strategy
        text = requirement.lower()
        if len(score.metrics.technical_domains) >= 3:
            return "layer-based"
        if any(marker in text for marker in ("full-stack", "full stack", "end-to-end", "end to end")):
            return "layer-based"
        if score.level == "EXTREME":
            return "incremental"
        return "feature-based"

    def split_by_features(self, requirement: str, score: ComplexityScore) -> list[Phase]:
        groups = self.extract_feature_groups(requirement)
        chunks = self.chunk_features(groups, self.config.max_features_per_phase)
        divisor = max(score.suggested_phase_count or 2, 2)
        phases: list[Phase] = []
        for index, chunk in enumerate(chunks):
            names = [group.name for group in chunk]
            items = [item for group in chunk for item in group.items]
            phases.append(
                Phase(
                    id=f"phase-{index + 1}",
                    name=names[0] if len(names) == 1 else f"Features: {', '.join(names)}",
                    description=f"Implement {', '.join(names).lower()} functionality.",
                    requirements=items or list(names),
                    deliverables=[f"Working {name.lower()}" for name in names],
                    estimated_tokens=score.estimated_tokens // divisor,
                    dependencies=[f"phase-{index}"] if index > 0 else [],
                    order=index,
                    domains=list(score.metrics.technical_domains),
                )
            )
        return phases

    def split_by_layers(self, requirement: str, score: ComplexityScore) -> list[Phase]:
        text = requirement.lower()
        domains = set(score.metrics.technical_domains)
        layers = [
            layer
            for layer in LAYER_DEFINITIONS
            if any(keyword in text for keyword in layer.keywords)
            or any(domain in domains for domain in layer.domains)
        ]
        if not layers:
            layers = [layer for layer in LAYER_DEFINITIONS if layer.name in DEFAULT_LAYERS]
        layers.sort(key=lambda layer: layer.order)

        divisor = max(score.suggested_phase_count or 3, 3)
        phases: list[Phase] = []
        for index, layer in enumerate(layers):
            phases.append(
                Phase(
                    id=f"phase-{index + 1}",
                    name=layer.name,
                    description=f"Implement the {layer.name.lower()} components of the system.",
                    requirements=self._layer_requirements(requirement, layer),
                    deliverables=[f"Completed {layer.name.lower()}", f"{layer.name} tests passing"],
                    estimated_tokens=score.estimated_tokens // divisor,
                    dependencies=[f"phase-{index}"] if index > 0 else [],
                    order=index,
                    domains=list(layer.domains),
                    risk_factors=[
                        risk
                        for risk in score.metrics.risk_factors
                        if any(domain in risk.lower() for domain in layer.domains)
                    ],
                )
            )
        return phases

    def split_incremental(self, requirement: str, score: ComplexityScore) -> list[Phase]:
        core: list[str] = []
        secondary: list[str] = []
        polish: list[str] = []
        for group in self.extract_feature_groups(requirement):
            name = group.name.lower()
            if any(marker in name for marker in CORE_GROUP_MARKERS):
                core.extend([*group.items, group.name])
            elif any(marker in name for marker in POLISH_GROUP_MARKERS):
                polish.extend([*group.items, group.name])
            else:
                secondary.extend([*group.items, group.name])

        risks = score.metrics.risk_factors
        domains = list(score.metrics.technical_domains)
        total = score.estimated_tokens
        phases: list[Phase] = []

        def _append(**fields: object) -> None:
            index = len(phases)
            phases.append(
                Phase(
                    id=f"phase-{index + 1}",
                    dependencies=[phase.id for phase in phases],
                    order=index,
                    **fields,  # type: ignore[arg-type]
                )
            )

        if core:
            _append(
                name="Core MVP",
                description="Implement the essential core functionality that forms the foundation of the system.",
                requirements=core,
                deliverables=["Working core functionality", "Basic data flow established"],
                estimated_tokens=math.floor(total * 0.4),
                domains=domains[:2],
                risk_factors=[r for r in risks if "security" in r or "migration" in r],
            )
        if secondary:
            _append(
                name="Secondary Features",
                description="Add secondary features that enhance the core functionality.",
                requirements=secondary,
                deliverables=["Enhanced functionality", "Additional features working"],
                estimated_tokens=math.floor(total * 0.35),
                domains=list(domains),
                risk_factors=[r for r in risks if "integration" in r],
            )
        if polish or any("performance" in risk for risk in risks):
            _append(
                name="Polish & Optimization",
                description="Add analytics, optimize performance, and polish the user experience.",
                requirements=polish or ["Performance optimization", "Final polish"],
                deliverables=["Optimized performance", "Complete feature set", "Production-ready code"],
                estimated_tokens=math.floor(total * 0.25),
                domains=list(domains),
                risk_factors=[r for r in risks if "performance" in r or "testing" in r],
            )
        return phases

    @staticmethod
    def extract_feature_groups(requirement: str) -> list[FeatureGroup]:
        text = requirement.lower()
        groups: list[FeatureGroup] = []
        for definition in FEATURE_GROUPS:
            items: list[str] = []
            for pattern in definition.patterns:
                match = pattern.search(text)
                if match and match.group(0) not in items:
                    items.append(match.group(0))
            if items:
                groups.append(FeatureGroup(definition.name, items))

        if not groups:
            items = [
                match.group(0).strip()
                for pattern in (BULLET_PATTERN, NUMBERED_PATTERN)
                for match in pattern.finditer(requirement)
            ]
            if items:
                groups.append(FeatureGroup("General Features", items))
            else:
                groups.append(
                    FeatureGroup("Implementation", [requirement[:100]] if requirement.strip() else [])
                )
        return groups

    @staticmethod
    def chunk_features(groups: Sequence[FeatureGroup], max_per_phase: int) -> list[list[FeatureGroup]]:
        size = max(1, max_per_phase)
        return [list(groups[start : start + size]) for start in range(0, len(groups), size)]

    @staticmethod
    def _layer_requirements(requirement: str, layer: LayerDefinition) -> list[str]:
        lines = [line.strip() for line in SENTENCE_SPLIT_PATTERN.split(requirement)]
        matches = [
            line
            for line in lines
            if line and any(keyword in line.lower() for keyword in layer.keywords)
        ]
        return matches or [f"Implement {layer.name.lower()} components"]

    @staticmethod
    def create_single_phase(requirement: str, score: ComplexityScore) -> Phase:
        return Phase(
            id="phase-1",
            name="Implementation",
            description="Complete implementation of the requirement.",
            requirements=[requirement] if requirement.strip() else ["Complete the requested change"],
            deliverables=["Working implementation", "Tests passing"],
            verification_criteria=["Code compiles without errors", "Basic functionality works"],
            estimated_tokens=score.estimated_tokens,
            domains=list(score.metrics.technical_domains),
            risk_factors=list(score.metrics.risk_factors),
        )

    def balance_phase_tokens(self, phases: list[Phase], score: ComplexityScore) -> list[str]:
        warnings: list[str] = []
        ceiling = self.config.max_tokens_per_phase
        for phase in phases:
            if phase.estimated_tokens > ceiling:
                warnings.append(
                    f"{phase.id} estimate {phase.estimated_tokens} clamped to {ceiling} tokens"
                )
                phase.estimated_tokens = ceiling

        target = score.estimated_tokens
        current = sum(phase.estimated_tokens for phase in phases)
        if current > 0 and abs(current - target) > target * 0.2:
            factor = target / current
            for phase in phases:
                phase.estimated_tokens = math.floor(phase.estimated_tokens * factor)
            warnings.append(f"Phase estimates rescaled by {factor:.2f} to match {target} tokens")
        return warnings

    @staticmethod
    def calculate_dependencies(phases: list[Phase]) -> None:
        for index, phase in enumerate(phases):
            if not phase.dependencies and index > 0:
                phase.dependencies = [phases[index - 1].id]
            phase.order = index

    @staticmethod
    def build_execution_order(phases: list[Phase]) -> list[str]:
        by_id = {phase.id: phase for phase in phases}
        visited: set[str] = set()
        order: list[str] = []

        def _visit(phase_id: str) -> None:
            if phase_id in visited or phase_id not in by_id:
                return
            visited.add(phase_id)
            for dependency in by_id[phase_id].dependencies:
                _visit(dependency)
            order.append(phase_id)

        for phase in sorted(phases, key=lambda item: item.order):
            _visit(phase.id)
        return order

    @staticmethod
    def generate_verification_criteria(phase: Phase) -> list[str]:
        criteria = ["Code compiles/transpiles without errors"]
        if "frontend" in phase.domains:
            criteria += ["UI components render correctly", "No console errors in browser"]
        if "backend" in phase.domains:
            criteria += ["API endpoints respond correctly", "No server errors in logs"]
        if "database" in phase.domains:
            criteria += ["Database migrations run successfully", "Data integrity maintained"]
        criteria += [f"{deliverable} is functional" for deliverable in phase.deliverables]
        if "security-concerns" in phase.risk_factors:
            criteria.append("Security measures implemented and tested")
        if "performance-optimization" in phase.risk_factors:
            criteria.append("Performance meets acceptable thresholds")
        return list(dict.fromkeys(criteria))


def generate_summary(result: PhaseGenerationResult) -> str:
    score = result.complexity_score
    lines = [
        "## Phase Generation Summary",
        "",
        f"**Strategy Used:** {result.strategy_used}",
        f"**Complexity Level:** {score.level} (Score: {score.score}/100)",
        f"**Total Phases:** {result.total_phases}",
        "",
        "### Phases Overview",
        "",
    ]
    for index, phase in enumerate(result.phases, start=1):
        lines.append(f"**{index}. {phase.name}**")
        lines.append(f"   - {phase.description}")
        lines.append(f"   - Estimated tokens: ~{phase.estimated_tokens:,}")
        lines.append(f"   - Deliverables: {', '.join(phase.deliverables)}")
        lines.append("")
    if result.warnings:
        lines.append("### Warnings")
        lines.append("")
        lines.extend(f"- {warning}" for warning in result.warnings)
    return "\n".join(lines).rstrip() + "\n"
