from vibearchitect.phases.generator import GeneratorConfig, PhaseGenerator, generate_summary
from vibearchitect.phases.models import Phase

FULL_STACK = "Build a full-stack app with a React frontend, a Node backend API and a Postgres database"
FEATURES = "Add login and user accounts, a search page, email notifications and payment checkout."


def test_three_domains_are_split_by_layers() -> None:
    result = PhaseGenerator().generate_phases(FULL_STACK)

    assert result.strategy_used == "layer-based"
    assert [phase.name for phase in result.phases] == [
        "Foundation",
        "Data Layer",
        "Backend/API",
        "Business Logic",
        "Frontend/UI",
        "Integration",
        "Testing & Polish",
    ]
    assert result.execution_order == [f"phase-{index}" for index in range(1, 8)]
    assert result.phases[0].dependencies == []
    assert result.phases[3].dependencies == ["phase-3"]
    assert result.total_estimated_tokens == sum(phase.estimated_tokens for phase in result.phases)
    assert all(phase.estimated_tokens > 0 for phase in result.phases)


def test_layer_phases_carry_domain_verification() -> None:
    result = PhaseGenerator().generate_phases(FULL_STACK)
    backend = result.phases[2]
    polish = result.phases[-1]

    assert "API endpoints respond correctly" in backend.verification_criteria
    assert "Completed backend/api is functional" in backend.verification_criteria
    assert polish.requirements == ["Implement testing & polish components"]


def test_feature_groups_are_chunked() -> None:
    generator = PhaseGenerator(GeneratorConfig(max_features_per_phase=2))
    result = generator.generate_phases(FEATURES)

    assert result.strategy_used == "feature-based"
    assert [phase.name for phase in result.phases] == [
        "Features: Authentication, User Management",
        "Features: Search & Filter, Notifications",
        "Payments",
    ]
    assert result.phases[0].requirements == ["login", "user", "account"]
    assert result.phases[2].dependencies == ["phase-2"]


def test_incremental_strategy_builds_core_then_polish() -> None:
    generator = PhaseGenerator(GeneratorConfig(preferred_strategy="incremental"))
    result = generator.generate_phases(FEATURES)

    assert result.strategy_used == "incremental"
    assert [phase.name for phase in result.phases] == [
        "Core MVP",
        "Secondary Features",
        "Polish & Optimization",
    ]
    assert "Authentication" in result.phases[0].requirements
    assert "Payments" in result.phases[1].requirements
    assert result.phases[2].dependencies == ["phase-1", "phase-2"]


def test_empty_requirement_still_yields_one_phase() -> None:
    result = PhaseGenerator().generate_phases("")

    assert result.total_phases == 1
    assert result.phases[0].id == "phase-1"
    assert result.phases[0].requirements == ["Implementation"]


def test_oversized_phases_are_reported() -> None:
    generator = PhaseGenerator(GeneratorConfig(max_tokens_per_phase=100))
    result = generator.generate_phases(FULL_STACK)

    assert any("clamped to 100 tokens" in warning for warning in result.warnings)


def test_execution_order_follows_dependencies() -> None:
    phases = [
        Phase(id="ui", name="UI", description="", dependencies=["api"], order=0),
        Phase(id="api", name="API", description="", order=1),
    ]

    assert PhaseGenerator.build_execution_order(phases) == ["api", "ui"]


def test_summary_lists_strategy_and_phases() -> None:
    summary = generate_summary(PhaseGenerator().generate_phases(FULL_STACK))

    assert "**Strategy Used:** layer-based" in summary
    assert "**Total Phases:** 7" in summary
    assert "**1. Foundation**" in summary
