from vibearchitect.phases.complexity import (
    AnalyzerConfig,
    ComplexityAnalyzer,
    ComplexityMetrics,
    ComplexityScore,
)
from vibearchitect.phases.executor import (
    AnalysisResult,
    ExecutorConfig,
    PhaseExecutionError,
    PhaseExecutor,
)
from vibearchitect.phases.generator import GeneratorConfig, PhaseGenerator, generate_summary
from vibearchitect.phases.integration import IntegrationConfig, PhaseIntegration
from vibearchitect.phases.models import (
    Phase,
    PhaseApprovalRequest,
    PhaseApprovalResponse,
    PhaseExecutionState,
    PhaseGenerationResult,
    PhaseResult,
)
from vibearchitect.phases.monitor import ContextBudget, ContextMonitor, MonitorConfig
from vibearchitect.phases.state import PhaseStateError, PhaseStateManager, StateManagerConfig

__all__ = [
    "AnalysisResult",
    "AnalyzerConfig",
    "ComplexityAnalyzer",
    "ComplexityMetrics",
    "ComplexityScore",
    "ContextBudget",
    "ContextMonitor",
    "ExecutorConfig",
    "GeneratorConfig",
    "IntegrationConfig",
    "MonitorConfig",
    "Phase",
    "PhaseApprovalRequest",
    "PhaseApprovalResponse",
    "PhaseExecutionError",
    "PhaseExecutionState",
    "PhaseExecutor",
    "PhaseGenerationResult",
    "PhaseGenerator",
    "PhaseIntegration",
    "PhaseResult",
    "PhaseStateError",
    "PhaseStateManager",
    "StateManagerConfig",
    "generate_summary",
]
