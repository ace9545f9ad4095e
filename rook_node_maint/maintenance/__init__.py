"""
维护引擎 - 发现、排序、预检、冲突检测与阶段编排
"""

from .models import (
    WorkloadCategory,
    MaintenancePhase,
    ManagedWorkload,
    MaintenancePlan,
    ValidationResult,
    ValidationResults,
    NodeInMaintenance,
    ConflictWarning,
    ProgressStatus,
    ProgressEvent,
    PlanReview,
    OutcomeStatus,
    PhaseOutcome,
)
from .state import DownPhaseState, UpPhaseState, PhaseStateMachine
from .discovery import (
    classify_workload,
    resolve_target_node,
    list_pinned,
    list_scaled_down,
)
from .ordering import order_for_down, order_for_up
from .validator import PreflightValidator
from .conflicts import ConflictDetector
from .context import ExecutionContext, ProgressReporter
from .orchestrator import PhaseOrchestrator, PhaseExecution

__all__ = [
    # 模型
    "WorkloadCategory",
    "MaintenancePhase",
    "ManagedWorkload",
    "MaintenancePlan",
    "ValidationResult",
    "ValidationResults",
    "NodeInMaintenance",
    "ConflictWarning",
    "ProgressStatus",
    "ProgressEvent",
    "PlanReview",
    "OutcomeStatus",
    "PhaseOutcome",
    # 状态
    "DownPhaseState",
    "UpPhaseState",
    "PhaseStateMachine",
    # 发现与排序
    "classify_workload",
    "resolve_target_node",
    "list_pinned",
    "list_scaled_down",
    "order_for_down",
    "order_for_up",
    # 校验与冲突
    "PreflightValidator",
    "ConflictDetector",
    # 执行
    "ExecutionContext",
    "ProgressReporter",
    "PhaseOrchestrator",
    "PhaseExecution",
]
