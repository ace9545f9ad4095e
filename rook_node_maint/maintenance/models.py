"""
维护流程数据模型

MaintenancePlan 在确认时一次性捕获, 执行阶段只读取它, 不会重新从集群推导。
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..utils.errors import MaintenanceError, NextAction


class WorkloadCategory(str, Enum):
    """工作负载类别 (由名称前缀推导)"""
    OSD = "osd"
    MON = "mon"
    MGR = "mgr"
    MDS = "mds"
    RGW = "rgw"
    EXPORTER = "exporter"
    CRASHCOLLECTOR = "crashcollector"
    TOOLS = "tools"
    OPERATOR = "operator"
    PREPARE = "prepare"
    CSI = "csi"
    DETECT = "detect"
    MIRROR = "mirror"
    PURGE = "purge"
    REMOVE = "remove"
    NFS = "nfs"
    REALM = "realm"
    STORE = "store"
    ZONE = "zone"
    MOUNT = "mount"
    CLEANUP = "cleanup"
    VOLUMEMODE = "volumemode"
    OTHER = "other"


class MaintenancePhase(str, Enum):
    DOWN = "down"
    UP = "up"


class ManagedWorkload(BaseModel):
    """钉在某个节点上的可伸缩工作负载"""
    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    kind: str = "Deployment"
    target_node: str = ""
    replicas: int = 1
    ready_replicas: int = 0
    category: WorkloadCategory = WorkloadCategory.OTHER
    # 降级前记录在注解中的副本数
    original_replicas: Optional[int] = None

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def pinned(self) -> bool:
        return bool(self.target_node)


class MaintenancePlan(BaseModel):
    """不可变的维护计划快照"""
    model_config = ConfigDict(frozen=True)

    phase: MaintenancePhase
    node: str
    namespace: str
    workloads: Tuple[ManagedWorkload, ...] = ()
    # 上线阶段每个工作负载的恢复副本数 (按名称)
    restore_targets: Dict[str, int] = Field(default_factory=dict)
    operator_name: str
    operator_namespace: str
    # None 表示 operator 不存在
    operator_replicas: Optional[int] = None
    operator_ready_replicas: int = 0
    operator_original_replicas: Optional[int] = None
    safety_flag: str = "noout"
    safety_flag_set: bool = False
    node_cordoned: bool = False
    node_ready: bool = True
    captured_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def workload_names(self) -> List[str]:
        return [w.name for w in self.workloads]

    def restore_target(self, workload: ManagedWorkload) -> int:
        return self.restore_targets.get(workload.name, 1)

    @property
    def operator_present(self) -> bool:
        return self.operator_replicas is not None

    @property
    def operator_restore_target(self) -> int:
        """operator 恢复副本数: 注解记录值 > 当前非零副本数 > 1"""
        if self.operator_original_replicas:
            return self.operator_original_replicas
        if self.operator_replicas:
            return self.operator_replicas
        return 1


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    check: str
    passed: bool
    message: str = ""


class ValidationResults(BaseModel):
    """有序的检查结果列表"""
    results: List[ValidationResult] = Field(default_factory=list)

    def add(self, check: str, passed: bool, message: str = "") -> ValidationResult:
        result = ValidationResult(check=check, passed=passed, message=message)
        self.results.append(result)
        return result

    @property
    def all_passed(self) -> bool:
        return all(r.passed for r in self.results)

    def failed(self) -> List[ValidationResult]:
        return [r for r in self.results if not r.passed]

    def __len__(self) -> int:
        return len(self.results)


class NodeInMaintenance(BaseModel):
    """疑似处于维护中的其他节点"""
    model_config = ConfigDict(frozen=True)

    name: str
    cordoned: bool = False
    scaled_down: Tuple[str, ...] = ()


class ConflictWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    safety_flag: str = "noout"
    safety_flag_set: bool = False
    other_nodes: Tuple[NodeInMaintenance, ...] = ()

    @property
    def has_conflict(self) -> bool:
        return self.safety_flag_set or len(self.other_nodes) > 0

    @property
    def message(self) -> str:
        if not self.has_conflict:
            return ""
        lines = ["WARNING: Another node may be in maintenance!"]
        if self.safety_flag_set:
            lines.append(f"  - {self.safety_flag} flag is already set")
        for node in self.other_nodes:
            parts = []
            if node.cordoned:
                parts.append("cordoned")
            if node.scaled_down:
                parts.append(f"{len(node.scaled_down)} deployment(s) scaled to 0")
            lines.append(f"  - node {node.name}: {', '.join(parts)}")
        return "\n".join(lines)


class ProgressStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class ProgressEvent(BaseModel):
    """执行进度事件"""
    model_config = ConfigDict(frozen=True)

    stage: str
    description: str
    workload: Optional[str] = None
    status: ProgressStatus = ProgressStatus.RUNNING
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PlanReview(BaseModel):
    """提交给操作员审阅的计划"""
    model_config = ConfigDict(frozen=True)

    plan: MaintenancePlan
    validation: ValidationResults
    conflict: ConflictWarning
    nothing_to_do: bool = False


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"
    DECLINED = "declined"
    NOTHING_TO_DO = "nothing_to_do"


class PhaseOutcome(BaseModel):
    """一次执行的最终结果"""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: OutcomeStatus
    phase: MaintenancePhase
    node: str
    failed_stage: Optional[str] = None
    error: Optional[MaintenanceError] = None
    workloads_processed: int = 0
    elapsed_seconds: float = 0.0
    dropped_events: int = 0

    @property
    def next_action(self) -> Optional[NextAction]:
        if self.error is not None:
            return self.error.next_action
        if self.status == OutcomeStatus.CANCELLED:
            return NextAction.RETRY
        return None

    @property
    def succeeded(self) -> bool:
        return self.status in (OutcomeStatus.COMPLETED, OutcomeStatus.NOTHING_TO_DO)
