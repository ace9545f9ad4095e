"""
监控数据模型

每个数据源的读数是不可变的 SourceReading, 成功时整体替换, 失败时只记录错误、
保留上一次成功的值 (标记为 stale)。MonitorSnapshot 由各数据源的最新读数合并而成。
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..collectors.models import CephStatus, NodeInfo, OsdInfo
from ..maintenance.models import WorkloadCategory


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceName(str, Enum):
    """独立轮询的数据源"""
    NODE = "node"
    STORAGE = "storage"
    WORKLOADS = "workloads"
    DAEMONS = "daemons"


class DeploymentHealthStatus(str, Enum):
    READY = "Ready"
    SCALING = "Scaling"
    UNAVAILABLE = "Unavailable"
    PROGRESSING = "Progressing"


class OverallHealth(str, Enum):
    HEALTHY = "Healthy"
    DEGRADED = "Degraded"
    CRITICAL = "Critical"
    UNKNOWN = "Unknown"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class DeploymentHealth(_Frozen):
    name: str
    namespace: str
    category: WorkloadCategory = WorkloadCategory.OTHER
    desired_replicas: int = 0
    current_replicas: int = 0
    ready_replicas: int = 0
    available_replicas: int = 0
    updated_replicas: int = 0
    status: DeploymentHealthStatus = DeploymentHealthStatus.UNAVAILABLE

    def status_color(self) -> str:
        if self.status == DeploymentHealthStatus.READY:
            return "green"
        if self.status == DeploymentHealthStatus.UNAVAILABLE:
            return "red"
        return "yellow"


class WorkloadsStatus(_Frozen):
    """节点上钉住的工作负载健康状态"""
    deployments: Tuple[DeploymentHealth, ...] = ()
    overall: DeploymentHealthStatus = DeploymentHealthStatus.READY

    def by_category(self) -> Dict[WorkloadCategory, List[DeploymentHealth]]:
        grouped: Dict[WorkloadCategory, List[DeploymentHealth]] = {}
        for dep in self.deployments:
            grouped.setdefault(dep.category, []).append(dep)
        return grouped

    def count(self, status: DeploymentHealthStatus) -> int:
        return sum(1 for d in self.deployments if d.status == status)


class DaemonStatus(_Frozen):
    """节点上 OSD 的 up/in 状态"""
    osds: Tuple[OsdInfo, ...] = ()
    noout_set: bool = False

    @property
    def up_and_in(self) -> int:
        return sum(1 for o in self.osds if o.up and o.in_cluster)


class SourceReading(_Frozen):
    """单个数据源的最新读数

    value 为最后一次成功的值; error 非空表示最近一次轮询失败, 此时 value 已过期。
    """
    source: SourceName
    value: Optional[Any] = None
    updated_at: Optional[datetime] = None
    error: Optional[str] = None
    error_at: Optional[datetime] = None

    @property
    def stale(self) -> bool:
        return self.error is not None

    @property
    def has_data(self) -> bool:
        return self.value is not None


class HealthSummary(_Frozen):
    status: OverallHealth = OverallHealth.UNKNOWN
    reasons: Tuple[str, ...] = ()
    node_healthy: bool = False
    storage_healthy: bool = False
    workloads_healthy: bool = False
    osds_up: int = 0
    osds_total: int = 0
    computed_at: datetime = Field(default_factory=utcnow)

    def status_color(self) -> str:
        if self.status == OverallHealth.HEALTHY:
            return "green"
        if self.status == OverallHealth.CRITICAL:
            return "red"
        return "yellow"


class MonitorSnapshot(_Frozen):
    """某一时刻各数据源的合并视图, 每个数据源独立带时间戳"""
    node_name: str
    node: SourceReading = SourceReading(source=SourceName.NODE)
    storage: SourceReading = SourceReading(source=SourceName.STORAGE)
    workloads: SourceReading = SourceReading(source=SourceName.WORKLOADS)
    daemons: SourceReading = SourceReading(source=SourceName.DAEMONS)
    health: HealthSummary = HealthSummary()
    timestamp: datetime = Field(default_factory=utcnow)

    def reading(self, source: SourceName) -> SourceReading:
        return getattr(self, source.value)

    @property
    def node_status(self) -> Optional[NodeInfo]:
        return self.node.value

    @property
    def storage_status(self) -> Optional[CephStatus]:
        return self.storage.value

    @property
    def workloads_status(self) -> Optional[WorkloadsStatus]:
        return self.workloads.value

    @property
    def daemon_status(self) -> Optional[DaemonStatus]:
        return self.daemons.value

    def errors(self) -> Dict[SourceName, str]:
        """当前失败的数据源及错误信息"""
        return {
            source: self.reading(source).error
            for source in SourceName
            if self.reading(source).error is not None
        }
