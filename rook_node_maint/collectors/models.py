"""
集群客户端数据模型

kubectl / ceph 的原始 JSON 只在客户端内部解析, 引擎只接触这里的类型化结果。
所有模型都是不可变的 (frozen), 可以安全地在后台任务之间传递。
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

HOSTNAME_LABEL = "kubernetes.io/hostname"

# 降级时把原副本数写入该注解, 恢复时读取
ORIGINAL_REPLICAS_ANNOTATION = "rook-node-maint/original-replicas"


class ConditionStatus(str, Enum):
    """Kubernetes 条件状态"""
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class CephHealthStatus(str, Enum):
    """Ceph 集群健康状态"""
    OK = "HEALTH_OK"
    WARN = "HEALTH_WARN"
    ERR = "HEALTH_ERR"
    UNKNOWN = "UNKNOWN"


class FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# === Kubernetes 资源 ===

class NodeInfo(FrozenModel):
    """节点状态"""
    name: str
    ready: bool = False
    ready_status: ConditionStatus = ConditionStatus.UNKNOWN
    unschedulable: bool = False
    kubelet_version: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)

    @property
    def cordoned(self) -> bool:
        return self.unschedulable


class NamespaceInfo(FrozenModel):
    name: str
    phase: str = "Active"


class NodeSelectorRequirement(FrozenModel):
    """nodeAffinity matchExpressions 中的一项"""
    key: str
    operator: str
    values: List[str] = Field(default_factory=list)


class NodeSelectorTerm(FrozenModel):
    match_expressions: List[NodeSelectorRequirement] = Field(default_factory=list)


class DeploymentCondition(FrozenModel):
    type: str
    status: str
    reason: str = ""


class DeploymentInfo(FrozenModel):
    """可伸缩工作负载 (Deployment) 的调度约束与副本状态

    replicas 为 None 表示 spec.replicas 未设置, Kubernetes 默认按 1 处理。
    """
    namespace: str
    name: str
    replicas: Optional[int] = None
    status_replicas: int = 0
    ready_replicas: int = 0
    available_replicas: int = 0
    updated_replicas: int = 0
    node_selector: Dict[str, str] = Field(default_factory=dict)
    required_affinity: List[NodeSelectorTerm] = Field(default_factory=list)
    preferred_affinity: List[NodeSelectorTerm] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)
    conditions: List[DeploymentCondition] = Field(default_factory=list)

    @property
    def desired_replicas(self) -> int:
        return 1 if self.replicas is None else self.replicas

    @property
    def original_replicas(self) -> Optional[int]:
        """降级前记录的副本数 (注解缺失或非法时返回 None)"""
        raw = self.annotations.get(ORIGINAL_REPLICAS_ANNOTATION)
        if raw is None:
            return None
        try:
            value = int(raw)
        except ValueError:
            return None
        return value if value > 0 else None

    def condition(self, condition_type: str) -> Optional[DeploymentCondition]:
        for cond in self.conditions:
            if cond.type == condition_type:
                return cond
        return None


# === Ceph ===

class CephFlags(FrozenModel):
    """ceph osd dump 中的集群标志"""
    flags: List[str] = Field(default_factory=list)

    def has(self, flag: str) -> bool:
        return flag in self.flags

    @property
    def noout(self) -> bool:
        return self.has("noout")


class CephStatus(FrozenModel):
    """ceph status 摘要"""
    health: CephHealthStatus = CephHealthStatus.UNKNOWN
    health_messages: List[str] = Field(default_factory=list)
    osd_count: int = 0
    osds_up: int = 0
    osds_in: int = 0
    mon_count: int = 0
    num_pgs: int = 0
    pg_states: Dict[str, int] = Field(default_factory=dict)
    bytes_used: int = 0
    bytes_total: int = 0
    bytes_avail: int = 0

    @property
    def is_healthy(self) -> bool:
        return self.health == CephHealthStatus.OK

    def health_color(self) -> str:
        if self.health == CephHealthStatus.OK:
            return "green"
        if self.health == CephHealthStatus.ERR:
            return "red"
        return "yellow"


class MonitorStatus(FrozenModel):
    """ceph quorum_status 摘要"""
    monitors: List[str] = Field(default_factory=list)
    quorum: List[str] = Field(default_factory=list)
    leader: str = ""
    election_epoch: int = 0

    @property
    def total(self) -> int:
        return len(self.monitors)

    @property
    def in_quorum(self) -> int:
        return len(self.quorum)

    @property
    def has_quorum(self) -> bool:
        """多数派在仲裁中; 没有 monitor 时视为无仲裁"""
        if self.total == 0:
            return False
        return self.in_quorum > self.total / 2


class OsdInfo(FrozenModel):
    """单个 OSD 的 up/in 状态"""
    id: int
    name: str
    host: str = ""
    up: bool = False
    in_cluster: bool = False
    reweight: float = 0.0

    @property
    def deployment_name(self) -> str:
        return f"rook-ceph-osd-{self.id}"


class OsdTree(FrozenModel):
    osds: List[OsdInfo] = Field(default_factory=list)

    def for_host(self, host: str) -> List[OsdInfo]:
        """返回某个主机下的 OSD (host 为空时返回全部)"""
        if not host:
            return list(self.osds)
        return [osd for osd in self.osds if osd.host == host]
