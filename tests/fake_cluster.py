"""
内存版集群客户端 (实现 ClusterClient 协议)

- 记录每一次变更调用 (mutations) 与每一次调用 (calls)
- fail() 按方法 / 资源名注入失败, 可限制次数
- 扩缩容立即生效: ready 副本数直接等于目标副本数 (auto_ready=False 时保持不变)
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

from rook_node_maint.collectors.models import (
    HOSTNAME_LABEL,
    CephFlags,
    CephHealthStatus,
    CephStatus,
    DeploymentCondition,
    DeploymentInfo,
    MonitorStatus,
    NamespaceInfo,
    NodeInfo,
    NodeSelectorRequirement,
    NodeSelectorTerm,
    OsdInfo,
    OsdTree,
)
from rook_node_maint.config import MaintenanceConfig, TimeoutConfig
from rook_node_maint.utils.errors import ClusterClientError, ResourceNotFoundError

NAMESPACE = "rook-ceph"


def _conditions(ready: int) -> List[DeploymentCondition]:
    if ready > 0:
        return [
            DeploymentCondition(type="Available", status="True", reason="MinimumReplicasAvailable"),
            DeploymentCondition(type="Progressing", status="True", reason="NewReplicaSetAvailable"),
        ]
    return [DeploymentCondition(type="Available", status="False", reason="MinimumReplicasUnavailable")]


class FakeCluster:
    """测试用集群"""

    def __init__(self):
        self.nodes: Dict[str, NodeInfo] = {}
        self.namespaces = {NAMESPACE}
        self.deployments: Dict[Tuple[str, str], DeploymentInfo] = {}
        self.flags: List[str] = []
        self.monitors: List[str] = ["a", "b", "c"]
        # 大于 0 时 get_monitor_status 先返回无仲裁, 每次调用减一
        self.quorum_pending = 0
        self.ceph_health = CephHealthStatus.OK
        self.health_messages: List[str] = []
        self.osds: List[OsdInfo] = []
        self.denied: set = set()
        self.auto_ready = True

        self.mutations: List[tuple] = []
        self.calls: List[tuple] = []
        self.after_mutation: Optional[Callable[[tuple], None]] = None
        self._failures: List[Dict[str, Any]] = []

    # === 构造 ===

    def add_node(self, name: str, ready: bool = True, cordoned: bool = False) -> NodeInfo:
        node = NodeInfo(name=name, ready=ready, unschedulable=cordoned,
                        labels={HOSTNAME_LABEL: name})
        self.nodes[name] = node
        return node

    def add_deployment(
        self,
        name: str,
        node: Optional[str] = None,
        replicas: Optional[int] = 1,
        namespace: str = NAMESPACE,
        annotations: Optional[Dict[str, str]] = None,
        affinity_node: Optional[str] = None,
        ready: Optional[int] = None,
    ) -> DeploymentInfo:
        desired = 1 if replicas is None else replicas
        ready = desired if ready is None else ready
        required = []
        if affinity_node:
            required = [NodeSelectorTerm(match_expressions=[
                NodeSelectorRequirement(key=HOSTNAME_LABEL, operator="In",
                                        values=[affinity_node]),
            ])]
        dep = DeploymentInfo(
            namespace=namespace,
            name=name,
            replicas=replicas,
            status_replicas=desired,
            ready_replicas=ready,
            available_replicas=ready,
            updated_replicas=desired,
            node_selector={HOSTNAME_LABEL: node} if node else {},
            required_affinity=required,
            annotations=annotations or {},
            conditions=_conditions(ready),
        )
        self.deployments[(namespace, name)] = dep
        return dep

    def remove_deployment(self, name: str, namespace: str = NAMESPACE):
        del self.deployments[(namespace, name)]

    def deployment(self, name: str, namespace: str = NAMESPACE) -> DeploymentInfo:
        return self.deployments[(namespace, name)]

    def fail(self, method: str, error: Optional[Exception] = None,
             times: Optional[int] = None, name: Optional[str] = None):
        """注入失败: times 为 None 时一直失败; name 限定资源名"""
        self._failures.append({
            "method": method,
            "error": error or ClusterClientError(f"injected {method} failure"),
            "times": times,
            "name": name,
        })

    def clear_failures(self):
        self._failures = []

    def scaled(self) -> List[Tuple[str, int]]:
        """按调用顺序返回 (deployment, replicas)"""
        return [(m[1], m[2]) for m in self.mutations if m[0] == "scale"]

    # === 内部 ===

    def _check(self, method: str, name: Optional[str] = None):
        self.calls.append((method, name))
        for failure in self._failures:
            if failure["method"] != method:
                continue
            if failure["name"] is not None and failure["name"] != name:
                continue
            if failure["times"] is not None:
                if failure["times"] <= 0:
                    continue
                failure["times"] -= 1
            raise failure["error"]

    def _record(self, mutation: tuple):
        self.mutations.append(mutation)
        if self.after_mutation is not None:
            self.after_mutation(mutation)

    def _get_deployment(self, namespace: str, name: str) -> DeploymentInfo:
        try:
            return self.deployments[(namespace, name)]
        except KeyError:
            raise ResourceNotFoundError(f'deployments.apps "{name}" not found',
                                        "deployment", name) from None

    # === ClusterClient ===

    async def get_node(self, name: str) -> NodeInfo:
        self._check("get_node", name)
        if name not in self.nodes:
            raise ResourceNotFoundError(f'nodes "{name}" not found', "node", name)
        return self.nodes[name]

    async def list_nodes(self) -> List[NodeInfo]:
        self._check("list_nodes")
        return list(self.nodes.values())

    async def get_namespace(self, name: str) -> NamespaceInfo:
        self._check("get_namespace", name)
        if name not in self.namespaces:
            raise ResourceNotFoundError(f'namespaces "{name}" not found', "namespace", name)
        return NamespaceInfo(name=name)

    async def list_deployments(self, namespace: str) -> List[DeploymentInfo]:
        self._check("list_deployments", namespace)
        return [d for (ns, _), d in self.deployments.items() if ns == namespace]

    async def get_deployment(self, namespace: str, name: str) -> DeploymentInfo:
        self._check("get_deployment", name)
        return self._get_deployment(namespace, name)

    async def scale_deployment(self, namespace, name, replicas, annotations=None) -> None:
        self._check("scale_deployment", name)
        dep = self._get_deployment(namespace, name)

        merged = dict(dep.annotations)
        for key, value in (annotations or {}).items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value

        ready = replicas if self.auto_ready else dep.ready_replicas
        self.deployments[(namespace, name)] = dep.model_copy(update={
            "replicas": replicas,
            "status_replicas": replicas,
            "ready_replicas": ready,
            "available_replicas": ready,
            "updated_replicas": replicas,
            "annotations": merged,
            "conditions": _conditions(ready),
        })
        self._record(("scale", name, replicas, annotations))

    async def set_node_unschedulable(self, name: str, unschedulable: bool) -> None:
        self._check("set_node_unschedulable", name)
        node = self.nodes[name]
        self.nodes[name] = node.model_copy(update={"unschedulable": unschedulable})
        self._record(("cordon" if unschedulable else "uncordon", name))

    async def get_ceph_flags(self, namespace: str) -> CephFlags:
        self._check("get_ceph_flags")
        return CephFlags(flags=list(self.flags))

    async def set_ceph_flag(self, namespace: str, flag: str) -> None:
        self._check("set_ceph_flag", flag)
        if flag not in self.flags:
            self.flags.append(flag)
        self._record(("set_flag", flag))

    async def unset_ceph_flag(self, namespace: str, flag: str) -> None:
        self._check("unset_ceph_flag", flag)
        if flag in self.flags:
            self.flags.remove(flag)
        self._record(("unset_flag", flag))

    async def get_ceph_status(self, namespace: str) -> CephStatus:
        self._check("get_ceph_status")
        up = sum(1 for o in self.osds if o.up)
        in_ = sum(1 for o in self.osds if o.in_cluster)
        return CephStatus(
            health=self.ceph_health,
            health_messages=list(self.health_messages),
            osd_count=len(self.osds),
            osds_up=up,
            osds_in=in_,
            mon_count=len(self.monitors),
        )

    async def get_monitor_status(self, namespace: str) -> MonitorStatus:
        self._check("get_monitor_status")
        if self.quorum_pending > 0:
            self.quorum_pending -= 1
            return MonitorStatus(monitors=list(self.monitors), quorum=[])
        return MonitorStatus(monitors=list(self.monitors), quorum=list(self.monitors),
                             leader=self.monitors[0] if self.monitors else "")

    async def get_osd_tree(self, namespace: str) -> OsdTree:
        self._check("get_osd_tree")
        return OsdTree(osds=list(self.osds))

    async def can_i(self, verb, resource, namespace=None, subresource=None) -> bool:
        target = f"{resource}/{subresource}" if subresource else resource
        self._check("can_i", f"{verb} {target}")
        return f"{verb} {target}" not in self.denied


def make_cluster() -> FakeCluster:
    """三节点集群, worker-01 上钉住 5 个工作负载

    worker-01: rook-ceph-osd-0, rook-ceph-osd-1, rook-ceph-mon-a,
               rook-ceph-exporter-worker-01, rook-ceph-crashcollector-worker-01
    worker-02: rook-ceph-osd-2, rook-ceph-mon-b
    """
    cluster = FakeCluster()
    for name in ("worker-01", "worker-02", "worker-03"):
        cluster.add_node(name)

    cluster.add_deployment("rook-ceph-operator")
    cluster.add_deployment("rook-ceph-tools")

    cluster.add_deployment("rook-ceph-crashcollector-worker-01", node="worker-01")
    cluster.add_deployment("rook-ceph-exporter-worker-01", node="worker-01")
    cluster.add_deployment("rook-ceph-mon-a", node="worker-01")
    cluster.add_deployment("rook-ceph-osd-1", node="worker-01")
    cluster.add_deployment("rook-ceph-osd-0", affinity_node="worker-01")

    cluster.add_deployment("rook-ceph-osd-2", node="worker-02")
    cluster.add_deployment("rook-ceph-mon-b", node="worker-02")

    cluster.osds = [
        OsdInfo(id=0, name="osd.0", host="worker-01", up=True, in_cluster=True, reweight=1.0),
        OsdInfo(id=1, name="osd.1", host="worker-01", up=True, in_cluster=True, reweight=1.0),
        OsdInfo(id=2, name="osd.2", host="worker-02", up=True, in_cluster=True, reweight=1.0),
    ]
    return cluster


def fast_config(**overrides):
    """轮询间隔很短的测试配置"""
    timeouts = TimeoutConfig(poll_interval_seconds=0.01, wait_deployment_seconds=1)
    return MaintenanceConfig(timeouts=timeouts, **overrides)
