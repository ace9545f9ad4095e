"""
健康聚合

把节点、存储集群、工作负载、守护进程状态汇总为 Healthy / Degraded / Critical / Unknown,
并附带可读的原因列表。

Critical 条件:
- 节点 NotReady
- Ceph HEALTH_ERR
- 工作负载整体 Unavailable
"""

from typing import List, Optional

from ..collectors.models import CephHealthStatus, CephStatus, DeploymentInfo, NodeInfo
from .models import (
    DaemonStatus,
    DeploymentHealthStatus,
    HealthSummary,
    MonitorSnapshot,
    OverallHealth,
    WorkloadsStatus,
)


def determine_deployment_health(dep: DeploymentInfo) -> DeploymentHealthStatus:
    """由副本计数和条件推导 Deployment 的健康状态"""
    desired = dep.desired_replicas

    if (dep.ready_replicas == desired
            and dep.available_replicas == desired
            and dep.updated_replicas == desired):
        available = dep.condition("Available")
        if available is not None and available.status == "True":
            return DeploymentHealthStatus.READY

    if dep.available_replicas == 0:
        return DeploymentHealthStatus.UNAVAILABLE

    progressing = dep.condition("Progressing")
    if progressing is not None and progressing.status == "True":
        if progressing.reason == "NewReplicaSetAvailable":
            return DeploymentHealthStatus.SCALING
        return DeploymentHealthStatus.PROGRESSING

    if dep.status_replicas != desired:
        return DeploymentHealthStatus.SCALING

    return DeploymentHealthStatus.PROGRESSING


def overall_deployment_status(statuses: List[DeploymentHealthStatus]) -> DeploymentHealthStatus:
    if DeploymentHealthStatus.UNAVAILABLE in statuses:
        return DeploymentHealthStatus.UNAVAILABLE
    if (DeploymentHealthStatus.SCALING in statuses
            or DeploymentHealthStatus.PROGRESSING in statuses):
        return DeploymentHealthStatus.SCALING
    return DeploymentHealthStatus.READY


def _evaluate_node(node: Optional[NodeInfo], reasons: List[str]) -> bool:
    if node is None:
        reasons.append("Node status unavailable")
        return False
    if not node.ready:
        reasons.append("Node not ready")
    elif node.cordoned:
        reasons.append("Node is cordoned")
    return node.ready and not node.cordoned


def _evaluate_storage(ceph: Optional[CephStatus], daemons: Optional[DaemonStatus],
                      reasons: List[str]):
    """返回 (healthy, osds_up, osds_total)"""
    if ceph is None:
        reasons.append("Ceph status unavailable")
        return False, 0, 0

    healthy = ceph.health == CephHealthStatus.OK
    first = ceph.health_messages[0] if ceph.health_messages else ""
    if ceph.health == CephHealthStatus.WARN:
        reasons.append(f"Ceph warnings: {first}" if first else "Ceph cluster has warnings")
    elif ceph.health == CephHealthStatus.ERR:
        reasons.append(f"Ceph errors: {first}" if first else "Ceph cluster has errors")

    if daemons is not None and daemons.osds:
        # 有本节点 OSD 数据时以本节点为准
        total = len(daemons.osds)
        up = daemons.up_and_in
        osds_healthy = up == total
        if not osds_healthy:
            reasons.append(f"{total - up} of {total} OSDs are down or out on this node")
    else:
        total = ceph.osd_count
        up = ceph.osds_up
        osds_healthy = ceph.osds_up == total and ceph.osds_in == total
        if ceph.osds_up < total:
            reasons.append(f"{total - ceph.osds_up} of {total} OSDs are down")
        if ceph.osds_in < total:
            reasons.append(f"{total - ceph.osds_in} of {total} OSDs are out")

    return healthy and osds_healthy, up, total


def _evaluate_workloads(workloads: Optional[WorkloadsStatus], reasons: List[str]) -> bool:
    if workloads is None:
        reasons.append("Deployment status unavailable")
        return False

    total = len(workloads.deployments)
    if workloads.overall == DeploymentHealthStatus.UNAVAILABLE:
        unavailable = workloads.count(DeploymentHealthStatus.UNAVAILABLE)
        reasons.append(f"{unavailable} of {total} deployments unavailable")
    elif workloads.overall == DeploymentHealthStatus.SCALING:
        ready = workloads.count(DeploymentHealthStatus.READY)
        reasons.append(f"Deployments are scaling ({ready} of {total} healthy)")
    elif workloads.overall == DeploymentHealthStatus.PROGRESSING:
        reasons.append("Deployments are progressing")
    return workloads.overall == DeploymentHealthStatus.READY


def aggregate_health(
    node: Optional[NodeInfo],
    ceph: Optional[CephStatus],
    workloads: Optional[WorkloadsStatus],
    daemons: Optional[DaemonStatus] = None,
) -> HealthSummary:
    """汇总健康状态; 所有数据源都没有数据时返回 Unknown"""
    if node is None and ceph is None and workloads is None and daemons is None:
        return HealthSummary(status=OverallHealth.UNKNOWN,
                             reasons=("No monitoring data yet",))

    reasons: List[str] = []
    node_ok = _evaluate_node(node, reasons)
    storage_ok, osds_up, osds_total = _evaluate_storage(ceph, daemons, reasons)
    workloads_ok = _evaluate_workloads(workloads, reasons)

    status = OverallHealth.HEALTHY
    if not (node_ok and storage_ok and workloads_ok):
        critical = (
            (node is not None and not node.ready)
            or (ceph is not None and ceph.health == CephHealthStatus.ERR)
            or (workloads is not None
                and workloads.overall == DeploymentHealthStatus.UNAVAILABLE)
        )
        status = OverallHealth.CRITICAL if critical else OverallHealth.DEGRADED

    return HealthSummary(
        status=status,
        reasons=tuple(reasons),
        node_healthy=node_ok,
        storage_healthy=storage_ok,
        workloads_healthy=workloads_ok,
        osds_up=osds_up,
        osds_total=osds_total,
    )


def summarize(snapshot: MonitorSnapshot) -> HealthSummary:
    """根据快照中各数据源的最新值 (包括已过期的) 计算健康摘要"""
    summary = aggregate_health(
        snapshot.node_status,
        snapshot.storage_status,
        snapshot.workloads_status,
        snapshot.daemon_status,
    )
    stale = [f"{source.value} data is stale ({error})"
             for source, error in snapshot.errors().items()
             if snapshot.reading(source).has_data]
    if not stale:
        return summary
    return summary.model_copy(update={"reasons": summary.reasons + tuple(stale)})
