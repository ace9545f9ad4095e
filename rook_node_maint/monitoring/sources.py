"""
监控数据源

每个函数对应一个独立轮询的数据源, 返回不可变结果;
失败统一抛出 MonitorSourceError, 由监控循环记录为该数据源的错误。
"""

import logging
from typing import Optional, Sequence

from ..collectors.k8s_client import ClusterClient
from ..collectors.models import CephStatus, NodeInfo
from ..maintenance.discovery import classify_workload, matches_prefix, resolve_target_node
from ..utils.errors import ClusterClientError, MonitorSourceError
from .aggregation import determine_deployment_health, overall_deployment_status
from .models import DaemonStatus, DeploymentHealth, SourceName, WorkloadsStatus

logger = logging.getLogger(__name__)


async def poll_node(client: ClusterClient, node: str) -> NodeInfo:
    try:
        return await client.get_node(node)
    except ClusterClientError as e:
        raise MonitorSourceError(SourceName.NODE.value, f"failed to get node: {e.message}") from e


async def poll_storage(client: ClusterClient, namespace: str) -> CephStatus:
    try:
        return await client.get_ceph_status(namespace)
    except ClusterClientError as e:
        raise MonitorSourceError(SourceName.STORAGE.value,
                                 f"failed to execute ceph status: {e.message}") from e


async def poll_workloads(client: ClusterClient, namespace: str, node: str,
                         prefixes: Optional[Sequence[str]] = None) -> WorkloadsStatus:
    """钉在节点上的工作负载健康 (包括已降到 0 的)"""
    try:
        deployments = await client.list_deployments(namespace)
    except ClusterClientError as e:
        raise MonitorSourceError(SourceName.WORKLOADS.value,
                                 f"failed to list deployments: {e.message}") from e

    health = []
    for dep in deployments:
        if not matches_prefix(dep.name, prefixes) or resolve_target_node(dep) != node:
            continue
        health.append(DeploymentHealth(
            name=dep.name,
            namespace=dep.namespace,
            category=classify_workload(dep.name),
            desired_replicas=dep.desired_replicas,
            current_replicas=dep.status_replicas,
            ready_replicas=dep.ready_replicas,
            available_replicas=dep.available_replicas,
            updated_replicas=dep.updated_replicas,
            status=determine_deployment_health(dep),
        ))

    health.sort(key=lambda d: (d.category.value, d.name))
    return WorkloadsStatus(
        deployments=tuple(health),
        overall=overall_deployment_status([d.status for d in health]),
    )


async def poll_daemons(client: ClusterClient, namespace: str, node: str,
                       safety_flag: str = "noout") -> DaemonStatus:
    """节点上 OSD 的 up/in 状态; 标志读取失败不影响结果"""
    try:
        tree = await client.get_osd_tree(namespace)
    except ClusterClientError as e:
        raise MonitorSourceError(SourceName.DAEMONS.value,
                                 f"failed to execute ceph osd tree: {e.message}") from e

    try:
        flags = await client.get_ceph_flags(namespace)
        noout = flags.has(safety_flag)
    except ClusterClientError as e:
        logger.debug("unable to read ceph flags: %s", e)
        noout = False

    return DaemonStatus(osds=tuple(tree.for_host(node)), noout_set=noout)
