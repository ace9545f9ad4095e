"""
工作负载发现

1. classify_workload - 由名称前缀推导类别 (最长前缀优先, 与遍历顺序无关)
2. resolve_target_node - 由 nodeSelector / 必需的 nodeAffinity 推导目标节点
3. list_pinned / list_scaled_down - 列出钉在某节点上的工作负载

集群读取失败直接向上抛出, 不会被吞掉变成空结果。
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence

from ..collectors.k8s_client import ClusterClient
from ..collectors.models import HOSTNAME_LABEL, DeploymentInfo
from .models import ManagedWorkload, WorkloadCategory

logger = logging.getLogger(__name__)

CLUSTER_PREFIX = "rook-ceph-"

# 名称前缀 → 类别, 前缀不含可选的 "rook-ceph-"
CATEGORY_PREFIXES: Dict[str, WorkloadCategory] = {
    "osd": WorkloadCategory.OSD,
    "mon": WorkloadCategory.MON,
    "mgr": WorkloadCategory.MGR,
    "mds": WorkloadCategory.MDS,
    "rgw": WorkloadCategory.RGW,
    "exporter": WorkloadCategory.EXPORTER,
    "crashcollector": WorkloadCategory.CRASHCOLLECTOR,
    "tools": WorkloadCategory.TOOLS,
    "operator": WorkloadCategory.OPERATOR,
    "osd-prepare": WorkloadCategory.PREPARE,
    "detect-version": WorkloadCategory.DETECT,
    "csi-detect-version": WorkloadCategory.DETECT,
    "filesystem-mirror": WorkloadCategory.MIRROR,
    "mirror": WorkloadCategory.MIRROR,
    "purge-osd": WorkloadCategory.PURGE,
    "remove-mon": WorkloadCategory.REMOVE,
    "nfs": WorkloadCategory.NFS,
    "object-realm": WorkloadCategory.REALM,
    "object-store": WorkloadCategory.STORE,
    "object-zone": WorkloadCategory.ZONE,
    "direct-mount": WorkloadCategory.MOUNT,
    "cleanup": WorkloadCategory.CLEANUP,
    "csi-cephfs-provisioner": WorkloadCategory.CSI,
    "csi-rbd-provisioner": WorkloadCategory.CSI,
    "csi-nfs-provisioner": WorkloadCategory.CSI,
    "csi-addons-controller": WorkloadCategory.CSI,
    "csi-cephfsplugin-provisioner": WorkloadCategory.CSI,
    "csi-rbdplugin-provisioner": WorkloadCategory.CSI,
    "ceph-volumemodechange": WorkloadCategory.VOLUMEMODE,
}

# 最长前缀优先; 等长时按字母序, 保证结果与字典顺序无关
_ORDERED_PREFIXES = sorted(CATEGORY_PREFIXES, key=lambda p: (-len(p), p))


def _has_prefix(name: str, prefix: str) -> bool:
    """前缀必须在 '-' 处结束 (mon 不匹配 monitoring)"""
    return name == prefix or name.startswith(prefix + "-")


def classify_workload(name: str) -> WorkloadCategory:
    """根据名称推导工作负载类别

    "rook-ceph-osd-prepare-node1" 和 "osd-prepare-node1" 都归为 prepare,
    而不是 osd。未识别的名称归为 other。
    """
    bare = name[len(CLUSTER_PREFIX):] if name.startswith(CLUSTER_PREFIX) else name
    for prefix in _ORDERED_PREFIXES:
        if _has_prefix(bare, prefix):
            return CATEGORY_PREFIXES[prefix]
    return WorkloadCategory.OTHER


def resolve_target_node(deployment: DeploymentInfo) -> str:
    """解析工作负载被钉住的节点

    1. nodeSelector 中的 kubernetes.io/hostname 优先
    2. 否则取必需 nodeAffinity 中 hostname In [...] 的第一个值
    3. 其他形式 (仅 preferred / 键不对 / NotIn / 空 values) 返回 ""
    """
    hostname = deployment.node_selector.get(HOSTNAME_LABEL, "")
    if hostname:
        return hostname

    for term in deployment.required_affinity:
        for expr in term.match_expressions:
            if expr.key == HOSTNAME_LABEL and expr.operator == "In" and expr.values:
                return expr.values[0]
    return ""


def matches_prefix(name: str, prefixes: Optional[Sequence[str]]) -> bool:
    """空前缀列表匹配全部名称"""
    if not prefixes:
        return True
    return any(name.startswith(p) for p in prefixes)


def to_managed(deployment: DeploymentInfo, target_node: str) -> ManagedWorkload:
    return ManagedWorkload(
        namespace=deployment.namespace,
        name=deployment.name,
        target_node=target_node,
        replicas=deployment.desired_replicas,
        ready_replicas=deployment.ready_replicas,
        category=classify_workload(deployment.name),
        original_replicas=deployment.original_replicas,
    )


def pinned_to(deployments: Iterable[DeploymentInfo], node: str,
              prefixes: Optional[Sequence[str]] = None) -> List[ManagedWorkload]:
    """从已读取的 Deployment 列表中筛选钉在 node 上的工作负载, 保持原顺序"""
    workloads = []
    for dep in deployments:
        if not matches_prefix(dep.name, prefixes):
            continue
        target = resolve_target_node(dep)
        if target and target == node:
            workloads.append(to_managed(dep, target))
    return workloads


async def list_pinned(client: ClusterClient, namespace: str, node: str,
                      prefixes: Optional[Sequence[str]] = None) -> List[ManagedWorkload]:
    """列出钉在 node 上的工作负载 (副本数按原样读取, 包括 0)"""
    deployments = await client.list_deployments(namespace)
    workloads = pinned_to(deployments, node, prefixes)
    logger.debug("found %d pinned workload(s) on %s", len(workloads), node)
    return workloads


async def list_scaled_down(client: ClusterClient, namespace: str, node: str,
                           prefixes: Optional[Sequence[str]] = None) -> List[ManagedWorkload]:
    """列出钉在 node 上且 spec.replicas 显式为 0 的工作负载

    replicas 未设置时按默认值 1 处理, 不算已降级。
    """
    deployments = await client.list_deployments(namespace)
    scaled = [dep for dep in deployments if dep.replicas == 0]
    workloads = pinned_to(scaled, node, prefixes)
    logger.debug("found %d scaled-down workload(s) on %s", len(workloads), node)
    return workloads
