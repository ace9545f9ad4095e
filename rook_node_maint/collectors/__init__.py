"""
收集器模块 - 集群客户端

提供 kubectl 封装、类型化结果模型和 Ceph 输出解析
"""

from .k8s_client import (
    ClusterClient,
    KubectlWrapper,
    get_k8s_client,
    parse_deployment,
    parse_node,
)
from .ceph import (
    KNOWN_FLAGS,
    parse_flags,
    parse_ceph_status,
    parse_osd_dump_flags,
    parse_osd_tree,
    parse_quorum_status,
)
from .models import (
    HOSTNAME_LABEL,
    ORIGINAL_REPLICAS_ANNOTATION,
    ConditionStatus,
    CephHealthStatus,
    NodeInfo,
    NamespaceInfo,
    NodeSelectorRequirement,
    NodeSelectorTerm,
    DeploymentCondition,
    DeploymentInfo,
    CephFlags,
    CephStatus,
    MonitorStatus,
    OsdInfo,
    OsdTree,
)

__all__ = [
    # K8s 客户端
    "ClusterClient",
    "KubectlWrapper",
    "get_k8s_client",
    "parse_deployment",
    "parse_node",
    # Ceph 解析
    "KNOWN_FLAGS",
    "parse_flags",
    "parse_ceph_status",
    "parse_osd_dump_flags",
    "parse_osd_tree",
    "parse_quorum_status",
    # 模型
    "HOSTNAME_LABEL",
    "ORIGINAL_REPLICAS_ANNOTATION",
    "ConditionStatus",
    "CephHealthStatus",
    "NodeInfo",
    "NamespaceInfo",
    "NodeSelectorRequirement",
    "NodeSelectorTerm",
    "DeploymentCondition",
    "DeploymentInfo",
    "CephFlags",
    "CephStatus",
    "MonitorStatus",
    "OsdInfo",
    "OsdTree",
]
