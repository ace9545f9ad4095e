"""
并发维护检测

检查集群是否已有其他节点处于维护中:
1. 安全标志 (noout) 已经设置
2. 其他节点已 cordon, 或其钉住的工作负载已降到 0

仅作提示, 不阻止计划; 任何读取错误都降级为 "无警告" 并记录日志。
"""

import asyncio
import logging
from typing import Dict, List

from ..collectors.k8s_client import ClusterClient
from ..config import MaintenanceConfig
from ..utils.errors import MaintenanceError
from .discovery import matches_prefix, resolve_target_node
from .models import ConflictWarning, NodeInMaintenance

logger = logging.getLogger(__name__)


class ConflictDetector:

    def __init__(self, client: ClusterClient, config: MaintenanceConfig):
        self.client = client
        self.config = config

    async def _flag_set(self) -> bool:
        try:
            flags = await self.client.get_ceph_flags(self.config.namespace)
        except MaintenanceError as e:
            logger.warning("conflict check: unable to read ceph flags: %s", e)
            return False
        return flags.has(self.config.safety_flag)

    async def check_other_nodes_in_maintenance(self, exclude_node: str) -> ConflictWarning:
        """返回除 exclude_node 之外疑似处于维护中的节点"""
        flag_set, nodes_and_deployments = await asyncio.gather(
            self._flag_set(), self._read_cluster()
        )

        if nodes_and_deployments is None:
            return ConflictWarning(safety_flag=self.config.safety_flag,
                                   safety_flag_set=flag_set)

        nodes, deployments = nodes_and_deployments

        # 按节点分组已降到 0 的钉住工作负载
        scaled_by_node: Dict[str, List[str]] = {}
        for dep in deployments:
            if dep.replicas != 0 or not matches_prefix(dep.name, self.config.workload_prefixes):
                continue
            target = resolve_target_node(dep)
            if target:
                scaled_by_node.setdefault(target, []).append(dep.name)

        others = []
        for node in sorted(nodes, key=lambda n: n.name):
            if node.name == exclude_node:
                continue
            scaled = sorted(scaled_by_node.get(node.name, []))
            if node.cordoned or scaled:
                others.append(NodeInMaintenance(
                    name=node.name, cordoned=node.cordoned, scaled_down=tuple(scaled),
                ))

        warning = ConflictWarning(
            safety_flag=self.config.safety_flag,
            safety_flag_set=flag_set,
            other_nodes=tuple(others),
        )
        if warning.has_conflict:
            logger.warning("possible concurrent maintenance: flag_set=%s nodes=%s",
                           flag_set, [n.name for n in others])
        return warning

    async def _read_cluster(self):
        try:
            nodes = await self.client.list_nodes()
            deployments = await self.client.list_deployments(self.config.namespace)
        except MaintenanceError as e:
            logger.warning("conflict check degraded to no warning: %s", e)
            return None
        return nodes, deployments
