"""
Rook-Ceph 节点维护工具

按安全顺序下线 / 恢复单个节点上的 Ceph 守护进程, 并提供实时健康监控。
"""

__version__ = "1.0.0"

from .config import MaintenanceConfig, load_config
from .maintenance import PhaseOrchestrator, PhaseExecution, PhaseOutcome
from .monitoring import ClusterMonitor

__all__ = [
    "__version__",
    "MaintenanceConfig",
    "load_config",
    "PhaseOrchestrator",
    "PhaseExecution",
    "PhaseOutcome",
    "ClusterMonitor",
]
