"""
监控模块 - 多数据源并发轮询与健康聚合
"""

from .models import (
    SourceName,
    DeploymentHealthStatus,
    OverallHealth,
    DeploymentHealth,
    WorkloadsStatus,
    DaemonStatus,
    SourceReading,
    HealthSummary,
    MonitorSnapshot,
)
from .aggregation import (
    aggregate_health,
    determine_deployment_health,
    overall_deployment_status,
    summarize,
)
from .sources import poll_node, poll_storage, poll_workloads, poll_daemons
from .monitor import ClusterMonitor, stop_monitor

__all__ = [
    "SourceName",
    "DeploymentHealthStatus",
    "OverallHealth",
    "DeploymentHealth",
    "WorkloadsStatus",
    "DaemonStatus",
    "SourceReading",
    "HealthSummary",
    "MonitorSnapshot",
    "aggregate_health",
    "determine_deployment_health",
    "overall_deployment_status",
    "summarize",
    "poll_node",
    "poll_storage",
    "poll_workloads",
    "poll_daemons",
    "ClusterMonitor",
    "stop_monitor",
]
