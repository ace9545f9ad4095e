"""
工具模块
"""

from .errors import (
    MaintenanceError,
    MaintenanceErrorCode,
    NextAction,
    ClusterClientError,
    ResourceNotFoundError,
    PermissionDeniedError,
    TransientClusterError,
    ConfigurationError,
    DiscoveryError,
    ValidationFailure,
    MissingWorkloadsError,
    ExecutionError,
    WaitTimeoutError,
    PhaseCancelledError,
    InvalidTransitionError,
    MonitorSourceError,
)
from .retry import retry_on_k8s_error
from .log import setup_logging

__all__ = [
    "MaintenanceError",
    "MaintenanceErrorCode",
    "NextAction",
    "ClusterClientError",
    "ResourceNotFoundError",
    "PermissionDeniedError",
    "TransientClusterError",
    "ConfigurationError",
    "DiscoveryError",
    "ValidationFailure",
    "MissingWorkloadsError",
    "ExecutionError",
    "WaitTimeoutError",
    "PhaseCancelledError",
    "InvalidTransitionError",
    "MonitorSourceError",
    "retry_on_k8s_error",
    "setup_logging",
]
