"""
维护错误类型定义

提供结构化的错误处理机制, 每个致命错误都附带建议的下一步操作
"""

from enum import Enum
from typing import Dict, Any, List, Optional


class MaintenanceErrorCode(Enum):
    """维护错误码枚举"""

    # 超时类错误
    WAIT_TIMEOUT = "WAIT_TIMEOUT"

    # 权限类错误
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # 资源类错误
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_MISSING = "RESOURCE_MISSING"

    # API 类错误
    API_ERROR = "API_ERROR"
    API_UNAVAILABLE = "API_UNAVAILABLE"

    # 配置类错误
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # 维护流程错误
    DISCOVERY_FAILED = "DISCOVERY_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    EXECUTION_FAILED = "EXECUTION_FAILED"
    CANCELLED = "CANCELLED"
    INVALID_TRANSITION = "INVALID_TRANSITION"

    # 监控错误
    SOURCE_FAILED = "SOURCE_FAILED"

    # 未知错误
    UNKNOWN = "UNKNOWN"


class NextAction(str, Enum):
    """出错后建议操作员执行的下一步"""
    RETRY = "retry"
    ACKNOWLEDGE = "acknowledge"
    EXIT = "exit"


class MaintenanceError(Exception):
    """维护异常基类

    提供结构化的错误信息,便于日志记录和错误处理

    Attributes:
        message: 错误消息
        code: 错误码
        details: 额外的错误详情
        next_action: 建议的下一步操作
        hint: 给操作员的提示
    """

    next_action: NextAction = NextAction.EXIT
    hint: str = "Inspect the cluster state and logs before running again"

    def __init__(
        self,
        message: str,
        code: MaintenanceErrorCode = MaintenanceErrorCode.UNKNOWN,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "error": self.message,
            "code": self.code.value,
            "details": self.details,
            "next_action": self.next_action.value,
            "hint": self.hint,
        }

    def __str__(self) -> str:
        """友好的字符串表示"""
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.value}] {self.message} ({details_str})"
        return f"[{self.code.value}] {self.message}"


# === 集群客户端错误 ===

class ClusterClientError(MaintenanceError):
    """集群客户端调用失败

    用于 kubectl / Ceph 命令执行失败的情况
    """

    next_action = NextAction.RETRY
    hint = "Check cluster connectivity and kubeconfig, then retry"

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_name: Optional[str] = None,
        code: MaintenanceErrorCode = MaintenanceErrorCode.API_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        all_details = details or {}
        if resource_type:
            all_details["resource_type"] = resource_type
        if resource_name:
            all_details["resource_name"] = resource_name
        self.resource_type = resource_type
        self.resource_name = resource_name

        super().__init__(message, code, all_details)


class ResourceNotFoundError(ClusterClientError):
    """资源不存在"""

    next_action = NextAction.EXIT
    hint = "Verify the resource name and namespace"

    def __init__(self, message: str, resource_type: Optional[str] = None,
                 resource_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, resource_type, resource_name,
                         MaintenanceErrorCode.RESOURCE_NOT_FOUND, details)


class PermissionDeniedError(ClusterClientError):
    """RBAC 拒绝访问"""

    next_action = NextAction.EXIT
    hint = "Ask a cluster admin for the missing RBAC permission"

    def __init__(self, message: str, resource_type: Optional[str] = None,
                 resource_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, resource_type, resource_name,
                         MaintenanceErrorCode.PERMISSION_DENIED, details)


class TransientClusterError(ClusterClientError):
    """可重试的临时错误 (超时、连接失败、限流、5xx)"""

    def __init__(self, message: str, resource_type: Optional[str] = None,
                 resource_name: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, resource_type, resource_name,
                         MaintenanceErrorCode.API_UNAVAILABLE, details)


# === 配置错误 ===

class ConfigurationError(MaintenanceError):
    """配置校验失败, 携带全部错误"""

    hint = "Fix the configuration file, environment or flags"

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = list(errors or [])
        details = {"errors": "; ".join(self.errors)} if self.errors else None
        super().__init__(message, MaintenanceErrorCode.CONFIGURATION_ERROR, details)

    def __str__(self) -> str:
        if len(self.errors) <= 1:
            return super().__str__()
        lines = [f"[{self.code.value}] {self.message}:"]
        lines.extend(f"  - {err}" for err in self.errors)
        return "\n".join(lines)


# === 维护流程错误 ===

class DiscoveryError(MaintenanceError):
    """构建维护计划时集群读取失败, 在任何变更之前中止"""

    next_action = NextAction.RETRY
    hint = "No changes were made; retry once the cluster API is reachable"

    def __init__(self, message: str, node: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        all_details = details or {}
        if node:
            all_details["node"] = node
        super().__init__(message, MaintenanceErrorCode.DISCOVERY_FAILED, all_details)


class ValidationFailure(MaintenanceError):
    """预检失败, 阶段不会开始"""

    next_action = NextAction.RETRY
    hint = "Resolve the failed pre-flight checks and retry"

    def __init__(self, results: Any):
        self.results = results
        failed = [r.check for r in results.failed()]
        super().__init__(
            "pre-flight validation failed",
            MaintenanceErrorCode.VALIDATION_FAILED,
            {"failed_checks": ", ".join(failed)},
        )


class MissingWorkloadsError(MaintenanceError):
    """计划中的工作负载已不存在, 需要操作员确认后跳过"""

    next_action = NextAction.ACKNOWLEDGE
    hint = "Acknowledge the missing workloads to skip them, or exit"

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(
            f"{len(self.missing)} planned workload(s) no longer exist",
            MaintenanceErrorCode.RESOURCE_MISSING,
            {"missing": ", ".join(self.missing)},
        )


class ExecutionError(MaintenanceError):
    """变更步骤失败, 集群可能处于部分完成状态 (不会自动回滚)"""

    next_action = NextAction.RETRY
    hint = ("The cluster may be partially changed; no rollback was attempted. "
            "Retry re-runs pre-flight and resumes from the top of the plan")

    def __init__(self, message: str, stage: str, workload: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        self.stage = stage
        self.workload = workload
        self.cause = cause
        details: Dict[str, Any] = {"stage": stage}
        if workload:
            details["workload"] = workload
        super().__init__(message, MaintenanceErrorCode.EXECUTION_FAILED, details)


class WaitTimeoutError(MaintenanceError):
    """等待工作负载或仲裁达到目标状态超时"""

    next_action = NextAction.RETRY

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, MaintenanceErrorCode.WAIT_TIMEOUT, details)


class PhaseCancelledError(MaintenanceError):
    """操作员取消了执行"""

    next_action = NextAction.RETRY
    hint = "Execution stopped before the next change; retry to resume"

    def __init__(self, message: str = "execution cancelled", stage: Optional[str] = None):
        self.stage = stage
        super().__init__(message, MaintenanceErrorCode.CANCELLED,
                         {"stage": stage} if stage else None)


class InvalidTransitionError(MaintenanceError):
    """状态机不允许的转换"""

    def __init__(self, current: str, target: str):
        super().__init__(
            f"cannot transition from {current} to {target}",
            MaintenanceErrorCode.INVALID_TRANSITION,
            {"current": current, "target": target},
        )


# === 监控错误 ===

class MonitorSourceError(MaintenanceError):
    """单个监控数据源失败 (非致命)"""

    next_action = NextAction.RETRY

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(message, MaintenanceErrorCode.SOURCE_FAILED, {"source": source})
