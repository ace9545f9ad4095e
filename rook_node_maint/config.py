"""
配置加载与校验

优先级 (低 → 高):
1. 内置默认值
2. YAML 配置文件 (--config / $ROOK_NODE_MAINT_CONFIG / ~/.config/rook-node-maint/config.yaml)
3. 环境变量 (支持 .env)
4. CLI 参数

校验会收集全部错误和警告, 不会在第一个错误处停止。
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .utils.errors import ConfigurationError

DEFAULT_NAMESPACE = "rook-ceph"
DEFAULT_OPERATOR_NAME = "rook-ceph-operator"
DEFAULT_TOOLS_NAME = "rook-ceph-tools"
DEFAULT_SAFETY_FLAG = "noout"

DEFAULT_WORKLOAD_PREFIXES = [
    "rook-ceph-osd",
    "rook-ceph-mon",
    "rook-ceph-exporter",
    "rook-ceph-crashcollector",
]

ENV_PREFIX = "ROOK_NODE_MAINT_"
CONFIG_ENV = ENV_PREFIX + "CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "rook-node-maint" / "config.yaml"

ALLOWED_LOG_LEVELS = ["debug", "info", "warn", "error"]
ALLOWED_LOG_FORMATS = ["text", "json"]

_DNS1123_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class TimeoutConfig(BaseModel):
    """超时配置 (秒)"""
    api_call_seconds: int = 30
    wait_deployment_seconds: int = 300
    ceph_command_seconds: int = 20
    poll_interval_seconds: float = 5


class MonitorConfig(BaseModel):
    """监控刷新间隔 (毫秒)"""
    # 节点与工作负载 (Kubernetes API)
    k8s_refresh_ms: int = 2000
    # Ceph 健康与守护进程状态 (Ceph CLI)
    ceph_refresh_ms: int = 5000


class LoggingConfig(BaseModel):
    level: str = "info"
    format: str = "text"
    file: str = ""


class MaintenanceConfig(BaseModel):
    """完整配置"""
    namespace: str = DEFAULT_NAMESPACE
    operator_namespace: Optional[str] = None
    operator_name: str = DEFAULT_OPERATOR_NAME
    tools_name: str = DEFAULT_TOOLS_NAME
    safety_flag: str = DEFAULT_SAFETY_FLAG
    workload_prefixes: List[str] = Field(
        default_factory=lambda: list(DEFAULT_WORKLOAD_PREFIXES)
    )
    kube_context: Optional[str] = None
    progress_queue_size: int = 64
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def effective_operator_namespace(self) -> str:
        """operator 命名空间, 未设置时与集群命名空间相同"""
        return self.operator_namespace or self.namespace

    @property
    def required_namespaces(self) -> List[str]:
        namespaces = [self.namespace]
        if self.effective_operator_namespace not in namespaces:
            namespaces.append(self.effective_operator_namespace)
        return namespaces

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.model_dump(), sort_keys=False).strip()


class ConfigValidation(BaseModel):
    """配置校验结果"""
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0


def _validate_namespace(field: str, namespace: str) -> Optional[str]:
    if not namespace.strip() or len(namespace) > 63 or not _DNS1123_LABEL.match(namespace):
        return (f"invalid {field} '{namespace}': must be non-empty and match "
                f"Kubernetes naming rules")
    return None


def validate_config(cfg: MaintenanceConfig) -> ConfigValidation:
    """校验配置并返回全部错误与警告"""
    result = ConfigValidation()

    err = _validate_namespace("namespace", cfg.namespace)
    if err:
        result.errors.append(err)
    if cfg.operator_namespace:
        err = _validate_namespace("operator_namespace", cfg.operator_namespace)
        if err:
            result.errors.append(err)

    for name in ("api_call_seconds", "wait_deployment_seconds", "ceph_command_seconds"):
        value = getattr(cfg.timeouts, name)
        if value < 1:
            result.errors.append(f"timeouts.{name} must be >= 1 second, got: {value}")
    if cfg.timeouts.poll_interval_seconds <= 0:
        result.errors.append(
            f"timeouts.poll_interval_seconds must be > 0, got: {cfg.timeouts.poll_interval_seconds}"
        )

    if cfg.logging.level and cfg.logging.level not in ALLOWED_LOG_LEVELS:
        result.errors.append(
            f"invalid logging.level {cfg.logging.level!r}: allowed values are {ALLOWED_LOG_LEVELS}"
        )
    if cfg.logging.format and cfg.logging.format not in ALLOWED_LOG_FORMATS:
        result.errors.append(
            f"invalid logging.format {cfg.logging.format!r}: allowed values are {ALLOWED_LOG_FORMATS}"
        )

    for name in ("k8s_refresh_ms", "ceph_refresh_ms"):
        value = getattr(cfg.monitor, name)
        if value <= 0:
            result.errors.append(f"monitor.{name} must be > 0, got: {value}")
        elif value < 100:
            result.warnings.append(
                f"monitor.{name}={value} is below 100ms - may cause excessive API calls"
            )

    if cfg.progress_queue_size < 1:
        result.errors.append(
            f"progress_queue_size must be >= 1, got: {cfg.progress_queue_size}"
        )

    if not cfg.safety_flag.strip():
        result.errors.append("safety_flag must be non-empty")

    return result


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        elif value is not None:
            merged[key] = value
    return merged


def _normalize_keys(data: Any) -> Any:
    """YAML 中允许使用短横线风格的键 (k8s-refresh-ms)"""
    if isinstance(data, dict):
        return {str(k).replace("-", "_"): _normalize_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_normalize_keys(v) for v in data]
    return data


def resolve_config_file(path: Optional[str] = None) -> Optional[Path]:
    """解析配置文件路径

    显式路径不存在时报错; 默认路径不存在时返回 None
    """
    explicit = path or os.getenv(CONFIG_ENV)
    if explicit:
        candidate = Path(explicit).expanduser()
        if not candidate.is_file():
            raise ConfigurationError(f"config file not found: {candidate}")
        return candidate
    if DEFAULT_CONFIG_PATH.is_file():
        return DEFAULT_CONFIG_PATH
    return None


def read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed to parse config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")
    return _normalize_keys(data)


def env_overrides() -> Dict[str, Any]:
    """从环境变量读取覆盖项"""
    overrides: Dict[str, Any] = {}
    if os.getenv(ENV_PREFIX + "NAMESPACE"):
        overrides["namespace"] = os.getenv(ENV_PREFIX + "NAMESPACE")
    if os.getenv(ENV_PREFIX + "OPERATOR_NAMESPACE"):
        overrides["operator_namespace"] = os.getenv(ENV_PREFIX + "OPERATOR_NAMESPACE")
    if os.getenv("KUBECONFIG_CONTEXT"):
        overrides["kube_context"] = os.getenv("KUBECONFIG_CONTEXT")

    logging_overrides = {}
    if os.getenv(ENV_PREFIX + "LOG_LEVEL"):
        logging_overrides["level"] = os.getenv(ENV_PREFIX + "LOG_LEVEL")
    if os.getenv(ENV_PREFIX + "LOG_FILE"):
        logging_overrides["file"] = os.getenv(ENV_PREFIX + "LOG_FILE")
    if logging_overrides:
        overrides["logging"] = logging_overrides
    return overrides


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    use_dotenv: bool = True,
) -> MaintenanceConfig:
    """加载并校验配置

    Args:
        config_file: 显式配置文件路径
        overrides: CLI 参数覆盖项 (值为 None 的键会被忽略)
        use_dotenv: 是否先加载 .env

    Returns:
        校验通过的 MaintenanceConfig

    Raises:
        ConfigurationError: 文件不可读或校验失败 (携带全部错误)
    """
    if use_dotenv:
        load_dotenv()

    data: Dict[str, Any] = MaintenanceConfig().model_dump()

    path = resolve_config_file(config_file)
    if path:
        data = _deep_merge(data, read_config_file(path))

    data = _deep_merge(data, env_overrides())
    if overrides:
        data = _deep_merge(data, _normalize_keys(overrides))

    try:
        cfg = MaintenanceConfig.model_validate(data)
    except ValueError as e:
        raise ConfigurationError(f"invalid configuration: {e}") from e

    validation = validate_config(cfg)
    if validation.has_errors:
        raise ConfigurationError("configuration validation failed", validation.errors)

    return cfg
