"""
Kubernetes 客户端 - 基于 kubectl

使用策略：
1. kubectl get/patch - 节点、命名空间、Deployment
2. kubectl exec 进入 rook-ceph-tools Pod - 执行 ceph 命令
3. kubectl auth can-i - RBAC 权限查询

原始 JSON 只在这里解析, 返回 models 中的类型化结果; 失败统一转换为
ClusterClientError 子类。只读调用带重试, 变更调用不重试。
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

from ..utils.errors import (
    ClusterClientError,
    PermissionDeniedError,
    ResourceNotFoundError,
    TransientClusterError,
)
from ..utils.retry import retry_on_k8s_error
from .ceph import (
    parse_ceph_status,
    parse_osd_dump_flags,
    parse_osd_tree,
    parse_quorum_status,
)
from .models import (
    CephFlags,
    CephStatus,
    ConditionStatus,
    DeploymentCondition,
    DeploymentInfo,
    MonitorStatus,
    NamespaceInfo,
    NodeInfo,
    NodeSelectorRequirement,
    NodeSelectorTerm,
    OsdTree,
)

logger = logging.getLogger(__name__)

TOOLS_POD_SELECTOR = "app=rook-ceph-tools"

# stderr 中出现这些片段时视为可重试的临时错误
_TRANSIENT_MARKERS = (
    "timed out",
    "i/o timeout",
    "connection refused",
    "unable to connect",
    "tls handshake timeout",
    "serviceunavailable",
    "service unavailable",
    "too many requests",
    "internal error",
    "etcdserver",
)


class ClusterClient(Protocol):
    """维护引擎依赖的集群客户端能力

    KubectlWrapper 是生产实现, 测试中使用内存实现替换。
    """

    async def get_node(self, name: str) -> NodeInfo: ...

    async def list_nodes(self) -> List[NodeInfo]: ...

    async def get_namespace(self, name: str) -> NamespaceInfo: ...

    async def list_deployments(self, namespace: str) -> List[DeploymentInfo]: ...

    async def get_deployment(self, namespace: str, name: str) -> DeploymentInfo: ...

    async def scale_deployment(
        self,
        namespace: str,
        name: str,
        replicas: int,
        annotations: Optional[Dict[str, Optional[str]]] = None,
    ) -> None: ...

    async def set_node_unschedulable(self, name: str, unschedulable: bool) -> None: ...

    async def get_ceph_flags(self, namespace: str) -> CephFlags: ...

    async def set_ceph_flag(self, namespace: str, flag: str) -> None: ...

    async def unset_ceph_flag(self, namespace: str, flag: str) -> None: ...

    async def get_ceph_status(self, namespace: str) -> CephStatus: ...

    async def get_monitor_status(self, namespace: str) -> MonitorStatus: ...

    async def get_osd_tree(self, namespace: str) -> OsdTree: ...

    async def can_i(
        self,
        verb: str,
        resource: str,
        namespace: Optional[str] = None,
        subresource: Optional[str] = None,
    ) -> bool: ...


# === JSON → 模型 ===

def parse_node(item: Dict[str, Any]) -> NodeInfo:
    metadata = item.get("metadata") or {}
    spec = item.get("spec") or {}
    status = item.get("status") or {}

    ready_status = ConditionStatus.UNKNOWN
    for cond in status.get("conditions") or []:
        if cond.get("type") == "Ready":
            try:
                ready_status = ConditionStatus(cond.get("status", "Unknown"))
            except ValueError:
                ready_status = ConditionStatus.UNKNOWN
            break

    return NodeInfo(
        name=metadata.get("name", ""),
        ready=ready_status == ConditionStatus.TRUE,
        ready_status=ready_status,
        unschedulable=bool(spec.get("unschedulable", False)),
        kubelet_version=(status.get("nodeInfo") or {}).get("kubeletVersion", ""),
        labels=metadata.get("labels") or {},
    )


def _parse_terms(raw_terms: List[Dict[str, Any]]) -> List[NodeSelectorTerm]:
    terms = []
    for term in raw_terms or []:
        expressions = [
            NodeSelectorRequirement(
                key=expr.get("key", ""),
                operator=expr.get("operator", ""),
                values=list(expr.get("values") or []),
            )
            for expr in term.get("matchExpressions") or []
        ]
        terms.append(NodeSelectorTerm(match_expressions=expressions))
    return terms


def parse_deployment(item: Dict[str, Any]) -> DeploymentInfo:
    metadata = item.get("metadata") or {}
    spec = item.get("spec") or {}
    status = item.get("status") or {}
    pod_spec = (spec.get("template") or {}).get("spec") or {}
    node_affinity = (pod_spec.get("affinity") or {}).get("nodeAffinity") or {}

    required = node_affinity.get("requiredDuringSchedulingIgnoredDuringExecution") or {}
    preferred = node_affinity.get("preferredDuringSchedulingIgnoredDuringExecution") or []

    return DeploymentInfo(
        namespace=metadata.get("namespace", ""),
        name=metadata.get("name", ""),
        replicas=spec.get("replicas"),
        status_replicas=status.get("replicas", 0),
        ready_replicas=status.get("readyReplicas", 0),
        available_replicas=status.get("availableReplicas", 0),
        updated_replicas=status.get("updatedReplicas", 0),
        node_selector=pod_spec.get("nodeSelector") or {},
        required_affinity=_parse_terms(required.get("nodeSelectorTerms") or []),
        preferred_affinity=_parse_terms([p.get("preference") or {} for p in preferred]),
        labels=metadata.get("labels") or {},
        annotations=metadata.get("annotations") or {},
        conditions=[
            DeploymentCondition(
                type=c.get("type", ""),
                status=c.get("status", ""),
                reason=c.get("reason", ""),
            )
            for c in status.get("conditions") or []
        ],
    )


def _classify_error(result: Dict[str, Any], resource_type: str,
                    resource_name: Optional[str] = None) -> ClusterClientError:
    """把 kubectl 失败结果转换为结构化错误"""
    error = result.get("error") or "unknown error"
    lowered = error.lower()
    details = {"cmd": result.get("cmd", "")}

    if "notfound" in lowered or "not found" in lowered:
        return ResourceNotFoundError(error, resource_type, resource_name, details)
    if "forbidden" in lowered or "unauthorized" in lowered:
        return PermissionDeniedError(error, resource_type, resource_name, details)
    if any(marker in lowered for marker in _TRANSIENT_MARKERS):
        return TransientClusterError(error, resource_type, resource_name, details)
    return ClusterClientError(error, resource_type, resource_name, details=details)


class KubectlWrapper:
    """kubectl 封装

    所有命令通过 asyncio 子进程执行, 不会阻塞事件循环。
    """

    def __init__(
        self,
        context: Optional[str] = None,
        api_timeout: float = 30,
        ceph_timeout: float = 20,
        tools_selector: str = TOOLS_POD_SELECTOR,
    ):
        """
        Args:
            context: kubeconfig context (默认使用 current-context)
            api_timeout: 单次 Kubernetes API 调用超时 (秒)
            ceph_timeout: 单次 ceph 命令超时 (秒)
            tools_selector: rook-ceph-tools Pod 的 label selector
        """
        self.context = context
        self.api_timeout = api_timeout
        self.ceph_timeout = ceph_timeout
        self.tools_selector = tools_selector
        self.kubectl_cmd = self._build_kubectl_cmd()

    @classmethod
    def from_config(cls, config) -> "KubectlWrapper":
        return cls(
            context=config.kube_context,
            api_timeout=config.timeouts.api_call_seconds,
            ceph_timeout=config.timeouts.ceph_command_seconds,
            tools_selector=f"app={config.tools_name}",
        )

    def _build_kubectl_cmd(self) -> List[str]:
        """构建 kubectl 命令前缀"""
        cmd = ["kubectl"]
        if self.context:
            cmd.extend(["--context", self.context])
        return cmd

    async def run(self, cmd: List[str], timeout: Optional[float] = None) -> Dict:
        """
        执行命令并解析结果

        Args:
            cmd: 命令列表
            timeout: 超时时间 (秒, 默认 api_timeout)

        Returns:
            {"success": bool, "data": any, "error": str, "output": str, "cmd": str}
        """
        timeout = timeout or self.api_timeout
        cmd_str = " ".join(cmd)
        logger.debug("exec: %s", cmd_str)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return {"success": False, "error": str(e), "output": "", "cmd": cmd_str}

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return {
                "success": False,
                "error": f"Command timed out after {timeout}s",
                "output": "",
                "cmd": cmd_str,
            }

        out = stdout.decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            return {
                "success": False,
                "error": stderr.decode("utf-8", errors="replace").strip(),
                "output": out,
                "cmd": cmd_str,
            }

        # 尝试解析 JSON, 不是 JSON 时返回原始文本
        try:
            data = json.loads(out)
        except json.JSONDecodeError:
            data = out
        return {"success": True, "data": data, "cmd": cmd_str}

    async def _get_json(self, args: List[str], resource_type: str,
                        resource_name: Optional[str] = None,
                        timeout: Optional[float] = None) -> Dict[str, Any]:
        result = await self.run(self.kubectl_cmd + args + ["-o", "json"], timeout)
        if not result["success"]:
            raise _classify_error(result, resource_type, resource_name)
        if not isinstance(result["data"], dict):
            raise ClusterClientError(
                "unexpected non-JSON output from kubectl",
                resource_type, resource_name,
                details={"cmd": result["cmd"]},
            )
        return result["data"]

    async def _mutate(self, args: List[str], resource_type: str,
                      resource_name: Optional[str] = None) -> None:
        result = await self.run(self.kubectl_cmd + args)
        if not result["success"]:
            raise _classify_error(result, resource_type, resource_name)

    # === 标准 K8s 资源操作 ===

    @retry_on_k8s_error()
    async def get_node(self, name: str) -> NodeInfo:
        """获取单个节点状态"""
        data = await self._get_json(["get", "node", name], "node", name)
        return parse_node(data)

    @retry_on_k8s_error()
    async def list_nodes(self) -> List[NodeInfo]:
        data = await self._get_json(["get", "nodes"], "node")
        return [parse_node(item) for item in data.get("items") or []]

    @retry_on_k8s_error()
    async def get_namespace(self, name: str) -> NamespaceInfo:
        data = await self._get_json(["get", "namespace", name], "namespace", name)
        return NamespaceInfo(
            name=(data.get("metadata") or {}).get("name", name),
            phase=(data.get("status") or {}).get("phase", ""),
        )

    @retry_on_k8s_error()
    async def list_deployments(self, namespace: str) -> List[DeploymentInfo]:
        """列出命名空间下的全部 Deployment"""
        data = await self._get_json(["get", "deployments", "-n", namespace], "deployment")
        return [parse_deployment(item) for item in data.get("items") or []]

    @retry_on_k8s_error()
    async def get_deployment(self, namespace: str, name: str) -> DeploymentInfo:
        data = await self._get_json(
            ["get", "deployment", name, "-n", namespace], "deployment", name
        )
        return parse_deployment(data)

    async def scale_deployment(
        self,
        namespace: str,
        name: str,
        replicas: int,
        annotations: Optional[Dict[str, Optional[str]]] = None,
    ) -> None:
        """修改副本数, 注解与副本数在同一个 merge patch 中写入

        注解值为 None 表示删除该注解。
        """
        patch: Dict[str, Any] = {"spec": {"replicas": replicas}}
        if annotations:
            patch["metadata"] = {"annotations": annotations}
        await self._mutate(
            ["patch", "deployment", name, "-n", namespace,
             "--type", "merge", "-p", json.dumps(patch)],
            "deployment", name,
        )

    async def set_node_unschedulable(self, name: str, unschedulable: bool) -> None:
        """cordon / uncordon"""
        patch = {"spec": {"unschedulable": unschedulable}}
        await self._mutate(
            ["patch", "node", name, "--type", "merge", "-p", json.dumps(patch)],
            "node", name,
        )

    async def can_i(
        self,
        verb: str,
        resource: str,
        namespace: Optional[str] = None,
        subresource: Optional[str] = None,
    ) -> bool:
        """RBAC 权限查询

        kubectl auth can-i 在拒绝时以非零退出并输出 "no";
        其他失败抛出 ClusterClientError。
        """
        target = f"{resource}/{subresource}" if subresource else resource
        cmd = self.kubectl_cmd + ["auth", "can-i", verb, target]
        if namespace:
            cmd.extend(["-n", namespace])

        result = await self.run(cmd)
        if result["success"]:
            return str(result["data"]).strip() == "yes"
        if result.get("output", "").strip() == "no":
            return False
        raise _classify_error(result, "selfsubjectaccessreview", target)

    # === Ceph 操作 (通过 rook-ceph-tools Pod) ===

    async def _find_tools_pod(self, namespace: str) -> str:
        """查找一个 Ready 的 rook-ceph-tools Pod"""
        data = await self._get_json(
            ["get", "pods", "-n", namespace, "-l", self.tools_selector], "pod"
        )
        pods = data.get("items") or []
        if not pods:
            raise ResourceNotFoundError(
                f"no rook-ceph-tools pod found in namespace {namespace}. "
                f"Please ensure the rook-ceph-tools deployment is running.",
                "pod", self.tools_selector,
            )

        for pod in pods:
            for cond in (pod.get("status") or {}).get("conditions") or []:
                if cond.get("type") == "Ready" and cond.get("status") == "True":
                    return pod["metadata"]["name"]

        raise ResourceNotFoundError(
            f"no ready rook-ceph-tools pod found in namespace {namespace}. "
            f"Found {len(pods)} pod(s) but none are ready.",
            "pod", self.tools_selector,
        )

    async def ceph(self, namespace: str, args: List[str]) -> Any:
        """在 tools Pod 中执行 ceph 命令"""
        pod = await self._find_tools_pod(namespace)
        cmd = self.kubectl_cmd + ["exec", "-n", namespace, pod, "--", "ceph"] + args
        result = await self.run(cmd, timeout=self.ceph_timeout)
        if not result["success"]:
            raise _classify_error(result, "ceph", " ".join(args))
        return result["data"]

    async def _ceph_json(self, namespace: str, args: List[str], parser):
        data = await self.ceph(namespace, args + ["--format", "json"])
        try:
            return parser(data)
        except ValueError as e:
            raise ClusterClientError(str(e), "ceph", " ".join(args)) from e

    @retry_on_k8s_error()
    async def get_ceph_flags(self, namespace: str) -> CephFlags:
        return await self._ceph_json(namespace, ["osd", "dump"], parse_osd_dump_flags)

    async def set_ceph_flag(self, namespace: str, flag: str) -> None:
        await self.ceph(namespace, ["osd", "set", flag])

    async def unset_ceph_flag(self, namespace: str, flag: str) -> None:
        await self.ceph(namespace, ["osd", "unset", flag])

    @retry_on_k8s_error()
    async def get_ceph_status(self, namespace: str) -> CephStatus:
        return await self._ceph_json(namespace, ["status"], parse_ceph_status)

    @retry_on_k8s_error()
    async def get_monitor_status(self, namespace: str) -> MonitorStatus:
        return await self._ceph_json(namespace, ["quorum_status"], parse_quorum_status)

    @retry_on_k8s_error()
    async def get_osd_tree(self, namespace: str) -> OsdTree:
        return await self._ceph_json(namespace, ["osd", "tree"], parse_osd_tree)


# 全局单例
_client = None


def get_k8s_client(config=None) -> KubectlWrapper:
    """获取 K8s 客户端实例"""
    global _client
    if _client is None:
        _client = KubectlWrapper.from_config(config) if config else KubectlWrapper()
    return _client
