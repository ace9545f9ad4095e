"""
预检校验 (只读)

所有检查并发执行、互不短路, 结果按固定顺序汇总后一起报告。
权限检查对每个 (verb, resource, namespace) 发起一次 can-i 查询,
查询失败按 "不允许" 处理, 不会中止整个校验。
"""

import asyncio
import logging
from typing import List, NamedTuple, Optional

from ..collectors.k8s_client import ClusterClient
from ..config import MaintenanceConfig
from ..utils.errors import ClusterClientError, ResourceNotFoundError
from .models import ValidationResult, ValidationResults

logger = logging.getLogger(__name__)


class PermissionCheck(NamedTuple):
    verb: str
    resource: str
    namespace: Optional[str] = None
    group: str = ""
    subresource: Optional[str] = None

    @property
    def display(self) -> str:
        resource = self.resource
        if self.subresource:
            resource += "/" + self.subresource
        if self.group:
            resource = self.group + "/" + resource
        return f"{self.verb} {resource} [{self.namespace or 'cluster'}]"


def required_permissions(config: MaintenanceConfig) -> List[PermissionCheck]:
    """两个阶段执行变更所需的权限"""
    ns = config.namespace
    checks = [
        PermissionCheck("get", "nodes"),
        PermissionCheck("patch", "nodes"),
        PermissionCheck("list", "deployments", ns, "apps"),
        PermissionCheck("patch", "deployments", ns, "apps"),
        PermissionCheck("list", "pods", ns),
        PermissionCheck("create", "pods", ns, subresource="exec"),
    ]
    op_ns = config.effective_operator_namespace
    if op_ns != ns:
        checks.append(PermissionCheck("patch", "deployments", op_ns, "apps"))
    return checks


class PreflightValidator:
    """维护前置条件校验器"""

    def __init__(self, client: ClusterClient, config: MaintenanceConfig):
        self.client = client
        self.config = config

    async def validate_down(self, node: str) -> ValidationResults:
        return await self._validate(node, check_tools=True)

    async def validate_up(self, node: str) -> ValidationResults:
        return await self._validate(node, check_tools=False)

    async def _validate(self, node: str, check_tools: bool) -> ValidationResults:
        namespace_checks = [self._check_namespace(ns) for ns in self.config.required_namespaces]
        permission_checks = [
            self._check_permission(p) for p in required_permissions(self.config)
        ]

        node_task = self._check_node(node)
        tools_task = self._check_tools() if check_tools else _nothing()

        node_results, tools_result, *rest = await asyncio.gather(
            node_task, tools_task, *namespace_checks, *permission_checks
        )
        namespace_results = rest[:len(namespace_checks)]
        permission_results = rest[len(namespace_checks):]

        results = ValidationResults()
        results.results.extend(node_results)
        results.results.extend(namespace_results)
        if tools_result is not None:
            results.results.append(tools_result)
        results.results.extend(permission_results)

        failed = results.failed()
        if failed:
            logger.warning("pre-flight: %d of %d check(s) failed: %s",
                           len(failed), len(results), ", ".join(r.check for r in failed))
        else:
            logger.info("pre-flight: all %d checks passed", len(results))
        return results

    async def _check_node(self, node: str) -> List[ValidationResult]:
        """连通性 + 节点存在"""
        try:
            await self.client.get_node(node)
        except ResourceNotFoundError:
            return [
                ValidationResult(check="Cluster connectivity", passed=True,
                                 message="Successfully connected to Kubernetes API"),
                ValidationResult(check="Node existence", passed=False,
                                 message=f"Node {node} not found"),
            ]
        except ClusterClientError as e:
            return [
                ValidationResult(check="Cluster connectivity", passed=False,
                                 message=f"Unable to reach Kubernetes API: {e.message}"),
                ValidationResult(check="Node existence", passed=False,
                                 message=f"Unable to verify node {node}: {e.message}"),
            ]
        return [
            ValidationResult(check="Cluster connectivity", passed=True,
                             message="Successfully connected to Kubernetes API"),
            ValidationResult(check="Node existence", passed=True,
                             message=f"Node {node} exists"),
        ]

    async def _check_namespace(self, namespace: str) -> ValidationResult:
        check = f"Namespace {namespace}"
        try:
            await self.client.get_namespace(namespace)
        except ResourceNotFoundError:
            return ValidationResult(check=check, passed=False,
                                    message=f"Namespace {namespace} not found")
        except ClusterClientError as e:
            return ValidationResult(check=check, passed=False,
                                    message=f"Unable to verify namespace {namespace}: {e.message}")
        return ValidationResult(check=check, passed=True,
                                message=f"Namespace {namespace} exists")

    async def _check_tools(self) -> ValidationResult:
        name = self.config.tools_name
        check = f"{name} deployment"
        try:
            dep = await self.client.get_deployment(self.config.namespace, name)
        except ResourceNotFoundError:
            return ValidationResult(
                check=check, passed=False,
                message=f"deployment not found - deploy {name} to continue",
            )
        except ClusterClientError as e:
            return ValidationResult(check=check, passed=False,
                                    message=f"Unable to verify {name}: {e.message}")

        if dep.ready_replicas == 0:
            return ValidationResult(
                check=check, passed=False,
                message=f"deployment has no ready replicas - wait for {name} to become ready",
            )
        return ValidationResult(check=check, passed=True,
                                message=f"{name} deployment is ready")

    async def _check_permission(self, perm: PermissionCheck) -> ValidationResult:
        check = f"RBAC: {perm.display}"
        try:
            allowed = await self.client.can_i(
                perm.verb,
                f"{perm.resource}.{perm.group}" if perm.group else perm.resource,
                perm.namespace,
                perm.subresource,
            )
        except ClusterClientError as e:
            logger.debug("permission query failed for %s: %s", perm.display, e)
            return ValidationResult(
                check=check, passed=False,
                message=f"Unable to verify permission - treated as denied ({e.message})",
            )

        if not allowed:
            return ValidationResult(check=check, passed=False,
                                    message="Permission denied - contact cluster admin")
        return ValidationResult(check=check, passed=True, message="Permission verified")


async def _nothing() -> None:
    return None
