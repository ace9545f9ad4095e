"""
等待工作负载 / 仲裁达到目标状态

每 poll_interval 秒轮询一次, 超过 timeout 抛出 WaitTimeoutError (携带最后一次观察值)。
等待可被 ExecutionContext 取消打断。
"""

import asyncio
import logging
from typing import Optional

from ..collectors.k8s_client import ClusterClient
from ..collectors.models import DeploymentInfo, MonitorStatus
from ..utils.errors import ClusterClientError, WaitTimeoutError
from .context import ExecutionContext

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_TIMEOUT = 300.0


async def wait_for_scaled_down(
    client: ClusterClient,
    ctx: ExecutionContext,
    namespace: str,
    name: str,
    timeout: float = DEFAULT_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
) -> DeploymentInfo:
    """等待 ready 副本数降到 0"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        dep = await client.get_deployment(namespace, name)
        if dep.ready_replicas == 0:
            return dep
        if loop.time() >= deadline:
            raise WaitTimeoutError(
                f"timeout waiting for {namespace}/{name} to scale down",
                {"ready": dep.ready_replicas, "replicas": dep.status_replicas, "target": 0},
            )
        logger.debug("waiting for %s: ready=%d target=0", name, dep.ready_replicas)
        await ctx.sleep(interval)


async def wait_for_ready(
    client: ClusterClient,
    ctx: ExecutionContext,
    namespace: str,
    name: str,
    target: int,
    timeout: float = DEFAULT_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
) -> DeploymentInfo:
    """等待 desired == ready == target"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        dep = await client.get_deployment(namespace, name)
        if dep.desired_replicas == target and dep.ready_replicas == target:
            return dep
        if loop.time() >= deadline:
            raise WaitTimeoutError(
                f"timeout waiting for {namespace}/{name} to become ready",
                {"desired": dep.desired_replicas, "ready": dep.ready_replicas, "target": target},
            )
        logger.debug("waiting for %s: desired=%d ready=%d target=%d",
                      name, dep.desired_replicas, dep.ready_replicas, target)
        await ctx.sleep(interval)


async def wait_for_quorum(
    client: ClusterClient,
    ctx: ExecutionContext,
    namespace: str,
    timeout: float = DEFAULT_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
) -> MonitorStatus:
    """等待多数 monitor 进入仲裁

    monitor 重启期间 ceph 命令可能失败, 这类失败视为 "尚未达到" 并继续轮询。
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    last: Optional[MonitorStatus] = None
    last_error = ""

    while True:
        try:
            last = await client.get_monitor_status(namespace)
            if last.has_quorum:
                logger.info("monitor quorum established: %d/%d (leader %s)",
                            last.in_quorum, last.total, last.leader)
                return last
        except ClusterClientError as e:
            last_error = e.message
            logger.debug("quorum status unavailable: %s", e)

        if loop.time() >= deadline:
            details = {"last_error": last_error} if last_error else {}
            if last is not None:
                details.update({"in_quorum": last.in_quorum, "total": last.total})
            raise WaitTimeoutError("timeout waiting for monitor quorum", details)
        await ctx.sleep(interval)
