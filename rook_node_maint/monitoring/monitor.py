"""
集群监控

每个数据源一个独立的后台轮询任务, 各自按配置的间隔运行、各自失败:
- node / workloads: monitor.k8s_refresh_ms
- storage / daemons: monitor.ceph_refresh_ms

成功的读数整体替换该数据源的 SourceReading, 然后重建快照并重新计算健康摘要。
读者通过 latest() 非阻塞地取得最新快照。

    async with ClusterMonitor(client, config, "worker-01") as monitor:
        snapshot = monitor.latest()
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional

from ..collectors.k8s_client import ClusterClient
from ..config import MaintenanceConfig
from ..utils.errors import MaintenanceError
from .aggregation import summarize
from .models import MonitorSnapshot, SourceName, SourceReading, utcnow
from .sources import poll_daemons, poll_node, poll_storage, poll_workloads

logger = logging.getLogger(__name__)

Poller = Callable[[], Awaitable]


class ClusterMonitor:
    """多数据源并发轮询监控"""

    def __init__(self, client: ClusterClient, config: MaintenanceConfig, node: str,
                 updates_size: Optional[int] = None):
        self.client = client
        self.config = config
        self.node = node
        self._readings: Dict[SourceName, SourceReading] = {
            source: SourceReading(source=source) for source in SourceName
        }
        self._snapshot = self._build_snapshot()
        self._tasks: List[asyncio.Task] = []
        self._updates: "asyncio.Queue[MonitorSnapshot]" = asyncio.Queue(
            maxsize=updates_size or config.progress_queue_size
        )
        self._stopped = asyncio.Event()
        self.dropped_updates = 0

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stopped.is_set()

    def _sources(self) -> Dict[SourceName, tuple]:
        ns = self.config.namespace
        k8s_interval = self.config.monitor.k8s_refresh_ms / 1000
        ceph_interval = self.config.monitor.ceph_refresh_ms / 1000
        return {
            SourceName.NODE: (lambda: poll_node(self.client, self.node), k8s_interval),
            SourceName.WORKLOADS: (
                lambda: poll_workloads(self.client, ns, self.node,
                                       self.config.workload_prefixes),
                k8s_interval,
            ),
            SourceName.STORAGE: (lambda: poll_storage(self.client, ns), ceph_interval),
            SourceName.DAEMONS: (
                lambda: poll_daemons(self.client, ns, self.node, self.config.safety_flag),
                ceph_interval,
            ),
        }

    def start(self):
        """启动全部轮询任务; 已经运行时不做任何事"""
        if self._tasks:
            return
        self._stopped.clear()
        for source, (poll, interval) in self._sources().items():
            task = asyncio.ensure_future(self._loop(source, poll, interval))
            self._tasks.append(task)
        logger.info("monitor started for node %s (%d sources)", self.node, len(self._tasks))

    async def stop(self):
        """停止全部轮询任务; 可重复调用, 未启动时也安全"""
        self._stopped.set()
        tasks, self._tasks = self._tasks, []
        if not tasks:
            return
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("monitor stopped for node %s", self.node)

    async def __aenter__(self) -> "ClusterMonitor":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    def latest(self) -> MonitorSnapshot:
        """最新快照 (非阻塞)"""
        return self._snapshot

    async def updates(self) -> AsyncIterator[MonitorSnapshot]:
        """按合并顺序产出快照, 监控停止后结束

        队列满时新快照被丢弃, 消费者始终可以通过 latest() 取得最新值。
        未启动的监控立即结束, 需要先调用 start()。
        """
        if not self._tasks:
            return
        stopped = asyncio.ensure_future(self._stopped.wait())
        try:
            while not self._stopped.is_set():
                getter = asyncio.ensure_future(self._updates.get())
                done, _ = await asyncio.wait({getter, stopped},
                                             return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield getter.result()
                else:
                    getter.cancel()
        finally:
            stopped.cancel()

    async def poll_once(self) -> MonitorSnapshot:
        """立即轮询所有数据源一次 (不需要启动后台任务)"""
        await asyncio.gather(*(
            self._poll(source, poll) for source, (poll, _) in self._sources().items()
        ))
        return self._snapshot

    async def _loop(self, source: SourceName, poll: Poller, interval: float):
        while True:
            await self._poll(source, poll)
            await asyncio.sleep(interval)

    async def _poll(self, source: SourceName, poll: Poller):
        try:
            value = await poll()
        except MaintenanceError as e:
            self._record_error(source, e.message)
        except Exception as e:
            logger.exception("unexpected failure polling %s", source.value)
            self._record_error(source, str(e))
        else:
            self._merge(source, SourceReading(source=source, value=value,
                                              updated_at=utcnow()))

    def _record_error(self, source: SourceName, message: str):
        logger.warning("monitor source %s failed: %s", source.value, message)
        previous = self._readings[source]
        # 保留上一次成功的值
        self._merge(source, previous.model_copy(update={"error": message,
                                                        "error_at": utcnow()}))

    def _merge(self, source: SourceName, reading: SourceReading):
        readings = dict(self._readings)
        readings[source] = reading
        self._readings = readings
        self._snapshot = self._build_snapshot()
        self._publish(self._snapshot)

    def _build_snapshot(self) -> MonitorSnapshot:
        snapshot = MonitorSnapshot(
            node_name=self.node,
            node=self._readings[SourceName.NODE],
            storage=self._readings[SourceName.STORAGE],
            workloads=self._readings[SourceName.WORKLOADS],
            daemons=self._readings[SourceName.DAEMONS],
        )
        return snapshot.model_copy(update={"health": summarize(snapshot)})

    def _publish(self, snapshot: MonitorSnapshot):
        try:
            self._updates.put_nowait(snapshot)
        except asyncio.QueueFull:
            self.dropped_updates += 1


async def stop_monitor(monitor: Optional[ClusterMonitor]):
    """停止监控; monitor 为 None 时不做任何事"""
    if monitor is None:
        return
    await monitor.stop()
