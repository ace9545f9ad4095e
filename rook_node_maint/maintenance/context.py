"""
执行上下文与进度事件

- ExecutionContext: 可取消的执行上下文, 每个变更调用之前检查取消;
  已经发出的调用允许完成, 不会被强制中断。
- ProgressReporter: 有界队列, 满时丢弃新事件并计数, 从不阻塞变更路径。
"""

import asyncio
import logging
from typing import Optional

from ..utils.errors import PhaseCancelledError
from .models import ProgressEvent, ProgressStatus

logger = logging.getLogger(__name__)


class ExecutionContext:
    """可取消的执行上下文"""

    def __init__(self):
        self._cancelled = asyncio.Event()
        self.stage: Optional[str] = None

    def cancel(self):
        if not self._cancelled.is_set():
            logger.info("cancellation requested (stage=%s)", self.stage)
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self):
        """在发出变更调用之前调用, 已取消时抛出 PhaseCancelledError"""
        if self._cancelled.is_set():
            raise PhaseCancelledError(stage=self.stage)

    async def sleep(self, seconds: float):
        """可被取消打断的等待"""
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise PhaseCancelledError(stage=self.stage)


class ProgressReporter:
    """进度事件的有界投递

    尽力而为: 消费者跟不上时丢弃新事件, 状态转换本身不受影响。
    """

    def __init__(self, maxsize: int = 64):
        self.queue: "asyncio.Queue[ProgressEvent]" = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def emit(self, stage: str, description: str, workload: Optional[str] = None,
             status: ProgressStatus = ProgressStatus.RUNNING) -> ProgressEvent:
        event = ProgressEvent(stage=stage, description=description,
                              workload=workload, status=status)
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("progress queue full, dropped event: %s", description)
        return event
