"""
维护阶段编排器

下线: Init → Confirm → [NothingToDo | PreFlight → Cordoning → SettingSafetyFlag
      → ScalingOperator → DiscoveringWorkloads → ScalingWorkloads → Complete]
上线: Init → Confirm → [NothingToDo | PreFlight → Uncordoning → RestoringWorkloads
      → ScalingOperator → UnsettingSafetyFlag → Complete]

使用方式:
    orch = PhaseOrchestrator.for_down(client, config, "worker-01")
    review = await orch.prepare()
    orch.confirm(True)
    execution = orch.execute()
    async for event in execution.events():
        ...
    outcome = await execution.outcome()

计划在 prepare 时捕获, 执行只按捕获的计划进行; 出错后不自动回滚,
retry() 从 PreFlight 重新进入并从计划开头重新执行 (已完成的变更是幂等的)。
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set

from ..collectors.k8s_client import ClusterClient
from ..collectors.models import ORIGINAL_REPLICAS_ANNOTATION, CephFlags, NodeInfo
from ..config import MaintenanceConfig
from ..utils.errors import (
    ClusterClientError,
    DiscoveryError,
    ExecutionError,
    InvalidTransitionError,
    MaintenanceError,
    MissingWorkloadsError,
    PhaseCancelledError,
    ResourceNotFoundError,
    ValidationFailure,
    WaitTimeoutError,
)
from .conflicts import ConflictDetector
from .context import ExecutionContext, ProgressReporter
from .discovery import list_pinned, list_scaled_down
from .models import (
    ConflictWarning,
    MaintenancePhase,
    MaintenancePlan,
    ManagedWorkload,
    OutcomeStatus,
    PhaseOutcome,
    PlanReview,
    ProgressEvent,
    ProgressStatus,
    ValidationResults,
    WorkloadCategory,
)
from .ordering import order_for_down, order_for_up
from .state import (
    DownPhaseState,
    PhaseStateMachine,
    UpPhaseState,
    down_state_machine,
    up_state_machine,
)
from .validator import PreflightValidator
from .wait import wait_for_quorum, wait_for_ready, wait_for_scaled_down

logger = logging.getLogger(__name__)


class PhaseExecution:
    """一次执行的句柄: 进度事件流 + 最终结果 + 取消"""

    def __init__(self, task: "asyncio.Task[PhaseOutcome]", reporter: ProgressReporter,
                 ctx: ExecutionContext):
        self._task = task
        self._reporter = reporter
        self._ctx = ctx

    async def events(self) -> AsyncIterator[ProgressEvent]:
        """按顺序产出进度事件, 执行结束且队列取空后停止"""
        queue = self._reporter.queue
        while True:
            if self._task.done():
                while not queue.empty():
                    yield queue.get_nowait()
                return

            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait(
                {getter, self._task}, return_when=asyncio.FIRST_COMPLETED
            )
            if getter in done:
                yield getter.result()
            else:
                # 未取到的元素仍留在队列中, 下一轮会被取空
                getter.cancel()

    async def outcome(self) -> PhaseOutcome:
        return await self._task

    def cancel(self):
        """请求取消: 不再发出新的变更调用, 进行中的调用允许完成"""
        self._ctx.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def dropped_events(self) -> int:
        return self._reporter.dropped


class PhaseOrchestrator:
    """单节点维护阶段状态机"""

    def __init__(self, client: ClusterClient, config: MaintenanceConfig, node: str,
                 phase: MaintenancePhase):
        self.client = client
        self.config = config
        self.node = node
        self.phase = phase
        self.machine: PhaseStateMachine = (
            down_state_machine() if phase == MaintenancePhase.DOWN else up_state_machine()
        )
        self.states = DownPhaseState if phase == MaintenancePhase.DOWN else UpPhaseState
        self.validator = PreflightValidator(client, config)
        self.conflicts = ConflictDetector(client, config)

        self.review: Optional[PlanReview] = None
        self.last_outcome: Optional[PhaseOutcome] = None
        self._confirmed = False
        self._acknowledge_missing = False
        self._skipped: Set[str] = set()
        self._processed = 0
        self._ctx: Optional[ExecutionContext] = None
        self._reporter: Optional[ProgressReporter] = None
        self._execution: Optional[PhaseExecution] = None

    @classmethod
    def for_down(cls, client: ClusterClient, config: MaintenanceConfig,
                 node: str) -> "PhaseOrchestrator":
        return cls(client, config, node, MaintenancePhase.DOWN)

    @classmethod
    def for_up(cls, client: ClusterClient, config: MaintenanceConfig,
               node: str) -> "PhaseOrchestrator":
        return cls(client, config, node, MaintenancePhase.UP)

    @property
    def state(self):
        return self.machine.state

    @property
    def plan(self) -> Optional[MaintenancePlan]:
        return self.review.plan if self.review else None

    def _transition(self, target):
        self.machine.transition(target)
        if self._ctx is not None:
            self._ctx.stage = target.value
        logger.info("[%s %s] %s", self.phase.value, self.node, target.label)

    # === Init ===

    async def prepare(self) -> PlanReview:
        """构建计划并返回给操作员审阅

        发现、冲突检测和预检预热并发执行。
        集群读取失败抛出 DiscoveryError, 状态保持在 Init, 可以再次调用。
        """
        if self.state != self.states.INIT:
            raise InvalidTransitionError(self.state.value, self.states.CONFIRM.value)

        if self.phase == MaintenancePhase.DOWN:
            build = self._build_down_plan()
            conflict_check = self.conflicts.check_other_nodes_in_maintenance(self.node)
            warm_up = self.validator.validate_down(self.node)
        else:
            build = self._build_up_plan()
            conflict_check = _no_conflict(self.config)
            warm_up = self.validator.validate_up(self.node)

        try:
            plan, conflict, validation = await asyncio.gather(build, conflict_check, warm_up)
        except ClusterClientError as e:
            logger.error("discovery failed for node %s: %s", self.node, e)
            raise DiscoveryError(f"failed to build maintenance plan: {e.message}",
                                 self.node, {"cause": type(e).__name__}) from e

        nothing_to_do = self._nothing_to_do(plan)
        self.review = PlanReview(plan=plan, validation=validation, conflict=conflict,
                                 nothing_to_do=nothing_to_do)

        if nothing_to_do:
            self._transition(self.states.NOTHING_TO_DO)
            self.last_outcome = self._outcome(OutcomeStatus.NOTHING_TO_DO)
        else:
            self._transition(self.states.CONFIRM)
        return self.review

    async def _read_plan_inputs(self):
        """节点、安全标志、operator 的状态"""
        try:
            node = await self.client.get_node(self.node)
        except ResourceNotFoundError as e:
            raise DiscoveryError(f"Node {self.node} not found", self.node) from e

        try:
            flags = await self.client.get_ceph_flags(self.config.namespace)
        except ClusterClientError as e:
            logger.warning("unable to read ceph flags, assuming %s is unset: %s",
                           self.config.safety_flag, e)
            flags = CephFlags()

        try:
            operator = await self.client.get_deployment(
                self.config.effective_operator_namespace, self.config.operator_name
            )
        except ResourceNotFoundError:
            logger.warning("operator deployment %s/%s not found; it will be skipped",
                           self.config.effective_operator_namespace, self.config.operator_name)
            operator = None
        return node, flags, operator

    def _plan(self, workloads: List[ManagedWorkload], node: NodeInfo, flags: CephFlags,
              operator, restore_targets=None) -> MaintenancePlan:
        return MaintenancePlan(
            phase=self.phase,
            node=self.node,
            namespace=self.config.namespace,
            workloads=tuple(workloads),
            restore_targets=restore_targets or {},
            operator_name=self.config.operator_name,
            operator_namespace=self.config.effective_operator_namespace,
            operator_replicas=operator.desired_replicas if operator else None,
            operator_ready_replicas=operator.ready_replicas if operator else 0,
            operator_original_replicas=operator.original_replicas if operator else None,
            safety_flag=self.config.safety_flag,
            safety_flag_set=flags.has(self.config.safety_flag),
            node_cordoned=node.cordoned,
            node_ready=node.ready,
        )

    async def _build_down_plan(self) -> MaintenancePlan:
        (node, flags, operator), pinned = await asyncio.gather(
            self._read_plan_inputs(),
            list_pinned(self.client, self.config.namespace, self.node,
                        self.config.workload_prefixes),
        )
        for w in pinned:
            if w.replicas > 1:
                logger.warning("%s is pinned to %s but has %d replicas",
                               w.name, self.node, w.replicas)
        ordered = order_for_down(pinned)
        logger.info("down plan for %s: %s", self.node, [w.name for w in ordered])
        return self._plan(ordered, node, flags, operator)

    async def _build_up_plan(self) -> MaintenancePlan:
        (node, flags, operator), scaled = await asyncio.gather(
            self._read_plan_inputs(),
            list_scaled_down(self.client, self.config.namespace, self.node,
                             self.config.workload_prefixes),
        )
        ordered = order_for_up(scaled)
        targets = {w.name: (w.original_replicas or 1) for w in ordered}
        logger.info("up plan for %s: %s", self.node,
                    [f"{w.name}->{targets[w.name]}" for w in ordered])
        return self._plan(ordered, node, flags, operator, targets)

    def _nothing_to_do(self, plan: MaintenancePlan) -> bool:
        if self.phase == MaintenancePhase.DOWN:
            operator_down = (not plan.operator_present
                             or (plan.operator_replicas == 0 and plan.operator_ready_replicas == 0))
            return (plan.node_cordoned
                    and plan.safety_flag_set
                    and operator_down
                    and all(w.replicas == 0 for w in plan.workloads))

        operator_up = not plan.operator_present or plan.operator_ready_replicas > 0
        return (not plan.node_cordoned
                and not plan.safety_flag_set
                and operator_up
                and len(plan.workloads) == 0)

    # === Confirm ===

    def confirm(self, accepted: bool, acknowledge_missing: bool = False) -> Optional[PhaseOutcome]:
        """记录操作员的决定; 拒绝时返回 declined 结果 (不是错误)"""
        if self.state != self.states.CONFIRM:
            raise InvalidTransitionError(self.state.value, self.states.PRE_FLIGHT.value)

        if not accepted:
            self._transition(self.states.DECLINED)
            self.last_outcome = self._outcome(OutcomeStatus.DECLINED)
            return self.last_outcome

        self._confirmed = True
        self._acknowledge_missing = acknowledge_missing
        return None

    def acknowledge_missing(self):
        """确认跳过已不存在的工作负载 (在 MissingWorkloadsError 之后调用 retry 前使用)"""
        self._acknowledge_missing = True

    # === 执行 ===

    def execute(self) -> PhaseExecution:
        """执行已确认的计划, 必须在事件循环中调用"""
        if self.state != self.states.CONFIRM or not self._confirmed:
            raise InvalidTransitionError(self.state.value, self.states.PRE_FLIGHT.value)
        return self._start()

    def retry(self) -> PhaseExecution:
        """从 PreFlight 重新进入, 复用已确认的计划"""
        if self.state not in (self.states.ERROR, self.states.CANCELLED) or self.review is None:
            raise InvalidTransitionError(self.state.value, self.states.PRE_FLIGHT.value)
        logger.info("retrying %s phase for %s from pre-flight", self.phase.value, self.node)
        return self._start()

    def _start(self) -> PhaseExecution:
        # 没有运行中的事件循环时在重置任何状态之前抛出 RuntimeError
        loop = asyncio.get_running_loop()
        self._ctx = ExecutionContext()
        self._reporter = ProgressReporter(self.config.progress_queue_size)
        self._processed = 0
        self._skipped = set()
        task = loop.create_task(self._run())
        self._execution = PhaseExecution(task, self._reporter, self._ctx)
        return self._execution

    def cancel(self):
        if self._ctx is not None:
            self._ctx.cancel()

    def _outcome(self, status: OutcomeStatus, error: Optional[MaintenanceError] = None,
                 failed_stage: Optional[str] = None, elapsed: float = 0.0) -> PhaseOutcome:
        return PhaseOutcome(
            status=status,
            phase=self.phase,
            node=self.node,
            failed_stage=failed_stage,
            error=error,
            workloads_processed=self._processed,
            elapsed_seconds=elapsed,
            dropped_events=self._reporter.dropped if self._reporter else 0,
        )

    async def _run(self) -> PhaseOutcome:
        loop = asyncio.get_running_loop()
        started = loop.time()
        steps = self._down_steps() if self.phase == MaintenancePhase.DOWN else self._up_steps()

        try:
            self._transition(self.states.PRE_FLIGHT)
            await self._preflight()
            for state, step in steps:
                self._ctx.check()
                self._transition(state)
                await step()
        except PhaseCancelledError as e:
            stage = self.state.value
            self._transition(self.states.CANCELLED)
            logger.warning("%s phase for %s cancelled at %s", self.phase.value, self.node, stage)
            self.last_outcome = self._outcome(OutcomeStatus.CANCELLED, e, stage,
                                              loop.time() - started)
            return self.last_outcome
        except MaintenanceError as e:
            stage = self.state.value
            self._transition(self.states.ERROR)
            logger.error("%s phase for %s failed at %s: %s", self.phase.value, self.node,
                         stage, e)
            self.last_outcome = self._outcome(OutcomeStatus.ERROR, e, stage,
                                              loop.time() - started)
            return self.last_outcome

        self._transition(self.states.COMPLETE)
        elapsed = loop.time() - started
        self._emit(f"Completed: {self._processed} deployment(s) in {elapsed:.1f}s",
                   status=ProgressStatus.SUCCESS)
        self.last_outcome = self._outcome(OutcomeStatus.COMPLETED, elapsed=elapsed)
        return self.last_outcome

    def _emit(self, description: str, workload: Optional[str] = None,
              status: ProgressStatus = ProgressStatus.RUNNING):
        self._reporter.emit(self.state.value, description, workload, status)

    async def _mutate(self, description: str, call: Callable[[], Awaitable],
                      workload: Optional[str] = None):
        """执行一次变更: 检查取消 → running 事件 → 调用 → success/error 事件"""
        self._ctx.check()
        self._emit(description, workload)
        try:
            await call()
        except (ClusterClientError, WaitTimeoutError) as e:
            self._emit(f"{description} failed: {e.message}", workload, ProgressStatus.ERROR)
            raise ExecutionError(f"{description} failed: {e.message}",
                                 self.state.value, workload, e) from e
        self._emit(description, workload, ProgressStatus.SUCCESS)

    def _skip(self, description: str, workload: Optional[str] = None):
        logger.debug("skipped: %s", description)
        self._emit(description, workload, ProgressStatus.SKIPPED)

    # === PreFlight ===

    async def _preflight(self):
        self._emit("Running pre-flight checks")
        if self.phase == MaintenancePhase.DOWN:
            results = await self.validator.validate_down(self.node)
        else:
            results = await self.validator.validate_up(self.node)
        self._report_validation(results)
        if not results.all_passed:
            self._emit("Pre-flight checks failed", status=ProgressStatus.ERROR)
            raise ValidationFailure(results)

        if self.phase == MaintenancePhase.UP:
            await self._check_missing()
        self._emit("Pre-flight checks passed", status=ProgressStatus.SUCCESS)

    def _report_validation(self, results: ValidationResults):
        # 刷新审阅结果中的校验部分, 供展示层读取
        if self.review is not None:
            self.review = self.review.model_copy(update={"validation": results})

    async def _check_missing(self):
        missing = []
        for w in self.plan.workloads:
            try:
                await self.client.get_deployment(w.namespace, w.name)
            except ResourceNotFoundError:
                missing.append(w.name)
            except ClusterClientError as e:
                raise ExecutionError(f"unable to verify {w.name}: {e.message}",
                                     self.state.value, w.name, e) from e
        if not missing:
            return
        if not self._acknowledge_missing:
            self._emit(f"{len(missing)} planned deployment(s) no longer exist",
                       status=ProgressStatus.ERROR)
            raise MissingWorkloadsError(missing)
        logger.warning("skipping missing deployments: %s", ", ".join(missing))
        self._skipped = set(missing)

    # === 下线步骤 ===

    def _down_steps(self):
        s = DownPhaseState
        return [
            (s.CORDONING, self._cordon),
            (s.SETTING_SAFETY_FLAG, self._set_flag),
            (s.SCALING_OPERATOR, self._scale_operator_down),
            (s.DISCOVERING_WORKLOADS, self._report_plan),
            (s.SCALING_WORKLOADS, self._scale_workloads_down),
        ]

    async def _cordon(self):
        await self._mutate(f"Cordoning node {self.node}",
                           lambda: self.client.set_node_unschedulable(self.node, True))

    async def _set_flag(self):
        flag = self.config.safety_flag
        await self._mutate(f"Setting Ceph {flag} flag",
                           lambda: self.client.set_ceph_flag(self.config.namespace, flag))

    async def _scale_operator_down(self):
        plan = self.plan
        if not plan.operator_present:
            self._skip(f"Operator {plan.operator_name} not found", plan.operator_name)
            return

        annotations = None
        if plan.operator_replicas:
            annotations = {ORIGINAL_REPLICAS_ANNOTATION: str(plan.operator_replicas)}

        async def call():
            await self.client.scale_deployment(plan.operator_namespace, plan.operator_name,
                                               0, annotations)
            await wait_for_scaled_down(self.client, self._ctx, plan.operator_namespace,
                                       plan.operator_name, **self._wait_args())

        await self._mutate(f"Scaling {plan.operator_name} to 0", call, plan.operator_name)

    async def _report_plan(self):
        # 只报告确认时捕获的计划, 不重新发现
        self._emit(f"Using {len(self.plan.workloads)} planned deployment(s) on {self.node}")
        for w in self.plan.workloads:
            logger.debug("planned: %s (%s, replicas=%d)", w.name, w.category.value, w.replicas)
        self._emit(f"Using {len(self.plan.workloads)} planned deployment(s) on {self.node}",
                   status=ProgressStatus.SUCCESS)

    async def _scale_workloads_down(self):
        for w in self.plan.workloads:
            annotations = None
            if w.replicas > 0:
                annotations = {ORIGINAL_REPLICAS_ANNOTATION: str(w.replicas)}

            async def call(w=w, annotations=annotations):
                await self.client.scale_deployment(w.namespace, w.name, 0, annotations)
                await wait_for_scaled_down(self.client, self._ctx, w.namespace, w.name,
                                           **self._wait_args())

            await self._mutate(f"Scaling {w.name} to 0", call, w.name)
            self._processed += 1

    # === 上线步骤 ===

    def _up_steps(self):
        s = UpPhaseState
        return [
            (s.UNCORDONING, self._uncordon),
            (s.RESTORING_WORKLOADS, self._restore_workloads),
            (s.SCALING_OPERATOR, self._scale_operator_up),
            (s.UNSETTING_SAFETY_FLAG, self._unset_flag),
        ]

    async def _uncordon(self):
        await self._mutate(f"Uncordoning node {self.node}",
                           lambda: self.client.set_node_unschedulable(self.node, False))

    async def _restore_workloads(self):
        plan = self.plan
        mons = [w.name for w in plan.workloads
                if w.category == WorkloadCategory.MON and w.name not in self._skipped]
        last_mon = mons[-1] if mons else None

        for w in plan.workloads:
            if w.name in self._skipped:
                self._skip(f"{w.name} no longer exists", w.name)
                continue

            target = plan.restore_target(w)

            async def call(w=w, target=target):
                await self.client.scale_deployment(
                    w.namespace, w.name, target, {ORIGINAL_REPLICAS_ANNOTATION: None}
                )
                await wait_for_ready(self.client, self._ctx, w.namespace, w.name, target,
                                     **self._wait_args())

            await self._mutate(f"Scaling {w.name} to {target}", call, w.name)
            self._processed += 1

            if w.name == last_mon:
                await self._mutate(
                    "Waiting for monitor quorum",
                    lambda: wait_for_quorum(self.client, self._ctx, plan.namespace,
                                            **self._wait_args()),
                )

    async def _scale_operator_up(self):
        plan = self.plan
        if not plan.operator_present:
            self._skip(f"Operator {plan.operator_name} not found", plan.operator_name)
            return
        target = plan.operator_restore_target

        async def call():
            await self.client.scale_deployment(plan.operator_namespace, plan.operator_name,
                                               target, {ORIGINAL_REPLICAS_ANNOTATION: None})
            await wait_for_ready(self.client, self._ctx, plan.operator_namespace,
                                 plan.operator_name, target, **self._wait_args())

        await self._mutate(f"Scaling {plan.operator_name} to {target}", call,
                           plan.operator_name)

    async def _unset_flag(self):
        flag = self.config.safety_flag
        await self._mutate(f"Unsetting Ceph {flag} flag",
                           lambda: self.client.unset_ceph_flag(self.config.namespace, flag))

    def _wait_args(self):
        return {
            "timeout": self.config.timeouts.wait_deployment_seconds,
            "interval": self.config.timeouts.poll_interval_seconds,
        }


async def _no_conflict(config: MaintenanceConfig) -> ConflictWarning:
    return ConflictWarning(safety_flag=config.safety_flag)
