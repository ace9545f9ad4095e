#!/usr/bin/env python3
"""
测试上线阶段编排 (恢复顺序、副本数恢复、仲裁等待、缺失工作负载确认)
"""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rook_node_maint.collectors.models import ORIGINAL_REPLICAS_ANNOTATION
from rook_node_maint.maintenance import (
    OutcomeStatus,
    PhaseOrchestrator,
    ProgressStatus,
    UpPhaseState,
)
from rook_node_maint.utils.errors import (
    ExecutionError,
    InvalidTransitionError,
    MissingWorkloadsError,
    NextAction,
    WaitTimeoutError,
)

from fake_cluster import fast_config, make_cluster

NODE = "worker-01"

UP_ORDER = [
    "rook-ceph-mon-a",
    "rook-ceph-osd-0",
    "rook-ceph-osd-1",
    "rook-ceph-exporter-worker-01",
    "rook-ceph-crashcollector-worker-01",
]


async def collect(execution):
    events = [event async for event in execution.events()]
    return events, await execution.outcome()


async def retry_and_collect(orch):
    return await collect(orch.retry())


async def run_phase(orch, acknowledge_missing=False):
    await orch.prepare()
    orch.confirm(True, acknowledge_missing)
    return await collect(orch.execute())


def maintained_cluster():
    """worker-01 已经完成下线的集群 (osd-1 原来 2 副本, operator 原来 2 副本)"""
    cluster = make_cluster()
    cluster.add_deployment("rook-ceph-osd-1", node=NODE, replicas=2)
    cluster.add_deployment("rook-ceph-operator", replicas=2)

    down = PhaseOrchestrator.for_down(cluster, fast_config(), NODE)
    _, outcome = asyncio.run(run_phase(down))
    assert outcome.status == OutcomeStatus.COMPLETED
    cluster.mutations.clear()
    cluster.calls.clear()
    return cluster


def call_index(cluster, call):
    return cluster.calls.index(call)


def test_up_phase_restores_everything():
    cluster = maintained_cluster()
    orch = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)

    async def scenario():
        review = await orch.prepare()
        assert orch.state == UpPhaseState.CONFIRM
        assert review.plan.workload_names == UP_ORDER
        assert review.plan.restore_targets["rook-ceph-osd-1"] == 2
        assert review.plan.restore_targets["rook-ceph-mon-a"] == 1
        assert review.plan.operator_restore_target == 2
        orch.confirm(True)
        return await collect(orch.execute())

    events, outcome = asyncio.run(scenario())

    assert outcome.status == OutcomeStatus.COMPLETED
    assert outcome.workloads_processed == 5
    assert orch.state == UpPhaseState.COMPLETE

    cleared = {ORIGINAL_REPLICAS_ANNOTATION: None}
    expected_scales = [("scale", name, 2 if name == "rook-ceph-osd-1" else 1, cleared)
                       for name in UP_ORDER]
    assert cluster.mutations == (
        [("uncordon", NODE)]
        + expected_scales
        + [("scale", "rook-ceph-operator", 2, cleared), ("unset_flag", "noout")]
    )

    for name in UP_ORDER:
        dep = cluster.deployment(name)
        assert ORIGINAL_REPLICAS_ANNOTATION not in dep.annotations
        assert statuses(events, name) == [ProgressStatus.RUNNING, ProgressStatus.SUCCESS]
    assert cluster.deployment("rook-ceph-osd-1").replicas == 2
    assert cluster.deployment("rook-ceph-operator").replicas == 2
    assert not cluster.nodes[NODE].cordoned
    assert cluster.flags == []
    assert orch.machine.history[-6:] == [
        UpPhaseState.PRE_FLIGHT,
        UpPhaseState.UNCORDONING,
        UpPhaseState.RESTORING_WORKLOADS,
        UpPhaseState.SCALING_OPERATOR,
        UpPhaseState.UNSETTING_SAFETY_FLAG,
        UpPhaseState.COMPLETE,
    ]


def statuses(events, workload):
    return [e.status for e in events if e.workload == workload]


def test_quorum_wait_after_last_mon():
    """最后一个 mon 恢复后等待仲裁, 之后才恢复 OSD"""
    cluster = maintained_cluster()
    cluster.quorum_pending = 3
    orch = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)

    _, outcome = asyncio.run(run_phase(orch))

    assert outcome.status == OutcomeStatus.COMPLETED
    quorum_calls = [i for i, c in enumerate(cluster.calls) if c[0] == "get_monitor_status"]
    assert len(quorum_calls) == 4
    assert call_index(cluster, ("scale_deployment", "rook-ceph-mon-a")) < quorum_calls[0]
    assert quorum_calls[-1] < call_index(cluster, ("scale_deployment", "rook-ceph-osd-0"))


def test_quorum_timeout_is_execution_error():
    cluster = maintained_cluster()
    cluster.quorum_pending = 10 ** 6
    orch = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)

    _, outcome = asyncio.run(run_phase(orch))

    assert outcome.status == OutcomeStatus.ERROR
    assert outcome.failed_stage == UpPhaseState.RESTORING_WORKLOADS.value
    assert isinstance(outcome.error, ExecutionError)
    assert isinstance(outcome.error.cause, WaitTimeoutError)
    # OSD 还没有恢复
    assert cluster.deployment("rook-ceph-osd-0").replicas == 0


def test_restore_target_defaults_to_one():
    cluster = make_cluster()
    cluster.add_deployment("rook-ceph-osd-0", node=NODE, replicas=0)
    orch = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)

    review = asyncio.run(orch.prepare())
    assert review.plan.workload_names == ["rook-ceph-osd-0"]
    assert review.plan.restore_target(review.plan.workloads[0]) == 1


def test_up_nothing_to_do_on_healthy_node():
    cluster = make_cluster()
    orch = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)
    review = asyncio.run(orch.prepare())
    assert review.nothing_to_do
    assert orch.state == UpPhaseState.NOTHING_TO_DO


def test_up_after_restore_is_nothing_to_do():
    cluster = maintained_cluster()
    _, outcome = asyncio.run(run_phase(PhaseOrchestrator.for_up(cluster, fast_config(), NODE)))
    assert outcome.status == OutcomeStatus.COMPLETED

    again = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)
    assert asyncio.run(again.prepare()).nothing_to_do


def test_missing_workload_requires_acknowledgement():
    cluster = maintained_cluster()
    orch = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)

    async def first_attempt():
        await orch.prepare()
        orch.confirm(True)
        cluster.remove_deployment("rook-ceph-exporter-worker-01")
        return await collect(orch.execute())

    _, outcome = asyncio.run(first_attempt())

    assert outcome.status == OutcomeStatus.ERROR
    assert isinstance(outcome.error, MissingWorkloadsError)
    assert outcome.error.missing == ["rook-ceph-exporter-worker-01"]
    assert outcome.next_action == NextAction.ACKNOWLEDGE
    assert outcome.failed_stage == UpPhaseState.PRE_FLIGHT.value
    assert cluster.mutations == []

    orch.acknowledge_missing()
    events, retry_outcome = asyncio.run(retry_and_collect(orch))

    assert retry_outcome.status == OutcomeStatus.COMPLETED
    assert retry_outcome.workloads_processed == 4
    assert statuses(events, "rook-ceph-exporter-worker-01") == [ProgressStatus.SKIPPED]
    restored = [name for name, _ in cluster.scaled() if name != "rook-ceph-operator"]
    assert restored == [n for n in UP_ORDER if n != "rook-ceph-exporter-worker-01"]


def test_missing_workload_acknowledged_at_confirmation():
    cluster = maintained_cluster()
    orch = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)

    async def scenario():
        await orch.prepare()
        orch.confirm(True, acknowledge_missing=True)
        cluster.remove_deployment("rook-ceph-crashcollector-worker-01")
        return await collect(orch.execute())

    _, outcome = asyncio.run(scenario())
    assert outcome.status == OutcomeStatus.COMPLETED
    assert outcome.workloads_processed == 4


def test_restore_failure_stops_at_failing_workload():
    cluster = maintained_cluster()
    cluster.fail("scale_deployment", times=1, name="rook-ceph-osd-1")
    orch = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)

    events, outcome = asyncio.run(run_phase(orch))

    assert outcome.status == OutcomeStatus.ERROR
    assert outcome.error.workload == "rook-ceph-osd-1"
    assert outcome.workloads_processed == 2
    assert statuses(events, "rook-ceph-exporter-worker-01") == []
    # 已完成的步骤保留, flag 没有被取消
    assert not cluster.nodes[NODE].cordoned
    assert cluster.flags == ["noout"]

    _, retry_outcome = asyncio.run(retry_and_collect(orch))
    assert retry_outcome.status == OutcomeStatus.COMPLETED
    assert cluster.flags == []


def test_retry_only_from_error_or_cancelled():
    cluster = maintained_cluster()
    orch = PhaseOrchestrator.for_up(cluster, fast_config(), NODE)
    asyncio.run(orch.prepare())
    with pytest.raises(InvalidTransitionError):
        orch.retry()


if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
