#!/usr/bin/env python3
"""
测试健康聚合
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rook_node_maint.collectors.models import (
    CephHealthStatus,
    CephStatus,
    DeploymentCondition,
    DeploymentInfo,
    NodeInfo,
    OsdInfo,
)
from rook_node_maint.maintenance.models import WorkloadCategory
from rook_node_maint.monitoring.aggregation import (
    aggregate_health,
    determine_deployment_health,
    overall_deployment_status,
)
from rook_node_maint.monitoring.models import (
    DaemonStatus,
    DeploymentHealth,
    DeploymentHealthStatus,
    OverallHealth,
    WorkloadsStatus,
)

READY_NODE = NodeInfo(name="worker-01", ready=True)
HEALTHY_CEPH = CephStatus(health=CephHealthStatus.OK, osd_count=3, osds_up=3, osds_in=3, mon_count=3)


def _workloads(*statuses):
    deployments = tuple(
        DeploymentHealth(name=f"rook-ceph-osd-{i}", namespace="rook-ceph",
                         category=WorkloadCategory.OSD, status=s)
        for i, s in enumerate(statuses)
    )
    return WorkloadsStatus(deployments=deployments,
                           overall=overall_deployment_status(list(statuses)))


def _dep(replicas=1, ready=1, available=1, updated=1, status_replicas=1, conditions=None):
    return DeploymentInfo(
        namespace="rook-ceph", name="rook-ceph-osd-0", replicas=replicas,
        ready_replicas=ready, available_replicas=available, updated_replicas=updated,
        status_replicas=status_replicas, conditions=conditions or [],
    )


def test_deployment_health_states():
    available = DeploymentCondition(type="Available", status="True")
    assert determine_deployment_health(_dep(conditions=[available])) == DeploymentHealthStatus.READY
    assert determine_deployment_health(_dep(ready=0, available=0)) == DeploymentHealthStatus.UNAVAILABLE

    rolling = DeploymentCondition(type="Progressing", status="True", reason="ReplicaSetUpdated")
    assert (determine_deployment_health(_dep(replicas=2, conditions=[rolling]))
            == DeploymentHealthStatus.PROGRESSING)

    scaled = DeploymentCondition(type="Progressing", status="True", reason="NewReplicaSetAvailable")
    assert (determine_deployment_health(_dep(replicas=2, conditions=[scaled]))
            == DeploymentHealthStatus.SCALING)
    assert (determine_deployment_health(_dep(replicas=2, status_replicas=1))
            == DeploymentHealthStatus.SCALING)


def test_overall_deployment_status():
    assert overall_deployment_status([]) == DeploymentHealthStatus.READY
    assert overall_deployment_status(
        [DeploymentHealthStatus.READY, DeploymentHealthStatus.PROGRESSING]
    ) == DeploymentHealthStatus.SCALING
    assert overall_deployment_status(
        [DeploymentHealthStatus.SCALING, DeploymentHealthStatus.UNAVAILABLE]
    ) == DeploymentHealthStatus.UNAVAILABLE


def test_unknown_without_data():
    summary = aggregate_health(None, None, None)
    assert summary.status == OverallHealth.UNKNOWN
    assert summary.status_color() == "yellow"


def test_healthy():
    summary = aggregate_health(READY_NODE, HEALTHY_CEPH, _workloads(DeploymentHealthStatus.READY))
    assert summary.status == OverallHealth.HEALTHY
    assert summary.reasons == ()
    assert summary.status_color() == "green"
    assert (summary.osds_up, summary.osds_total) == (3, 3)


def test_critical_conditions():
    not_ready = NodeInfo(name="worker-01", ready=False)
    ceph_err = HEALTHY_CEPH.model_copy(update={"health": CephHealthStatus.ERR,
                                               "health_messages": ["1 pg inactive"]})
    unavailable = _workloads(DeploymentHealthStatus.READY, DeploymentHealthStatus.UNAVAILABLE)
    ready = _workloads(DeploymentHealthStatus.READY)

    summary = aggregate_health(not_ready, HEALTHY_CEPH, ready)
    assert summary.status == OverallHealth.CRITICAL
    assert "Node not ready" in summary.reasons

    summary = aggregate_health(READY_NODE, ceph_err, ready)
    assert summary.status == OverallHealth.CRITICAL
    assert "Ceph errors: 1 pg inactive" in summary.reasons

    summary = aggregate_health(READY_NODE, HEALTHY_CEPH, unavailable)
    assert summary.status == OverallHealth.CRITICAL
    assert "1 of 2 deployments unavailable" in summary.reasons
    assert summary.status_color() == "red"


def test_degraded_conditions():
    cordoned = NodeInfo(name="worker-01", ready=True, unschedulable=True)
    summary = aggregate_health(cordoned, HEALTHY_CEPH, _workloads(DeploymentHealthStatus.READY))
    assert summary.status == OverallHealth.DEGRADED
    assert summary.reasons == ("Node is cordoned",)

    warn = HEALTHY_CEPH.model_copy(update={"health": CephHealthStatus.WARN, "osds_up": 2})
    summary = aggregate_health(READY_NODE, warn, _workloads(DeploymentHealthStatus.SCALING))
    assert summary.status == OverallHealth.DEGRADED
    assert "Ceph cluster has warnings" in summary.reasons
    assert "1 of 3 OSDs are down" in summary.reasons
    assert "Deployments are scaling (0 of 1 healthy)" in summary.reasons


def test_missing_source_is_degraded():
    summary = aggregate_health(READY_NODE, None, _workloads(DeploymentHealthStatus.READY))
    assert summary.status == OverallHealth.DEGRADED
    assert "Ceph status unavailable" in summary.reasons


def test_node_daemons_take_precedence():
    daemons = DaemonStatus(osds=(
        OsdInfo(id=0, name="osd.0", host="worker-01", up=True, in_cluster=True, reweight=1),
        OsdInfo(id=1, name="osd.1", host="worker-01", up=False, in_cluster=True, reweight=1),
    ))
    summary = aggregate_health(READY_NODE, HEALTHY_CEPH,
                               _workloads(DeploymentHealthStatus.READY), daemons)
    assert summary.status == OverallHealth.DEGRADED
    assert (summary.osds_up, summary.osds_total) == (1, 2)
    assert "1 of 2 OSDs are down or out on this node" in summary.reasons


if __name__ == "__main__":
    import pytest
    sys.exit(pytest.main([__file__, "-v"]))
