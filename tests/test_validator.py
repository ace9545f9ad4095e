#!/usr/bin/env python3
"""
测试预检校验: 全部检查都被执行并报告, 不在第一个失败处停止
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rook_node_maint.maintenance.validator import PreflightValidator, required_permissions
from rook_node_maint.utils.errors import TransientClusterError

from fake_cluster import fast_config, make_cluster


def _by_check(results):
    return {r.check: r for r in results.results}


def test_validate_down_all_pass():
    cluster = make_cluster()
    config = fast_config()
    results = asyncio.run(PreflightValidator(cluster, config).validate_down("worker-01"))

    assert results.all_passed, [r.check for r in results.failed()]
    # 连通性 + 节点 + 命名空间 + tools + 权限
    assert len(results) == 2 + 1 + 1 + len(required_permissions(config))


def test_validate_down_missing_node_reports_everything():
    """节点不存在: Node existence 失败, 其他检查仍然全部执行"""
    cluster = make_cluster()
    config = fast_config()
    results = asyncio.run(PreflightValidator(cluster, config).validate_down("ghost"))

    assert not results.all_passed
    checks = _by_check(results)
    assert not checks["Node existence"].passed
    assert checks["Node existence"].message == "Node ghost not found"
    assert checks["Cluster connectivity"].passed
    assert checks["Namespace rook-ceph"].passed
    assert checks["rook-ceph-tools deployment"].passed
    assert len(results) == 4 + len(required_permissions(config))
    assert [r.check for r in results.failed()] == ["Node existence"]


def test_validate_reports_every_failure():
    cluster = make_cluster()
    cluster.remove_deployment("rook-ceph-tools")
    cluster.denied = {"patch nodes", "create pods/exec"}
    config = fast_config()

    results = asyncio.run(PreflightValidator(cluster, config).validate_down("worker-01"))
    failed = [r.check for r in results.failed()]

    assert "rook-ceph-tools deployment" in failed
    assert "RBAC: patch nodes [cluster]" in failed
    assert "RBAC: create pods/exec [rook-ceph]" in failed
    assert len(failed) == 3
    denied = _by_check(results)["RBAC: patch nodes [cluster]"]
    assert denied.message == "Permission denied - contact cluster admin"


def test_tools_without_ready_replicas_fails():
    cluster = make_cluster()
    cluster.add_deployment("rook-ceph-tools", ready=0)
    results = asyncio.run(PreflightValidator(cluster, fast_config()).validate_down("worker-01"))
    tools = _by_check(results)["rook-ceph-tools deployment"]
    assert not tools.passed
    assert "no ready replicas" in tools.message


def test_validate_up_skips_tools_check():
    cluster = make_cluster()
    cluster.remove_deployment("rook-ceph-tools")
    results = asyncio.run(PreflightValidator(cluster, fast_config()).validate_up("worker-01"))
    assert results.all_passed
    assert "rook-ceph-tools deployment" not in _by_check(results)


def test_permission_query_failure_treated_as_denied():
    cluster = make_cluster()
    cluster.fail("can_i", TransientClusterError("connection refused"), name="patch nodes")
    results = asyncio.run(PreflightValidator(cluster, fast_config()).validate_up("worker-01"))

    check = _by_check(results)["RBAC: patch nodes [cluster]"]
    assert not check.passed
    assert check.message.startswith("Unable to verify permission - treated as denied")
    assert len(results.failed()) == 1


def test_operator_namespace_adds_checks():
    cluster = make_cluster()
    cluster.namespaces.add("rook-operator")
    config = fast_config(operator_namespace="rook-operator")
    results = asyncio.run(PreflightValidator(cluster, config).validate_up("worker-01"))

    checks = _by_check(results)
    assert checks["Namespace rook-operator"].passed
    assert "RBAC: patch apps/deployments [rook-operator]" in checks


def test_connectivity_failure():
    cluster = make_cluster()
    cluster.fail("get_node", TransientClusterError("unable to connect to the server"))
    results = asyncio.run(PreflightValidator(cluster, fast_config()).validate_up("worker-01"))
    checks = _by_check(results)
    assert not checks["Cluster connectivity"].passed
    assert not checks["Node existence"].passed


if __name__ == "__main__":
    import pytest
    sys.exit(pytest.main([__file__, "-v"]))
