#!/usr/bin/env python3
"""
测试排序策略
"""

import os
import random
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rook_node_maint.maintenance.discovery import classify_workload
from rook_node_maint.maintenance.models import ManagedWorkload, WorkloadCategory
from rook_node_maint.maintenance.ordering import order_for_down, order_for_up


def _workloads(*names):
    return [
        ManagedWorkload(namespace="rook-ceph", name=n, target_node="worker-01",
                        category=classify_workload(n))
        for n in names
    ]


def _names(workloads):
    return [w.name for w in workloads]


def test_scenario_order():
    """crashcollector / mon-a / exporter / osd-0 的上下线顺序"""
    workloads = _workloads("crashcollector", "mon-a", "exporter", "osd-0")
    assert _names(order_for_down(workloads)) == ["osd-0", "mon-a", "exporter", "crashcollector"]
    assert _names(order_for_up(workloads)) == ["mon-a", "osd-0", "exporter", "crashcollector"]


def test_unrecognized_last_in_discovery_order():
    workloads = _workloads("zeta", "rook-ceph-osd-1", "alpha", "rook-ceph-mon-b", "rook-ceph-osd-0")
    down = _names(order_for_down(workloads))
    assert down == ["rook-ceph-osd-0", "rook-ceph-osd-1", "rook-ceph-mon-b", "zeta", "alpha"]
    up = _names(order_for_up(workloads))
    assert up == ["rook-ceph-mon-b", "rook-ceph-osd-0", "rook-ceph-osd-1", "zeta", "alpha"]


def test_ordering_properties_random():
    """任意输入: 下线 osd 全部在 mon 之前, 上线 mon 全部在 osd 之前, 未识别的在最后"""
    pool = [
        "rook-ceph-osd-0", "rook-ceph-osd-1", "rook-ceph-osd-2",
        "rook-ceph-mon-a", "rook-ceph-mon-b",
        "rook-ceph-mgr-a", "rook-ceph-exporter-n1", "rook-ceph-crashcollector-n1",
        "rook-ceph-tools", "something-else", "another",
    ]
    recognized = {WorkloadCategory.OSD, WorkloadCategory.MON, WorkloadCategory.MGR,
                  WorkloadCategory.MDS, WorkloadCategory.RGW, WorkloadCategory.EXPORTER,
                  WorkloadCategory.CRASHCOLLECTOR}
    rng = random.Random(42)

    for _ in range(50):
        sample = rng.sample(pool, rng.randint(1, len(pool)))
        workloads = _workloads(*sample)

        for ordered, first, second in (
            (order_for_down(workloads), WorkloadCategory.OSD, WorkloadCategory.MON),
            (order_for_up(workloads), WorkloadCategory.MON, WorkloadCategory.OSD),
        ):
            categories = [w.category for w in ordered]
            if first in categories and second in categories:
                last_first = max(i for i, c in enumerate(categories) if c == first)
                first_second = min(i for i, c in enumerate(categories) if c == second)
                assert last_first < first_second, f"顺序错误: {_names(ordered)}"

            seen_unrecognized = False
            for c in categories:
                if c not in recognized:
                    seen_unrecognized = True
                else:
                    assert not seen_unrecognized, f"未识别类别不在最后: {_names(ordered)}"

            # 未识别类别保持输入顺序
            unrec_in = [w.name for w in workloads if w.category not in recognized]
            unrec_out = [w.name for w in ordered if w.category not in recognized]
            assert unrec_in == unrec_out


def test_ordering_does_not_mutate_input():
    workloads = _workloads("rook-ceph-mon-a", "rook-ceph-osd-0")
    before = list(workloads)
    order_for_down(workloads)
    assert workloads == before


if __name__ == "__main__":
    import pytest
    sys.exit(pytest.main([__file__, "-v"]))
