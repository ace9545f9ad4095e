"""
工作负载排序策略

下线: osd → mon → mgr → mds → rgw → exporter → crashcollector → 其他
上线: mon → osd → mgr → mds → rgw → exporter → crashcollector → 其他

先停 OSD 再停 MON, 缩短写入不可用窗口; 上线时 MON 先恢复仲裁,
OSD 才能正确上报状态。同一类别内按名称排序, 未识别类别排在最后。
"""

from typing import Dict, List, Sequence

from .models import ManagedWorkload, WorkloadCategory

DOWN_ORDER = [
    WorkloadCategory.OSD,
    WorkloadCategory.MON,
    WorkloadCategory.MGR,
    WorkloadCategory.MDS,
    WorkloadCategory.RGW,
    WorkloadCategory.EXPORTER,
    WorkloadCategory.CRASHCOLLECTOR,
]

UP_ORDER = [
    WorkloadCategory.MON,
    WorkloadCategory.OSD,
    WorkloadCategory.MGR,
    WorkloadCategory.MDS,
    WorkloadCategory.RGW,
    WorkloadCategory.EXPORTER,
    WorkloadCategory.CRASHCOLLECTOR,
]


def _order(workloads: Sequence[ManagedWorkload],
           order: List[WorkloadCategory]) -> List[ManagedWorkload]:
    ranks: Dict[WorkloadCategory, int] = {c: i for i, c in enumerate(order)}
    unrecognized = len(order)

    def sort_key(w: ManagedWorkload):
        rank = ranks.get(w.category, unrecognized)
        # 未识别类别之间保持发现顺序
        if rank == unrecognized:
            return (rank, "")
        return (rank, w.name)

    # sorted 是稳定排序
    return sorted(workloads, key=sort_key)


def order_for_down(workloads: Sequence[ManagedWorkload]) -> List[ManagedWorkload]:
    return _order(workloads, DOWN_ORDER)


def order_for_up(workloads: Sequence[ManagedWorkload]) -> List[ManagedWorkload]:
    return _order(workloads, UP_ORDER)
