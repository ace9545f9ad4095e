"""
Ceph 命令输出解析

输入均为 `ceph ... --format json` 的 JSON 文本或已解码的字典。
"""

import json
from typing import Any, Dict, List, Union

from .models import (
    CephFlags,
    CephHealthStatus,
    CephStatus,
    MonitorStatus,
    OsdInfo,
    OsdTree,
)

# ceph osd dump 中可能出现的集群标志
KNOWN_FLAGS = [
    "noout",
    "noin",
    "nodown",
    "noup",
    "norebalance",
    "norecover",
    "noscrub",
    "nodeep-scrub",
    "nobackfill",
    "pause",
]

JsonInput = Union[str, bytes, Dict[str, Any]]


def _load(raw: JsonInput, what: str) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ValueError(f"failed to parse {what} JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"failed to parse {what} JSON: expected an object")
    return data


def parse_flags(flags: str) -> List[str]:
    """解析逗号分隔的标志字符串

    `ceph osd dump` 的 flags 形如 "noout,sortbitwise,recovery_deletes",
    空字符串返回空列表。
    """
    if not flags:
        return []
    return [f.strip() for f in flags.split(",") if f.strip()]


def parse_osd_dump_flags(raw: JsonInput) -> CephFlags:
    data = _load(raw, "ceph osd dump")
    return CephFlags(flags=parse_flags(data.get("flags") or ""))


def parse_ceph_status(raw: JsonInput) -> CephStatus:
    """解析 `ceph status --format json`"""
    data = _load(raw, "ceph status")

    health = data.get("health") or {}
    try:
        status = CephHealthStatus(health.get("status", "UNKNOWN"))
    except ValueError:
        status = CephHealthStatus.UNKNOWN

    messages = []
    # checks 是以检查名为键的字典, 按键排序保证输出稳定
    checks = health.get("checks") or {}
    for name in sorted(checks):
        message = ((checks[name] or {}).get("summary") or {}).get("message", "")
        if message:
            messages.append(message)

    osdmap = data.get("osdmap") or {}
    # 旧版本 ceph 会多嵌套一层 osdmap
    if "osdmap" in osdmap:
        osdmap = osdmap["osdmap"]
    monmap = data.get("monmap") or {}
    pgmap = data.get("pgmap") or {}

    pg_states = {}
    for entry in pgmap.get("pgs_by_state") or []:
        pg_states[entry.get("state_name", "")] = int(entry.get("count", 0))

    mon_count = monmap.get("num_mons")
    if mon_count is None:
        mon_count = len(monmap.get("mons") or [])

    return CephStatus(
        health=status,
        health_messages=messages,
        osd_count=int(osdmap.get("num_osds", 0)),
        osds_up=int(osdmap.get("num_up_osds", 0)),
        osds_in=int(osdmap.get("num_in_osds", 0)),
        mon_count=int(mon_count),
        num_pgs=int(pgmap.get("num_pgs", 0)),
        pg_states=pg_states,
        bytes_used=int(pgmap.get("bytes_used", 0)),
        bytes_total=int(pgmap.get("bytes_total", 0)),
        bytes_avail=int(pgmap.get("bytes_avail", 0)),
    )


def parse_quorum_status(raw: JsonInput) -> MonitorStatus:
    """解析 `ceph quorum_status --format json`"""
    data = _load(raw, "ceph quorum_status")
    monmap = data.get("monmap") or {}
    monitors = [m.get("name", "") for m in monmap.get("mons") or []]
    return MonitorStatus(
        monitors=monitors,
        quorum=list(data.get("quorum_names") or []),
        leader=data.get("quorum_leader_name", ""),
        election_epoch=int(data.get("election_epoch", 0)),
    )


def parse_osd_tree(raw: JsonInput) -> OsdTree:
    """解析 `ceph osd tree --format json`

    只保留挂在 host 节点下的 OSD; in 状态由 reweight > 0 推断。
    """
    data = _load(raw, "ceph osd tree")
    nodes = data.get("nodes") or []

    host_of: Dict[int, str] = {}
    for node in nodes:
        if node.get("type") == "host":
            for child in node.get("children") or []:
                host_of[child] = node.get("name", "")

    osds = []
    for node in nodes:
        if node.get("type") != "osd":
            continue
        osd_id = node.get("id")
        if osd_id not in host_of:
            continue
        reweight = float(node.get("reweight", 0) or 0)
        osds.append(OsdInfo(
            id=osd_id,
            name=node.get("name", f"osd.{osd_id}"),
            host=host_of[osd_id],
            up=node.get("status") == "up",
            in_cluster=reweight > 0,
            reweight=reweight,
        ))

    osds.sort(key=lambda o: o.id)
    return OsdTree(osds=osds)
