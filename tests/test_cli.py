#!/usr/bin/env python3
"""
测试命令行的监控表格渲染与参数解析
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rich.console import Console

from rook_node_maint.cli.main import build_parser, render_snapshot
from rook_node_maint.collectors.models import NodeInfo
from rook_node_maint.monitoring import MonitorSnapshot, SourceName, SourceReading
from rook_node_maint.monitoring.models import utcnow


def render_text(snapshot):
    console = Console(record=True, width=200)
    console.print(render_snapshot(snapshot))
    return console.export_text()


def test_render_node_row_with_kubelet_version():
    node = NodeInfo(name="worker-01", ready=True, kubelet_version="v1.30.1")
    snapshot = MonitorSnapshot(
        node_name="worker-01",
        node=SourceReading(source=SourceName.NODE, value=node, updated_at=utcnow()),
    )

    text = render_text(snapshot)
    assert "Ready=True cordoned=False kubelet=v1.30.1" in text


def test_render_without_data():
    text = render_text(MonitorSnapshot(node_name="worker-01"))
    assert "worker-01" in text
    assert "kubelet=" not in text
    for source in SourceName:
        assert source.value in text


def test_parser_subcommands():
    parser = build_parser()

    args = parser.parse_args(["down", "worker-01", "--yes"])
    assert args.command == "down"
    assert args.node == "worker-01"
    assert args.yes

    args = parser.parse_args(["monitor", "worker-02", "--duration", "5"])
    assert args.command == "monitor"
    assert args.duration == 5


if __name__ == "__main__":
    import pytest
    sys.exit(pytest.main([__file__, "-v"]))
