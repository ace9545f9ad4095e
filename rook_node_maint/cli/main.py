#!/usr/bin/env python3
"""
Rook-Ceph 节点维护工具

- down: 下线节点 (cordon → noout → 停 operator → 按顺序停工作负载)
- up: 恢复节点 (uncordon → 按顺序恢复工作负载 → 启动 operator → 取消 noout)
- monitor: 实时查看节点、Ceph 与工作负载健康状态
"""

import argparse
import asyncio
import signal
import sys
from typing import Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Confirm
from rich.table import Table

from rook_node_maint.collectors.k8s_client import get_k8s_client
from rook_node_maint.config import MaintenanceConfig, load_config
from rook_node_maint.maintenance import (
    OutcomeStatus,
    PhaseExecution,
    PhaseOrchestrator,
    PhaseOutcome,
    PlanReview,
    ProgressStatus,
)
from rook_node_maint.monitoring import ClusterMonitor, MonitorSnapshot, SourceName
from rook_node_maint.utils import (
    ConfigurationError,
    DiscoveryError,
    MaintenanceError,
    MissingWorkloadsError,
    NextAction,
    setup_logging,
)

console = Console()

_STATUS_ICONS = {
    ProgressStatus.RUNNING: "[cyan]⏳[/cyan]",
    ProgressStatus.SUCCESS: "[green]✅[/green]",
    ProgressStatus.ERROR: "[red]❌[/red]",
    ProgressStatus.SKIPPED: "[dim]⏭️[/dim]",
}

_NEXT_ACTION_TEXT = {
    NextAction.RETRY: "重试 (retry)",
    NextAction.ACKNOWLEDGE: "确认后继续 (acknowledge)",
    NextAction.EXIT: "退出并人工检查 (exit)",
}


def print_header(title: str):
    """打印标题"""
    console.print()
    console.print(Panel(f"[bold cyan]{title}[/bold cyan]", expand=False))
    console.print()


def print_review(review: PlanReview):
    """打印计划、预检结果与冲突警告"""
    plan = review.plan

    table = Table(title=f"📋 {plan.phase.value} 计划 - 节点 {plan.node}")
    table.add_column("#", justify="right")
    table.add_column("Deployment")
    table.add_column("类别")
    table.add_column("当前副本", justify="right")
    table.add_column("目标副本", justify="right")
    for i, w in enumerate(plan.workloads, 1):
        target = 0 if plan.phase.value == "down" else plan.restore_target(w)
        table.add_row(str(i), w.name, w.category.value, str(w.replicas), str(target))
    console.print(table)

    console.print(
        f"[dim]节点 cordoned={plan.node_cordoned}  "
        f"{plan.safety_flag}={'已设置' if plan.safety_flag_set else '未设置'}  "
        f"operator 副本={plan.operator_replicas if plan.operator_present else '不存在'}[/dim]"
    )
    console.print()

    console.print("[bold]🔍 预检结果:[/bold]")
    for r in review.validation.results:
        icon = "[green]✅[/green]" if r.passed else "[red]❌[/red]"
        console.print(f"  {icon} {r.check}: {r.message}")
    console.print()

    if review.conflict.has_conflict:
        console.print(Panel(review.conflict.message, border_style="yellow",
                            title="⚠️  并发维护"))
        console.print("[yellow]同时下线多个节点会影响 Ceph 可用性和数据冗余, 请确认风险后再继续。[/yellow]")
        console.print()


def report_error(error: MaintenanceError, stage: Optional[str] = None):
    """打印错误与建议的下一步操作"""
    where = f" (阶段: {stage})" if stage else ""
    console.print(f"[red]❌ 失败{where}: {error}[/red]")
    if isinstance(error, MissingWorkloadsError):
        for name in error.missing:
            console.print(f"  [yellow]- {name}[/yellow]")
    results = getattr(error, "results", None)
    if results is not None:
        for r in results.failed():
            console.print(f"  [red]- {r.check}: {r.message}[/red]")
    console.print(f"[bold]👉 建议操作:[/bold] {_NEXT_ACTION_TEXT[error.next_action]}")
    console.print(f"[dim]{error.hint}[/dim]")


async def stream_execution(execution: PhaseExecution) -> PhaseOutcome:
    """输出进度事件; Ctrl-C 映射为取消请求"""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, execution.cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    try:
        async for event in execution.events():
            icon = _STATUS_ICONS[event.status]
            console.print(f"  {icon} [dim]{event.stage}[/dim] {event.description}")
        outcome = await execution.outcome()
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)

    if outcome.dropped_events:
        console.print(f"[dim]({outcome.dropped_events} 条进度事件因输出过慢被丢弃)[/dim]")
    return outcome


async def run_phase(phase: str, node: str, config: MaintenanceConfig,
                    assume_yes: bool = False, acknowledge_missing: bool = False) -> int:
    """执行 down / up 阶段, 返回退出码"""
    client = get_k8s_client(config)
    if phase == "down":
        orch = PhaseOrchestrator.for_down(client, config, node)
        print_header(f"🔧 节点下线: {node}")
    else:
        orch = PhaseOrchestrator.for_up(client, config, node)
        print_header(f"🚀 节点恢复: {node}")

    console.print("[bold]🔍 构建维护计划...[/bold]")
    try:
        review = await orch.prepare()
    except DiscoveryError as e:
        report_error(e)
        return 1

    print_review(review)

    if review.nothing_to_do:
        console.print(f"[green]✅ {orch.state.description}, 无需操作[/green]")
        return 0

    accepted = assume_yes or Confirm.ask("是否继续执行?", default=False)
    if orch.confirm(accepted, acknowledge_missing) is not None:
        console.print("[yellow]已取消, 集群未做任何修改[/yellow]")
        return 0

    outcome = await stream_execution(orch.execute())

    while outcome.status == OutcomeStatus.ERROR:
        report_error(outcome.error, outcome.failed_stage)
        if assume_yes:
            return 1

        if isinstance(outcome.error, MissingWorkloadsError):
            if not Confirm.ask("跳过这些已不存在的 Deployment 并继续?", default=False):
                return 1
            orch.acknowledge_missing()
        elif outcome.next_action != NextAction.RETRY or not Confirm.ask("是否重试?", default=False):
            return 1

        outcome = await stream_execution(orch.retry())

    if outcome.status == OutcomeStatus.CANCELLED:
        console.print(f"[yellow]⚠️  执行已取消 (阶段: {outcome.failed_stage}), "
                      f"已完成的操作不会回滚[/yellow]")
        console.print(f"[bold]👉 建议操作:[/bold] {_NEXT_ACTION_TEXT[NextAction.RETRY]}")
        return 130

    console.print()
    console.print(f"[green]✅ 完成: 处理了 {outcome.workloads_processed} 个 Deployment, "
                  f"耗时 {outcome.elapsed_seconds:.1f}s[/green]")
    return 0


def render_snapshot(snapshot: MonitorSnapshot) -> Table:
    """把监控快照渲染为表格"""
    health = snapshot.health
    color = health.status_color()
    table = Table(title=f"📊 {snapshot.node_name} - [{color}]{health.status.value}[/{color}]")
    table.add_column("数据源")
    table.add_column("状态")
    table.add_column("更新时间")

    node = snapshot.node_status
    if node is not None:
        node_text = f"Ready={node.ready} cordoned={node.cordoned}"
        if node.kubelet_version:
            node_text += f" kubelet={node.kubelet_version}"
    else:
        node_text = "-"

    ceph = snapshot.storage_status
    if ceph is not None:
        ceph_text = (f"[{ceph.health_color()}]{ceph.health.value}[/{ceph.health_color()}] "
                     f"OSD {ceph.osds_up}/{ceph.osd_count} up, MON {ceph.mon_count}")
    else:
        ceph_text = "-"

    workloads = snapshot.workloads_status
    if workloads is not None:
        workload_text = ", ".join(
            f"{category.value}: {sum(1 for d in deps if d.status.value == 'Ready')}/{len(deps)}"
            for category, deps in workloads.by_category().items()
        ) or "无"
    else:
        workload_text = "-"

    daemons = snapshot.daemon_status
    if daemons is not None:
        daemon_text = f"OSD up+in {daemons.up_and_in}/{len(daemons.osds)} noout={daemons.noout_set}"
    else:
        daemon_text = "-"

    texts = {
        SourceName.NODE: node_text,
        SourceName.STORAGE: ceph_text,
        SourceName.WORKLOADS: workload_text,
        SourceName.DAEMONS: daemon_text,
    }
    for source in SourceName:
        reading = snapshot.reading(source)
        text = texts[source]
        if reading.stale:
            text += f" [red](stale: {reading.error})[/red]"
        updated = reading.updated_at.strftime("%H:%M:%S") if reading.updated_at else "-"
        table.add_row(source.value, text, updated)

    for reason in health.reasons:
        table.add_row("", f"[{color}]• {reason}[/{color}]", "")
    return table


async def run_monitor(node: str, config: MaintenanceConfig,
                      duration: Optional[float] = None) -> int:
    client = get_k8s_client(config)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + duration if duration else None
    refresh = config.monitor.k8s_refresh_ms / 1000

    async with ClusterMonitor(client, config, node) as monitor:
        with Live(render_snapshot(monitor.latest()), console=console,
                  refresh_per_second=4) as live:
            while deadline is None or loop.time() < deadline:
                await asyncio.sleep(refresh)
                live.update(render_snapshot(monitor.latest()))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rook-node-maint",
        description="Rook-Ceph 节点维护工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  %(prog)s down worker-01
  %(prog)s up worker-01 --yes
  %(prog)s monitor worker-01 --duration 60
        """
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("node", help="节点名称")
    common.add_argument("--config", help="配置文件路径")
    common.add_argument("--namespace", help="Rook-Ceph 集群命名空间")
    common.add_argument("--context", help="kubeconfig context")
    common.add_argument("--log-level", choices=["debug", "info", "warn", "error"],
                        help="日志级别")
    common.add_argument("--log-file", help="日志文件 (默认输出到 stderr)")

    phase_opts = argparse.ArgumentParser(add_help=False)
    phase_opts.add_argument("--yes", "-y", action="store_true",
                            help="跳过确认 (出错时不询问重试)")
    phase_opts.add_argument("--acknowledge-missing", action="store_true",
                            help="自动跳过已不存在的 Deployment")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("down", parents=[common, phase_opts], help="下线节点")
    sub.add_parser("up", parents=[common, phase_opts], help="恢复节点")
    monitor = sub.add_parser("monitor", parents=[common], help="监控节点健康状态")
    monitor.add_argument("--duration", type=float, help="运行时长 (秒, 默认直到 Ctrl-C)")
    return parser


def main(argv=None):
    """CLI 主入口"""
    args = build_parser().parse_args(argv)

    overrides = {
        "namespace": args.namespace,
        "kube_context": args.context,
        "logging": {"level": args.log_level, "file": args.log_file},
    }
    try:
        config = load_config(args.config, overrides)
    except ConfigurationError as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(2)

    setup_logging(config.logging.level, config.logging.format, config.logging.file)

    if args.command == "monitor":
        coro = run_monitor(args.node, config, args.duration)
    else:
        coro = run_phase(args.command, args.node, config,
                         assume_yes=args.yes, acknowledge_missing=args.acknowledge_missing)

    try:
        exit_code = asyncio.run(coro)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        console.print("\n[yellow]⚠️  用户中断[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
