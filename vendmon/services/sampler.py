"""
主机采样模块 (Host Sampler Module)

通过主机探针（默认基于 psutil）读取内存、CPU、磁盘和进程表，生成一次完整的 SnapshotReading，
并据此判定健康状态和问题列表。任何单项探测失败都只会让该项降级为占位值：
问题列表中追加描述，并在 degraded_metrics 中记录，规则引擎不会对占位值做判断。

Reads memory, CPU, disk and the process table through a host probe (psutil by default)
and produces one complete SnapshotReading with health status and issues. A failing
sub-probe only degrades that part to placeholder values: a description is appended to
issues and the metric is recorded in degraded_metrics so the rule engine never evaluates
a rule against a placeholder.

残留进程：命令行匹配已知的遗留工具模式（数据库迁移、打包工具等），且运行超过 5 分钟。
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Tuple

import psutil

from vendmon.core.clock import Clock
from vendmon.core.exceptions import SamplingFailure
from vendmon.models.enums import HealthStatus, Metric
from vendmon.schemas.performance import CpuReading, DiskReading, MemoryReading, SnapshotReading

logger = logging.getLogger(__name__)

MB = 1024 * 1024
GB = 1024 * 1024 * 1024

# 遗留工具进程的命令行模式 (Command-line patterns of leftover tool processes)
STALE_PROCESS_PATTERNS = [
    r"db:push",
    r"db:pull",
    r"drizzle-kit",
    r"drizzle-migrate",
    r"pnpm db",
    r"tsx.*db",
    r"tsx.*migrate",
    r"esbuild.*service",
]
_STALE_RE = [re.compile(p) for p in STALE_PROCESS_PATTERNS]

CRITICAL_THRESHOLD = 90.0
WARNING_THRESHOLD = 75.0


@dataclass
class ProcessInfo:
    """进程表中的一行 (One row of the process table)"""
    pid: int
    cmdline: str
    create_time: float  # 进程启动时间，epoch 秒 (start time, epoch seconds)


class HostProbe(Protocol):
    """主机探针协议，每个方法失败时直接抛出异常 (Host probe; methods raise on failure)"""

    def memory(self) -> MemoryReading: ...

    def cpu(self) -> CpuReading: ...

    def disk(self) -> DiskReading: ...

    def processes(self) -> List[ProcessInfo]: ...

    def terminate(self, pid: int) -> None: ...


class PsutilProbe:
    """
    基于 psutil 的默认主机探针 (Default psutil-backed host probe)

    CPU 使用率在 cpu_interval 秒内测量，保证采样不会无限阻塞。
    """

    def __init__(self, cpu_interval: float = 0.5, disk_path: str = "/"):
        self.cpu_interval = cpu_interval
        self.disk_path = disk_path

    def memory(self) -> MemoryReading:
        mem = psutil.virtual_memory()
        return MemoryReading(
            percent=round(mem.percent, 2),
            used_mb=int(mem.used / MB),
            total_mb=int(mem.total / MB),
        )

    def cpu(self) -> CpuReading:
        cpu_percent = psutil.cpu_percent(interval=self.cpu_interval)
        try:
            load1, _, _ = psutil.getloadavg()
        except (AttributeError, OSError):
            load1 = 0.0
        return CpuReading(
            percent=round(cpu_percent, 2),
            cores=psutil.cpu_count(logical=True) or 0,
            load_avg=round(load1, 2),
        )

    def disk(self) -> DiskReading:
        disk = psutil.disk_usage(self.disk_path)
        return DiskReading(
            percent=round(disk.percent, 2),
            used_gb=round(disk.used / GB, 2),
            total_gb=round(disk.total / GB, 2),
        )

    def processes(self) -> List[ProcessInfo]:
        result = []
        for proc in psutil.process_iter(["pid", "cmdline", "create_time"]):
            info = proc.info
            cmdline = " ".join(info.get("cmdline") or [])
            result.append(ProcessInfo(
                pid=info["pid"],
                cmdline=cmdline,
                create_time=info.get("create_time") or 0.0,
            ))
        return result

    def terminate(self, pid: int) -> None:
        psutil.Process(pid).terminate()


def is_stale_command(cmdline: str) -> bool:
    """命令行是否匹配遗留工具模式 (Does the command line match a leftover-tool pattern)"""
    return any(pattern.search(cmdline) for pattern in _STALE_RE)


def find_stale_processes(
    processes: List[ProcessInfo], now: datetime, max_age_seconds: int
) -> List[ProcessInfo]:
    now_ts = now.timestamp()
    return [
        p for p in processes
        if is_stale_command(p.cmdline) and now_ts - p.create_time > max_age_seconds
    ]


def classify_health(
    memory_percent: float, cpu_percent: float, disk_percent: float, stale_count: int
) -> Tuple[HealthStatus, List[str]]:
    """
    健康状态判定 (Health classification)

    任一指标 > 90 为 critical；否则任一 > 75 或存在残留进程为 warning；否则 healthy。

    Returns:
        (健康状态, 有序问题列表) ((health status, ordered issues))
    """
    issues: List[str] = []
    for label, value in (("Memory", memory_percent), ("CPU", cpu_percent), ("Disk", disk_percent)):
        if value > CRITICAL_THRESHOLD:
            issues.append(f"{label} usage critically high (>90%)")
        elif value > WARNING_THRESHOLD:
            issues.append(f"{label} usage high (>75%)")
    if stale_count > 0:
        issues.append(f"{stale_count} stale process(es) detected")

    if max(memory_percent, cpu_percent, disk_percent) > CRITICAL_THRESHOLD:
        return HealthStatus.CRITICAL, issues
    if max(memory_percent, cpu_percent, disk_percent) > WARNING_THRESHOLD or stale_count > 0:
        return HealthStatus.WARNING, issues
    return HealthStatus.HEALTHY, issues


class Sampler:
    """
    主机采样器 (Host Sampler)

    sample() 是同步阻塞调用（CPU 测量窗口），调度任务中通过 sample_async() 放到默认线程池执行。
    """

    def __init__(
        self,
        probe: HostProbe,
        clock: Clock,
        stale_age_seconds: int = 300,
        started_at: Optional[datetime] = None,
    ):
        self.probe = probe
        self.clock = clock
        self.stale_age_seconds = stale_age_seconds
        self.started_at = started_at or clock.now()

    def _read(self, name: str, reader, placeholder, issues: List[str]):
        try:
            return reader(), False
        except Exception as e:
            failure = SamplingFailure(name, str(e) or type(e).__name__)
            logger.warning("Sampling degraded: %s", failure)
            issues.append(str(failure))
            return placeholder, True

    def sample(self) -> SnapshotReading:
        """读取一次完整快照 (Take one complete reading)"""
        now = self.clock.now()
        probe_issues: List[str] = []
        degraded: List[Metric] = []

        memory, failed = self._read("memory", self.probe.memory, MemoryReading(), probe_issues)
        if failed:
            degraded.append(Metric.MEMORY)
        cpu, failed = self._read("cpu", self.probe.cpu, CpuReading(), probe_issues)
        if failed:
            degraded.append(Metric.CPU)
        disk, failed = self._read("disk", self.probe.disk, DiskReading(), probe_issues)
        if failed:
            degraded.append(Metric.DISK)
        processes, _ = self._read("process", self.probe.processes, [], probe_issues)

        stale = find_stale_processes(processes, now, self.stale_age_seconds)
        health, issues = classify_health(memory.percent, cpu.percent, disk.percent, len(stale))

        return SnapshotReading(
            timestamp=now,
            memory=memory,
            cpu=cpu,
            disk=disk,
            process_count=len(processes),
            stale_process_count=len(stale),
            health_status=health,
            issues=issues + probe_issues,
            uptime_seconds=max(0, int((now - self.started_at).total_seconds())),
            degraded_metrics=degraded,
        )

    async def sample_async(self) -> SnapshotReading:
        """在默认线程池中采样，避免阻塞事件循环 (Sample in the default executor)"""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.sample)

    def stale_processes(self) -> List[ProcessInfo]:
        return find_stale_processes(self.probe.processes(), self.clock.now(), self.stale_age_seconds)

    def kill_stale_processes(self) -> Dict[str, int]:
        """
        终止所有残留进程 (Terminate every stale process)

        Returns:
            {"killed": 成功数, "failed": 失败数}
        """
        killed = failed = 0
        for proc in self.stale_processes():
            try:
                self.probe.terminate(proc.pid)
                killed += 1
                logger.info("Terminated stale process %d: %s", proc.pid, proc.cmdline[:100])
            except Exception as e:
                failed += 1
                logger.warning("Failed to terminate stale process %d: %s", proc.pid, e)
        return {"killed": killed, "failed": failed}
