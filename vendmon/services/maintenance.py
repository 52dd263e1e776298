"""
维护钩子 (Maintenance Hooks)

升级步骤和规则自动动作调用的副作用：
  - auto_cleanup：终止残留进程（在线程池中执行 psutil 调用）
  - scale_up：把告警事件 POST 到配置的扩容 Webhook；未配置时只记录日志

Side effects invoked by escalation steps and rule auto actions. auto_cleanup terminates
stale processes; scale_up POSTs the occurrence to the configured webhook, or only logs
when no webhook is configured.
"""
import asyncio
import logging
from typing import Any, Dict, Protocol

import httpx

from vendmon.models.alert import AlertOccurrence
from vendmon.services.sampler import Sampler

logger = logging.getLogger(__name__)


class MaintenanceHooks(Protocol):
    async def auto_cleanup(self, occurrence: AlertOccurrence) -> Dict[str, Any]: ...

    async def scale_up(self, occurrence: AlertOccurrence) -> Dict[str, Any]: ...


class DefaultMaintenanceHooks:
    """默认维护钩子实现 (Default maintenance hooks)"""

    def __init__(self, sampler: Sampler, scale_up_webhook_url: str = "", timeout: float = 10.0):
        self.sampler = sampler
        self.scale_up_webhook_url = scale_up_webhook_url
        self.timeout = timeout

    async def auto_cleanup(self, occurrence: AlertOccurrence) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, self.sampler.kill_stale_processes)
        logger.info(
            "auto_cleanup for alert %d: killed=%d failed=%d",
            occurrence.id, result["killed"], result["failed"],
        )
        return result

    async def scale_up(self, occurrence: AlertOccurrence) -> Dict[str, Any]:
        if not self.scale_up_webhook_url:
            logger.warning("scale_up requested for alert %d but no webhook is configured", occurrence.id)
            return {"requested": False}
        payload = {
            "alert_id": occurrence.id,
            "rule_id": occurrence.rule_id,
            "metric": occurrence.metric.value,
            "value": occurrence.value,
            "threshold": occurrence.threshold,
            "severity": occurrence.severity.value,
            "message": occurrence.message,
            "created_at": occurrence.created_at.isoformat(),
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self.scale_up_webhook_url, json=payload)
        resp.raise_for_status()
        logger.info("scale_up webhook accepted alert %d (HTTP %d)", occurrence.id, resp.status_code)
        return {"requested": True, "status_code": resp.status_code}
