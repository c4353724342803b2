from __future__ import annotations

import asyncio
import json
import time
from typing import Any

import httpx
import structlog

from uptime_monitor import db as dbm
from uptime_monitor.channels.base import error_text
from uptime_monitor.config import ServiceConfig
from uptime_monitor.models import STATUS_DOWN, STATUS_UNKNOWN, STATUS_UP, CheckResult, Monitor


logger = structlog.get_logger(__name__)

_BODYLESS_METHODS = {"GET", "HEAD"}


def parse_headers(raw: Any) -> dict[str, str]:
    """
    Monitor headers are stored as a serialized JSON object. Anything unparsable means no extra headers.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        data = raw
    else:
        s = str(raw).strip()
        if not s:
            return {}
        try:
            data = json.loads(s)
        except Exception:
            logger.debug("monitor_headers_unparsable")
            return {}
    if not isinstance(data, dict):
        return {}
    return {str(k): str(v) for k, v in data.items() if v is not None}


def status_matches(expected: int, status_code: int) -> bool:
    # A single digit 1-5 is a status-class rule (2 -> any 2xx).
    exp = int(expected)
    if 1 <= exp <= 5:
        return int(status_code) // 100 == exp
    return int(status_code) == exp


def expected_status_display(expected: int) -> str:
    exp = int(expected)
    if 1 <= exp <= 5:
        return f"{exp}xx"
    return str(exp)


def _timeout_seconds(config: ServiceConfig, monitor: Monitor) -> float:
    if monitor.timeout and int(monitor.timeout) > 0:
        return float(monitor.timeout)
    return float(config.default_timeout_seconds)


async def _http_probe(client: httpx.AsyncClient, monitor: Monitor, *, timeout: float) -> tuple[str, int, int | None, str | None]:
    method = (monitor.method or "GET").strip().upper()
    headers = parse_headers(monitor.headers)
    content = None
    if method not in _BODYLESS_METHODS and monitor.body:
        content = str(monitor.body)

    started = time.perf_counter()
    try:
        # httpx timeouts apply per phase; wait_for bounds the whole exchange.
        resp = await asyncio.wait_for(
            client.request(
                method,
                monitor.url,
                headers=headers,
                content=content,
                follow_redirects=True,
                timeout=timeout,
            ),
            timeout,
        )
    except (httpx.TimeoutException, asyncio.TimeoutError):
        elapsed_ms = int((time.perf_counter() - started) * 1000.0)
        return STATUS_DOWN, elapsed_ms, None, f"Request timed out after {timeout:g}s"
    except Exception as e:
        elapsed_ms = int((time.perf_counter() - started) * 1000.0)
        return STATUS_DOWN, elapsed_ms, None, error_text(e)

    elapsed_ms = int((time.perf_counter() - started) * 1000.0)
    if status_matches(monitor.expected_status, resp.status_code):
        return STATUS_UP, elapsed_ms, resp.status_code, None
    err = f"Unexpected status code: {resp.status_code}, expected: {expected_status_display(monitor.expected_status)}"
    return STATUS_DOWN, elapsed_ms, resp.status_code, err


async def check_monitor(config: ServiceConfig, client: httpx.AsyncClient, monitor: Monitor) -> CheckResult:
    """
    Probe one monitor and persist the outcome.

    Never raises for network or storage problems: the history insert and the status update
    are independent best-effort steps, and the in-memory result is returned regardless.
    """
    timeout = _timeout_seconds(config, monitor)
    status, response_time, status_code, error = await _http_probe(client, monitor, timeout=timeout)
    checked_at = dbm.db_now_ts()

    try:
        await asyncio.to_thread(
            dbm.insert_monitor_status_history,
            config,
            monitor_id=monitor.id,
            status=status,
            response_time=response_time,
            status_code=status_code or 0,
            error=error,
            timestamp_ts=checked_at,
        )
    except Exception:
        logger.exception("monitor_history_write_failed", monitor_id=monitor.id)

    try:
        await asyncio.to_thread(
            dbm.update_monitor_status,
            config,
            monitor_id=monitor.id,
            status=status,
            response_time=response_time,
            checked_at_ts=checked_at,
        )
    except Exception:
        logger.exception("monitor_status_write_failed", monitor_id=monitor.id)

    logger.info(
        "monitor_checked",
        monitor_id=monitor.id,
        status=status,
        status_code=status_code,
        response_time_ms=response_time,
        error=error,
    )
    return CheckResult(
        status=status,
        previous_status=monitor.status or STATUS_UNKNOWN,
        response_time=response_time,
        status_code=status_code,
        error=error,
        checked_at_ts=checked_at,
    )
