from __future__ import annotations

import json
import sqlite3
import time
from pathlib import Path
from typing import Any

from uptime_monitor.config import ServiceConfig
from uptime_monitor.models import (
    AGENT_ACTIVE,
    AGENT_INACTIVE,
    Agent,
    DailyRollup,
    Monitor,
    NotificationChannel,
    NotificationHistory,
    NotificationSettings,
    NotificationTemplate,
    TARGET_TYPES,
)


SCHEMA_VERSION = 1


def _utc_ts() -> float:
    return float(time.time())


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True)


def _json_loads(s: Any) -> Any:
    if s is None:
        return None
    if isinstance(s, (dict, list)):
        return s
    try:
        return json.loads(str(s))
    except Exception:
        return None


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    # Best-effort: WAL improves concurrency for a single-host service.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except Exception:
        pass
    return conn


def ensure_schema(config: ServiceConfig) -> None:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
    finally:
        conn.close()


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS monitors (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          url TEXT NOT NULL,
          method TEXT NOT NULL DEFAULT 'GET',
          headers TEXT NOT NULL DEFAULT '{}',
          body TEXT NOT NULL DEFAULT '',
          interval_seconds INTEGER NOT NULL DEFAULT 60,
          timeout_seconds INTEGER NOT NULL DEFAULT 30,
          expected_status INTEGER NOT NULL DEFAULT 200,
          active INTEGER NOT NULL DEFAULT 1,
          status TEXT, -- up|down, NULL until the first check
          response_time INTEGER,
          last_checked_ts REAL,
          created_by INTEGER NOT NULL,
          created_at_ts REAL NOT NULL,
          updated_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS monitor_status_history_24h (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          monitor_id INTEGER NOT NULL REFERENCES monitors(id) ON DELETE CASCADE,
          status TEXT NOT NULL,
          response_time INTEGER NOT NULL DEFAULT 0,
          status_code INTEGER NOT NULL DEFAULT 0,
          error TEXT,
          timestamp_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS monitor_daily_stats (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          monitor_id INTEGER NOT NULL REFERENCES monitors(id) ON DELETE CASCADE,
          date TEXT NOT NULL,
          total_checks INTEGER NOT NULL,
          up_checks INTEGER NOT NULL,
          down_checks INTEGER NOT NULL,
          avg_response_time REAL NOT NULL,
          min_response_time REAL NOT NULL,
          max_response_time REAL NOT NULL,
          availability REAL NOT NULL,
          created_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS agents (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          hostname TEXT,
          ip_addresses TEXT NOT NULL DEFAULT '[]',
          os TEXT,
          keepalive INTEGER NOT NULL DEFAULT 60,
          status TEXT NOT NULL DEFAULT 'active', -- active|inactive
          updated_at_ts REAL NOT NULL,
          created_by INTEGER NOT NULL,
          created_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS agent_metrics_24h (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          agent_id INTEGER NOT NULL REFERENCES agents(id) ON DELETE CASCADE,
          timestamp_ts REAL NOT NULL,
          cpu_usage REAL,
          memory_usage REAL,
          disk_usage REAL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_settings (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          user_id INTEGER NOT NULL,
          target_type TEXT NOT NULL, -- monitor|agent|global-monitor|global-agent
          target_id INTEGER NOT NULL DEFAULT 0,
          enabled INTEGER NOT NULL DEFAULT 1,
          on_down INTEGER NOT NULL DEFAULT 1,
          on_recovery INTEGER NOT NULL DEFAULT 1,
          on_offline INTEGER NOT NULL DEFAULT 1,
          on_cpu_threshold INTEGER NOT NULL DEFAULT 0,
          cpu_threshold REAL NOT NULL DEFAULT 90,
          on_memory_threshold INTEGER NOT NULL DEFAULT 0,
          memory_threshold REAL NOT NULL DEFAULT 85,
          on_disk_threshold INTEGER NOT NULL DEFAULT 0,
          disk_threshold REAL NOT NULL DEFAULT 90,
          channels TEXT NOT NULL DEFAULT '[]',
          created_at_ts REAL NOT NULL,
          updated_at_ts REAL NOT NULL,
          UNIQUE(user_id, target_type, target_id)
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_channels (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          type TEXT NOT NULL,
          config TEXT NOT NULL DEFAULT '{}',
          enabled INTEGER NOT NULL DEFAULT 1,
          created_by INTEGER NOT NULL,
          created_at_ts REAL NOT NULL,
          updated_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_templates (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          type TEXT NOT NULL, -- monitor|agent|system
          subject TEXT NOT NULL,
          content TEXT NOT NULL,
          is_default INTEGER NOT NULL DEFAULT 0,
          created_by INTEGER NOT NULL,
          created_at_ts REAL NOT NULL,
          updated_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_history (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          type TEXT NOT NULL,
          target_id INTEGER,
          channel_id INTEGER NOT NULL,
          template_id INTEGER NOT NULL,
          status TEXT NOT NULL, -- success|failed
          content TEXT NOT NULL,
          error TEXT,
          sent_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_monitors_active ON monitors(active, last_checked_ts);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_msh_ts ON monitor_status_history_24h(timestamp_ts);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_msh_monitor ON monitor_status_history_24h(monitor_id, timestamp_ts);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_agents_status ON agents(status);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_agent_metrics_ts ON agent_metrics_24h(timestamp_ts);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_settings_scope ON notification_settings(user_id, target_type, target_id);")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_history_target ON notification_history(type, target_id, sent_at_ts DESC);")


def db_now_ts() -> float:
    return _utc_ts()


# --- row mapping ---


def _monitor_from_row(r: sqlite3.Row) -> Monitor:
    return Monitor(
        id=int(r["id"]),
        name=str(r["name"]),
        url=str(r["url"]),
        method=str(r["method"] or "GET"),
        headers=r["headers"],
        body=r["body"],
        interval=int(r["interval_seconds"] or 60),
        timeout=int(r["timeout_seconds"]) if r["timeout_seconds"] is not None else None,
        expected_status=int(r["expected_status"] or 200),
        active=bool(r["active"]),
        status=str(r["status"]) if r["status"] else None,
        response_time=int(r["response_time"]) if r["response_time"] is not None else None,
        last_checked_ts=float(r["last_checked_ts"]) if r["last_checked_ts"] is not None else None,
        created_by=int(r["created_by"]),
    )


def _agent_from_row(r: sqlite3.Row) -> Agent:
    ips = _json_loads(r["ip_addresses"])
    return Agent(
        id=int(r["id"]),
        name=str(r["name"]),
        keepalive=int(r["keepalive"]) if r["keepalive"] is not None else None,
        updated_at_ts=float(r["updated_at_ts"] or 0.0),
        status=str(r["status"] or AGENT_ACTIVE),
        created_by=int(r["created_by"]),
        hostname=r["hostname"],
        ip_addresses=[str(ip) for ip in ips] if isinstance(ips, list) else [],
        os=r["os"],
    )


def _settings_from_row(r: sqlite3.Row) -> NotificationSettings:
    return NotificationSettings(
        id=int(r["id"]),
        user_id=int(r["user_id"]),
        target_type=str(r["target_type"]),
        target_id=int(r["target_id"] or 0),
        enabled=bool(r["enabled"]),
        on_down=bool(r["on_down"]),
        on_recovery=bool(r["on_recovery"]),
        on_offline=bool(r["on_offline"]),
        on_cpu_threshold=bool(r["on_cpu_threshold"]),
        cpu_threshold=float(r["cpu_threshold"]),
        on_memory_threshold=bool(r["on_memory_threshold"]),
        memory_threshold=float(r["memory_threshold"]),
        on_disk_threshold=bool(r["on_disk_threshold"]),
        disk_threshold=float(r["disk_threshold"]),
        channels=str(r["channels"] if r["channels"] is not None else "[]"),
    )


def _channel_from_row(r: sqlite3.Row) -> NotificationChannel:
    return NotificationChannel(
        id=int(r["id"]),
        name=str(r["name"]),
        type=str(r["type"]),
        config=str(r["config"] or "{}"),
        enabled=bool(r["enabled"]),
        created_by=int(r["created_by"]),
    )


def _template_from_row(r: sqlite3.Row) -> NotificationTemplate:
    return NotificationTemplate(
        id=int(r["id"]),
        name=str(r["name"]),
        type=str(r["type"]),
        subject=str(r["subject"]),
        content=str(r["content"]),
        is_default=bool(r["is_default"]),
        created_by=int(r["created_by"]),
    )


def _history_from_row(r: sqlite3.Row) -> NotificationHistory:
    return NotificationHistory(
        id=int(r["id"]),
        type=str(r["type"]),
        target_id=int(r["target_id"]) if r["target_id"] is not None else None,
        channel_id=int(r["channel_id"]),
        template_id=int(r["template_id"]),
        status=str(r["status"]),
        content=str(r["content"]),
        error=r["error"],
        sent_at_ts=float(r["sent_at_ts"]),
    )


def _serialized(value: Any, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    return _json_dumps(value)


# --- monitors ---


def create_monitor(
    config: ServiceConfig,
    *,
    name: str,
    url: str,
    created_by: int,
    method: str = "GET",
    headers: dict[str, Any] | str | None = None,
    body: str = "",
    interval_seconds: int = 60,
    timeout_seconds: int = 30,
    expected_status: int = 200,
    active: bool = True,
) -> Monitor:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        now = _utc_ts()
        cur = conn.execute(
            """
            INSERT INTO monitors (
              name, url, method, headers, body, interval_seconds, timeout_seconds, expected_status,
              active, created_by, created_at_ts, updated_at_ts
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                name.strip(),
                url.strip(),
                (method or "GET").strip().upper(),
                _serialized(headers, "{}"),
                body or "",
                int(interval_seconds),
                int(timeout_seconds),
                int(expected_status),
                1 if active else 0,
                int(created_by),
                now,
                now,
            ),
        )
        row = conn.execute("SELECT * FROM monitors WHERE id=?", (cur.lastrowid,)).fetchone()
        return _monitor_from_row(row)
    finally:
        conn.close()


def get_monitor(config: ServiceConfig, *, monitor_id: int, user_id: int | None = None) -> Monitor | None:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        if user_id is None:
            row = conn.execute("SELECT * FROM monitors WHERE id=?", (int(monitor_id),)).fetchone()
        else:
            row = conn.execute(
                "SELECT * FROM monitors WHERE id=? AND created_by=?", (int(monitor_id), int(user_id))
            ).fetchone()
        return _monitor_from_row(row) if row else None
    finally:
        conn.close()


def list_monitors(config: ServiceConfig, *, user_id: int | None = None) -> list[Monitor]:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        if user_id is None:
            rows = conn.execute("SELECT * FROM monitors ORDER BY id ASC").fetchall()
        else:
            rows = conn.execute("SELECT * FROM monitors WHERE created_by=? ORDER BY id ASC", (int(user_id),)).fetchall()
        return [_monitor_from_row(r) for r in rows]
    finally:
        conn.close()


def get_monitors_to_check(config: ServiceConfig, *, now_ts: float | None = None) -> list[Monitor]:
    """
    Active monitors that were never checked or whose interval has elapsed since the last check.
    """
    now = float(now_ts) if now_ts is not None else _utc_ts()
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        rows = conn.execute(
            """
            SELECT * FROM monitors
            WHERE
              active=1
              AND (last_checked_ts IS NULL OR last_checked_ts + interval_seconds <= ?)
            ORDER BY COALESCE(last_checked_ts, 0) ASC, id ASC
            """,
            (now,),
        ).fetchall()
        return [_monitor_from_row(r) for r in rows]
    finally:
        conn.close()


def update_monitor_status(
    config: ServiceConfig, *, monitor_id: int, status: str, response_time: int, checked_at_ts: float | None = None
) -> bool:
    now = float(checked_at_ts) if checked_at_ts is not None else _utc_ts()
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        res = conn.execute(
            "UPDATE monitors SET status=?, response_time=?, last_checked_ts=?, updated_at_ts=? WHERE id=?",
            (str(status), int(response_time), now, now, int(monitor_id)),
        )
        return int(res.rowcount or 0) > 0
    finally:
        conn.close()


def insert_monitor_status_history(
    config: ServiceConfig,
    *,
    monitor_id: int,
    status: str,
    response_time: int,
    status_code: int,
    error: str | None,
    timestamp_ts: float | None = None,
) -> None:
    ts = float(timestamp_ts) if timestamp_ts is not None else _utc_ts()
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        conn.execute(
            """
            INSERT INTO monitor_status_history_24h (monitor_id, status, response_time, status_code, error, timestamp_ts)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (int(monitor_id), str(status), int(response_time or 0), int(status_code or 0), error, ts),
        )
    finally:
        conn.close()


def list_monitor_status_history(
    config: ServiceConfig, *, since_ts: float, until_ts: float, monitor_id: int | None = None
) -> list[dict[str, Any]]:
    """
    History rows with since_ts <= timestamp_ts < until_ts, oldest first.
    """
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        sql = "SELECT * FROM monitor_status_history_24h WHERE timestamp_ts >= ? AND timestamp_ts < ?"
        params: list[Any] = [float(since_ts), float(until_ts)]
        if monitor_id is not None:
            sql += " AND monitor_id=?"
            params.append(int(monitor_id))
        sql += " ORDER BY timestamp_ts ASC, id ASC"
        return [dict(r) for r in conn.execute(sql, tuple(params)).fetchall()]
    finally:
        conn.close()


def delete_monitor_status_history(config: ServiceConfig, *, since_ts: float, until_ts: float) -> int:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        res = conn.execute(
            "DELETE FROM monitor_status_history_24h WHERE timestamp_ts >= ? AND timestamp_ts < ?",
            (float(since_ts), float(until_ts)),
        )
        return int(res.rowcount or 0)
    finally:
        conn.close()


def insert_monitor_daily_stats(config: ServiceConfig, *, rollup: DailyRollup) -> None:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        conn.execute(
            """
            INSERT INTO monitor_daily_stats (
              monitor_id, date, total_checks, up_checks, down_checks,
              avg_response_time, min_response_time, max_response_time, availability, created_at_ts
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                int(rollup.monitor_id),
                str(rollup.date),
                int(rollup.total_checks),
                int(rollup.up_checks),
                int(rollup.down_checks),
                float(rollup.avg_response_time),
                float(rollup.min_response_time),
                float(rollup.max_response_time),
                float(rollup.availability),
                _utc_ts(),
            ),
        )
    finally:
        conn.close()


def list_monitor_daily_stats(config: ServiceConfig, *, monitor_id: int | None = None) -> list[DailyRollup]:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        if monitor_id is None:
            rows = conn.execute("SELECT * FROM monitor_daily_stats ORDER BY date ASC, monitor_id ASC").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM monitor_daily_stats WHERE monitor_id=? ORDER BY date ASC", (int(monitor_id),)
            ).fetchall()
        return [
            DailyRollup(
                monitor_id=int(r["monitor_id"]),
                date=str(r["date"]),
                total_checks=int(r["total_checks"]),
                up_checks=int(r["up_checks"]),
                down_checks=int(r["down_checks"]),
                avg_response_time=float(r["avg_response_time"]),
                min_response_time=float(r["min_response_time"]),
                max_response_time=float(r["max_response_time"]),
                availability=float(r["availability"]),
            )
            for r in rows
        ]
    finally:
        conn.close()


# --- agents ---


def create_agent(
    config: ServiceConfig,
    *,
    name: str,
    created_by: int,
    keepalive: int = 60,
    hostname: str | None = None,
    ip_addresses: list[str] | None = None,
    os_name: str | None = None,
    status: str = AGENT_ACTIVE,
    updated_at_ts: float | None = None,
) -> Agent:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        now = _utc_ts()
        cur = conn.execute(
            """
            INSERT INTO agents (name, hostname, ip_addresses, os, keepalive, status, updated_at_ts, created_by, created_at_ts)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                name.strip(),
                hostname,
                _json_dumps(list(ip_addresses or [])),
                os_name,
                int(keepalive),
                str(status),
                float(updated_at_ts) if updated_at_ts is not None else now,
                int(created_by),
                now,
            ),
        )
        row = conn.execute("SELECT * FROM agents WHERE id=?", (cur.lastrowid,)).fetchone()
        return _agent_from_row(row)
    finally:
        conn.close()


def get_agent(config: ServiceConfig, *, agent_id: int) -> Agent | None:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        row = conn.execute("SELECT * FROM agents WHERE id=?", (int(agent_id),)).fetchone()
        return _agent_from_row(row) if row else None
    finally:
        conn.close()


def get_active_agents(config: ServiceConfig) -> list[Agent]:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        rows = conn.execute("SELECT * FROM agents WHERE status=? ORDER BY id ASC", (AGENT_ACTIVE,)).fetchall()
        return [_agent_from_row(r) for r in rows]
    finally:
        conn.close()


def set_agent_inactive(config: ServiceConfig, *, agent_id: int, seen_updated_at_ts: float | None = None) -> bool:
    """
    Flip an active agent to inactive. Returns False if it was not active (already flipped elsewhere)
    or, when seen_updated_at_ts is given, if a heartbeat has moved updated_at_ts since it was read.
    """
    sql = "UPDATE agents SET status=? WHERE id=? AND status=?"
    params: list[Any] = [AGENT_INACTIVE, int(agent_id), AGENT_ACTIVE]
    if seen_updated_at_ts is not None:
        sql += " AND updated_at_ts=?"
        params.append(float(seen_updated_at_ts))
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        res = conn.execute(sql, tuple(params))
        return int(res.rowcount or 0) > 0
    finally:
        conn.close()


def touch_agent(
    config: ServiceConfig,
    *,
    agent_id: int,
    now_ts: float | None = None,
    hostname: str | None = None,
    ip_addresses: list[str] | None = None,
    os_name: str | None = None,
) -> Agent | None:
    """
    Record a heartbeat: mark the agent active and stamp updated_at_ts.
    Returns the agent as it was *before* the update, or None if it does not exist.
    """
    now = float(now_ts) if now_ts is not None else _utc_ts()
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        conn.execute("BEGIN IMMEDIATE;")
        try:
            row = conn.execute("SELECT * FROM agents WHERE id=?", (int(agent_id),)).fetchone()
            if not row:
                conn.execute("ROLLBACK;")
                return None
            before = _agent_from_row(row)

            sets = ["status=?", "updated_at_ts=?"]
            params: list[Any] = [AGENT_ACTIVE, now]
            if hostname is not None:
                sets.append("hostname=?")
                params.append(str(hostname))
            if ip_addresses is not None:
                sets.append("ip_addresses=?")
                params.append(_json_dumps([str(ip) for ip in ip_addresses]))
            if os_name is not None:
                sets.append("os=?")
                params.append(str(os_name))
            params.append(int(agent_id))
            conn.execute(f"UPDATE agents SET {', '.join(sets)} WHERE id=?", tuple(params))
            conn.execute("COMMIT;")
        except Exception:
            conn.execute("ROLLBACK;")
            raise
        return before
    finally:
        conn.close()


def insert_agent_metrics(
    config: ServiceConfig,
    *,
    agent_id: int,
    timestamp_ts: float | None = None,
    cpu_usage: float | None = None,
    memory_usage: float | None = None,
    disk_usage: float | None = None,
) -> None:
    ts = float(timestamp_ts) if timestamp_ts is not None else _utc_ts()
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        conn.execute(
            """
            INSERT INTO agent_metrics_24h (agent_id, timestamp_ts, cpu_usage, memory_usage, disk_usage)
            VALUES (?, ?, ?, ?, ?)
            """,
            (int(agent_id), ts, cpu_usage, memory_usage, disk_usage),
        )
    finally:
        conn.close()


def count_agent_metrics(config: ServiceConfig, *, agent_id: int | None = None) -> int:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        if agent_id is None:
            row = conn.execute("SELECT COUNT(*) AS n FROM agent_metrics_24h").fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) AS n FROM agent_metrics_24h WHERE agent_id=?", (int(agent_id),)).fetchone()
        return int(row["n"] or 0)
    finally:
        conn.close()


def prune_agent_metrics(config: ServiceConfig, *, before_ts: float) -> int:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        res = conn.execute("DELETE FROM agent_metrics_24h WHERE timestamp_ts < ?", (float(before_ts),))
        return int(res.rowcount or 0)
    finally:
        conn.close()


# --- notification settings ---


def get_specific_settings(
    config: ServiceConfig, *, user_id: int, target_type: str, target_id: int
) -> list[NotificationSettings]:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        rows = conn.execute(
            """
            SELECT * FROM notification_settings
            WHERE user_id=? AND target_type=? AND target_id=?
            ORDER BY id ASC
            """,
            (int(user_id), str(target_type), int(target_id)),
        ).fetchall()
        return [_settings_from_row(r) for r in rows]
    finally:
        conn.close()


def get_global_settings(config: ServiceConfig, *, user_id: int, target_type: str) -> NotificationSettings | None:
    """
    The single global row for a target family; target_type is "monitor" or "agent".
    """
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        row = conn.execute(
            "SELECT * FROM notification_settings WHERE user_id=? AND target_type=? ORDER BY id ASC LIMIT 1",
            (int(user_id), f"global-{target_type}"),
        ).fetchone()
        return _settings_from_row(row) if row else None
    finally:
        conn.close()


def create_or_update_settings(
    config: ServiceConfig,
    *,
    user_id: int,
    target_type: str,
    target_id: int = 0,
    enabled: bool = True,
    on_down: bool = True,
    on_recovery: bool = True,
    on_offline: bool = True,
    on_cpu_threshold: bool = False,
    cpu_threshold: float = 90.0,
    on_memory_threshold: bool = False,
    memory_threshold: float = 85.0,
    on_disk_threshold: bool = False,
    disk_threshold: float = 90.0,
    channels: list[int] | str = "[]",
) -> int:
    if target_type not in TARGET_TYPES:
        raise ValueError(f"Invalid target_type: {target_type!r}")
    now = _utc_ts()
    values = (
        1 if enabled else 0,
        1 if on_down else 0,
        1 if on_recovery else 0,
        1 if on_offline else 0,
        1 if on_cpu_threshold else 0,
        float(cpu_threshold),
        1 if on_memory_threshold else 0,
        float(memory_threshold),
        1 if on_disk_threshold else 0,
        float(disk_threshold),
        _serialized(channels, "[]"),
    )
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        conn.execute("BEGIN IMMEDIATE;")
        try:
            row = conn.execute(
                "SELECT id FROM notification_settings WHERE user_id=? AND target_type=? AND target_id=?",
                (int(user_id), target_type, int(target_id)),
            ).fetchone()
            if row:
                settings_id = int(row["id"])
                conn.execute(
                    """
                    UPDATE notification_settings
                    SET
                      enabled=?, on_down=?, on_recovery=?, on_offline=?,
                      on_cpu_threshold=?, cpu_threshold=?, on_memory_threshold=?, memory_threshold=?,
                      on_disk_threshold=?, disk_threshold=?, channels=?, updated_at_ts=?
                    WHERE id=?
                    """,
                    (*values, now, settings_id),
                )
            else:
                cur = conn.execute(
                    """
                    INSERT INTO notification_settings (
                      user_id, target_type, target_id,
                      enabled, on_down, on_recovery, on_offline,
                      on_cpu_threshold, cpu_threshold, on_memory_threshold, memory_threshold,
                      on_disk_threshold, disk_threshold, channels, created_at_ts, updated_at_ts
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (int(user_id), target_type, int(target_id), *values, now, now),
                )
                settings_id = int(cur.lastrowid)
            conn.execute("COMMIT;")
        except Exception:
            conn.execute("ROLLBACK;")
            raise
        return settings_id
    finally:
        conn.close()


def delete_notification_settings(config: ServiceConfig, *, target_type: str, target_id: int, user_id: int) -> int:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        res = conn.execute(
            "DELETE FROM notification_settings WHERE target_type=? AND target_id=? AND user_id=?",
            (str(target_type), int(target_id), int(user_id)),
        )
        return int(res.rowcount or 0)
    finally:
        conn.close()


# --- channels ---


def create_notification_channel(
    config: ServiceConfig,
    *,
    name: str,
    type: str,
    channel_config: dict[str, Any] | str,
    created_by: int,
    enabled: bool = True,
) -> int:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        now = _utc_ts()
        cur = conn.execute(
            """
            INSERT INTO notification_channels (name, type, config, enabled, created_by, created_at_ts, updated_at_ts)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (name.strip(), type.strip(), _serialized(channel_config, "{}"), 1 if enabled else 0, int(created_by), now, now),
        )
        return int(cur.lastrowid)
    finally:
        conn.close()


def get_notification_channel(config: ServiceConfig, *, channel_id: int, user_id: int) -> NotificationChannel | None:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        row = conn.execute(
            "SELECT * FROM notification_channels WHERE id=? AND created_by=?", (int(channel_id), int(user_id))
        ).fetchone()
        return _channel_from_row(row) if row else None
    finally:
        conn.close()


def list_notification_channels(config: ServiceConfig, *, user_id: int) -> list[NotificationChannel]:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        rows = conn.execute(
            "SELECT * FROM notification_channels WHERE created_by=? ORDER BY id ASC", (int(user_id),)
        ).fetchall()
        return [_channel_from_row(r) for r in rows]
    finally:
        conn.close()


def update_notification_channel(config: ServiceConfig, *, channel_id: int, user_id: int, patch: dict[str, Any]) -> bool:
    """
    Partial update. Only updates columns explicitly provided in patch.
    """
    sets: list[str] = []
    params: list[Any] = []
    if patch.get("name") is not None:
        sets.append("name=?")
        params.append(str(patch["name"]).strip())
    if patch.get("type") is not None:
        sets.append("type=?")
        params.append(str(patch["type"]).strip())
    if patch.get("config") is not None:
        sets.append("config=?")
        params.append(_serialized(patch["config"], "{}"))
    if patch.get("enabled") is not None:
        sets.append("enabled=?")
        params.append(1 if bool(patch["enabled"]) else 0)
    if not sets:
        return False

    sets.append("updated_at_ts=?")
    params.append(_utc_ts())
    params.extend([int(channel_id), int(user_id)])

    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        res = conn.execute(
            f"UPDATE notification_channels SET {', '.join(sets)} WHERE id=? AND created_by=?",
            tuple(params),
        )
        return int(res.rowcount or 0) > 0
    finally:
        conn.close()


def delete_notification_channel(config: ServiceConfig, *, channel_id: int, user_id: int) -> bool:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        res = conn.execute(
            "DELETE FROM notification_channels WHERE id=? AND created_by=?", (int(channel_id), int(user_id))
        )
        return int(res.rowcount or 0) > 0
    finally:
        conn.close()


# --- templates ---


def create_notification_template(
    config: ServiceConfig,
    *,
    name: str,
    type: str,
    subject: str,
    content: str,
    created_by: int,
    is_default: bool = False,
) -> int:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        now = _utc_ts()
        conn.execute("BEGIN IMMEDIATE;")
        try:
            if is_default:
                _clear_default_templates(conn, user_id=int(created_by), type=type.strip())
            cur = conn.execute(
                """
                INSERT INTO notification_templates (name, type, subject, content, is_default, created_by, created_at_ts, updated_at_ts)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (name.strip(), type.strip(), subject, content, 1 if is_default else 0, int(created_by), now, now),
            )
            conn.execute("COMMIT;")
        except Exception:
            conn.execute("ROLLBACK;")
            raise
        return int(cur.lastrowid)
    finally:
        conn.close()


def _clear_default_templates(conn: sqlite3.Connection, *, user_id: int, type: str, keep_id: int = 0) -> None:
    # At most one default template per (owner, type).
    conn.execute(
        "UPDATE notification_templates SET is_default=0 WHERE created_by=? AND type=? AND id<>? AND is_default=1",
        (int(user_id), str(type), int(keep_id)),
    )


def list_notification_templates(config: ServiceConfig, *, user_id: int) -> list[NotificationTemplate]:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        rows = conn.execute(
            "SELECT * FROM notification_templates WHERE created_by=? ORDER BY id ASC", (int(user_id),)
        ).fetchall()
        return [_template_from_row(r) for r in rows]
    finally:
        conn.close()


def update_notification_template(
    config: ServiceConfig, *, template_id: int, user_id: int, patch: dict[str, Any]
) -> bool:
    sets: list[str] = []
    params: list[Any] = []
    for k in ("name", "type", "subject", "content"):
        if patch.get(k) is not None:
            sets.append(f"{k}=?")
            params.append(str(patch[k]))
    if patch.get("is_default") is not None:
        sets.append("is_default=?")
        params.append(1 if bool(patch["is_default"]) else 0)
    if not sets:
        return False

    sets.append("updated_at_ts=?")
    params.append(_utc_ts())
    params.extend([int(template_id), int(user_id)])

    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        conn.execute("BEGIN IMMEDIATE;")
        try:
            res = conn.execute(
                f"UPDATE notification_templates SET {', '.join(sets)} WHERE id=? AND created_by=?",
                tuple(params),
            )
            updated = int(res.rowcount or 0) > 0
            if updated and patch.get("is_default"):
                row = conn.execute("SELECT type FROM notification_templates WHERE id=?", (int(template_id),)).fetchone()
                _clear_default_templates(conn, user_id=int(user_id), type=row["type"], keep_id=int(template_id))
            conn.execute("COMMIT;")
        except Exception:
            conn.execute("ROLLBACK;")
            raise
        return updated
    finally:
        conn.close()


def delete_notification_template(config: ServiceConfig, *, template_id: int, user_id: int) -> bool:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        res = conn.execute(
            "DELETE FROM notification_templates WHERE id=? AND created_by=?", (int(template_id), int(user_id))
        )
        return int(res.rowcount or 0) > 0
    finally:
        conn.close()


# --- history ---


def create_notification_history(
    config: ServiceConfig,
    *,
    type: str,
    target_id: int | None,
    channel_id: int,
    template_id: int,
    status: str,
    content: str,
    error: str | None,
) -> int:
    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        cur = conn.execute(
            """
            INSERT INTO notification_history (type, target_id, channel_id, template_id, status, content, error, sent_at_ts)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(type),
                int(target_id) if target_id is not None else None,
                int(channel_id),
                int(template_id),
                str(status),
                str(content),
                error,
                _utc_ts(),
            ),
        )
        return int(cur.lastrowid)
    finally:
        conn.close()


def list_notification_history(
    config: ServiceConfig,
    *,
    type: str | None = None,
    target_id: int | None = None,
    status: str | None = None,
    user_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[int, list[NotificationHistory]]:
    where: list[str] = []
    params: list[Any] = []
    if type:
        where.append("h.type=?")
        params.append(str(type))
    if target_id is not None:
        where.append("h.target_id=?")
        params.append(int(target_id))
    if status:
        where.append("h.status=?")
        params.append(str(status))
    if user_id is not None:
        where.append("h.channel_id IN (SELECT id FROM notification_channels WHERE created_by=?)")
        params.append(int(user_id))
    clause = f"WHERE {' AND '.join(where)}" if where else ""

    limit = max(1, min(int(limit), 500))
    offset = max(0, int(offset))

    conn = _connect(config.db_path)
    try:
        _ensure_schema_conn(conn)
        total_row = conn.execute(f"SELECT COUNT(*) AS n FROM notification_history h {clause}", tuple(params)).fetchone()
        rows = conn.execute(
            f"SELECT h.* FROM notification_history h {clause} ORDER BY h.sent_at_ts DESC, h.id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        return int(total_row["n"] or 0), [_history_from_row(r) for r in rows]
    finally:
        conn.close()
