"""Notification template rendering.

Templates carry ``${key}`` placeholders in both subject and body. Rendering is a literal
find/replace per variable; placeholders without a matching variable are left as-is.
"""

from __future__ import annotations

from typing import Any, Mapping

from uptime_monitor.models import NotificationTemplate


DEFAULT_MONITOR_TEMPLATE = {
    "name": "Monitor status template",
    "type": "monitor",
    "subject": "[${status}] ${name} status changed",
    "content": (
        "🔔 Monitor status change\n\n"
        "📊 Service: ${name}\n"
        "🔄 Status: ${status} (was: ${previous_status})\n"
        "🕒 Time: ${time}\n\n"
        "🔗 URL: ${url}\n"
        "⏱️ Response time: ${response_time}\n"
        "📝 Status code: ${status_code}\n"
        "🎯 Expected status: ${expected_status}\n\n"
        "❗ Error: ${error}"
    ),
}

DEFAULT_AGENT_TEMPLATE = {
    "name": "Agent status template",
    "type": "agent",
    "subject": "${name} agent ${status}",
    "content": "${name} ${error}\n\nHost: ${hostname}\nTime: ${time}",
}


def replace_variables(text: str, variables: Mapping[str, Any]) -> str:
    out = str(text or "")
    for key, value in variables.items():
        out = out.replace("${" + str(key) + "}", "" if value is None else str(value))
    return out


def render(template: NotificationTemplate, variables: Mapping[str, Any]) -> tuple[str, str]:
    return replace_variables(template.subject, variables), replace_variables(template.content, variables)
