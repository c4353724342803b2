from uptime_monitor.channels.base import ChannelAdapter, parse_channel_config
from uptime_monitor.channels.registry import AdapterRegistry, build_default_registry

__all__ = ["AdapterRegistry", "ChannelAdapter", "build_default_registry", "parse_channel_config"]
