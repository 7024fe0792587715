"""Device resource monitoring."""

from sentinel_engine.resources.monitor import MonitorStats, ResourceMonitor, ResourceSnapshot

__all__ = ["MonitorStats", "ResourceMonitor", "ResourceSnapshot"]
