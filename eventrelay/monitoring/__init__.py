"""
Monitoring: Prometheus metrics and JSON log formatting.
"""

from eventrelay.monitoring.logging import EventJsonFormatter
from eventrelay.monitoring.metrics import start_metrics_server

__all__ = ["EventJsonFormatter", "start_metrics_server"]
