"""
Monitoring: the deadline sweep, SLA alert reports and official performance.
"""

from civic_requests.monitor.alerts import AlertSeverity, SLAAlert, SLAAlertEngine
from civic_requests.monitor.performance import OfficialPerformance, official_performance
from civic_requests.monitor.sweeper import DeadlineSweeper, SweepError, SweepReport

__all__ = [
    "AlertSeverity",
    "DeadlineSweeper",
    "OfficialPerformance",
    "SLAAlert",
    "SLAAlertEngine",
    "SweepError",
    "SweepReport",
    "official_performance",
]
