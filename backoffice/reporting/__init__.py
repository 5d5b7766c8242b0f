"""
Reporting Engine

Period bucketing, metric aggregation, derived metrics, target
reconciliation and dashboard assembly.
"""
from .aggregator import MetricAggregator
from .dashboard import DashboardAssembler
from .targets import TargetService

__all__ = [
    "MetricAggregator",
    "DashboardAssembler",
    "TargetService",
]
