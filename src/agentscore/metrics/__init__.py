"""Metrics aggregation."""

from agentscore.metrics.aggregator import AgentMetrics, MetricsAggregator

__all__ = ["AgentMetrics", "MetricsAggregator"]
