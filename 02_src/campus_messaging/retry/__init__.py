"""Connectivity-aware retry with timeout and exponential backoff."""

from .executor import RetryExecutor, backoff_delay, is_network_error

__all__ = ["RetryExecutor", "backoff_delay", "is_network_error"]
