"""Node QoS ensurance, time series prediction checks and effective autoscaling logic."""

__version__ = "0.1.0"