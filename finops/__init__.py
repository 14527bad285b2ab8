"""FinOps billing insights: aggregation and forecasting of cloud billing exports."""

__version__ = "0.1.0"
