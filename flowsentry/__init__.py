"""FlowSentry: uptime probes and synthetic checkout flows with metrics/log export."""

__version__ = "0.1.0"
