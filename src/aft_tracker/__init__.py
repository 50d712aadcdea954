"""AFT request tracking: status flows, progress, timelines and audit logging."""

__version__ = "0.1.0"
