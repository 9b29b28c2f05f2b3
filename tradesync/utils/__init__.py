"""Utility modules: logging, trace context, timing, month keys."""
