"""Core types, configuration and logging for netpulse."""
