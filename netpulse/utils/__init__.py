"""Utility helpers for netpulse."""
