"""Shared packages used by the support desk applications."""
