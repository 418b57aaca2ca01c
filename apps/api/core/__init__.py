"""Core settings, logging and persistence bootstrap."""
