"""Support desk HTTP API."""
