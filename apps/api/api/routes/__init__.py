from . import agents, metrics, orders, ping, tickets

__all__ = ["agents", "metrics", "orders", "ping", "tickets"]
