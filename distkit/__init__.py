"""In-process building blocks for distributed systems: service discovery, metrics, RPC and governance."""

__version__ = "0.1.0"