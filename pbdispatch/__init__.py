"""Playbook run dispatching: protocols, connector clients, dispatch manager and API handlers."""

__version__ = "0.1.0"

__all__ = [
    "models",
    "errors",
    "protocols",
    "instrumentation",
    "cloud_connector",
    "dispatch",
    "inventory",
    "sources",
    "private_actions",
    "private_api",
    "public_api",
]