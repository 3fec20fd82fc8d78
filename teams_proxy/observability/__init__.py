"""Logging setup."""

from teams_proxy.observability.log import configure_logging

__all__ = ["configure_logging"]
