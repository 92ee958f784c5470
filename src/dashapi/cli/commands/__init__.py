"""CLI command modules."""

from .config_cmd import config_app
from .ping import ping
from .request import request

__all__ = ["config_app", "ping", "request"]
