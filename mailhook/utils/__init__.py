"""Utility modules for mailhook."""

from .config import Config
from .logger import get_logger, setup_logger

__all__ = ["setup_logger", "get_logger", "Config"]
