"""xetpl utilities."""

from xetpl.utils.logger import LogLevel, Logger, configure_logging, get_logger

__all__ = ["LogLevel", "Logger", "configure_logging", "get_logger"]
