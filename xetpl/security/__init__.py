"""xetpl security helpers."""

from xetpl.security.csrf import CSRFConfig, CSRFProtection

__all__ = ["CSRFConfig", "CSRFProtection"]
