"""API routers."""

from microflash.routers import health

__all__ = ["health"]
