"""
FinGuard - Adaptive Authentication Security Engine
Brute-force lockout, rate limiting, risk-driven limits and role resolution
for financial account holders.
"""

__version__ = "0.1.0"

from finguard.core.config import settings
from finguard.core.logging import get_logger

__all__ = ["settings", "get_logger", "__version__"]
