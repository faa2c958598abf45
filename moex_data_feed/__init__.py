"""MOEX Data Feed - candle retrieval from the Moscow Exchange ISS API.

Provides:
- Paged ISS candles cursor for equity and currency markets
- CSV streaming CLI (moex-candles)
"""

__version__ = "0.1.0"

from . import iss

__all__ = ["iss", "__version__"]
