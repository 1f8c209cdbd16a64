"""
exchange_core - asyncio client runtime for trading venue adapters
"""

__version__ = "0.1.0"
