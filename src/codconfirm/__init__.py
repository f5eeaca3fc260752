"""
COD order confirmation service.

Tracks cash-on-delivery orders from e-commerce stores and confirms them
through outbound voice calls.
"""

__version__ = "0.1.0"
