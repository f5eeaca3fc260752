"""
Order lifecycle: ingestion, dedup, COD classification, status machine.

NOTE: keep this package __init__ free of ORM imports.
"""

__all__: list[str] = []
