"""
Commerce store registry (tenant scoping).

NOTE: keep this package __init__ free of ORM imports.
"""

__all__: list[str] = []
