"""
Operator-editable key/value settings.

NOTE: keep this package __init__ free of ORM imports.
"""

__all__: list[str] = []
