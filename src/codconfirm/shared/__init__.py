"""
Shared infrastructure: database sessions, logging, domain exceptions.
"""
