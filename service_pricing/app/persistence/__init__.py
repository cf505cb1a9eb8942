"""
Store implementations: PostgreSQL and in-memory.
"""
