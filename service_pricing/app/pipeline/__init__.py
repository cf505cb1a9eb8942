"""
Event processing pipeline and pricing breakdown.
"""
