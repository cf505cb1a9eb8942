"""
Event parameter schemas for pricing rules.
"""
