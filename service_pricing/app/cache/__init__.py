"""
Caching layer for the pricing service.
"""
