"""
Loaders for rules and coupons, with their caches.
"""
