"""
Pricing service package for bundle sale prices.

This package turns the cost of a data bundle into a final sale price by
running database-defined pricing rules against per-request facts. It provides:

- app.calculator: Entry point (`PricingCalculator.calculate_pricing`).
- app.engine: Fact store, condition evaluator and rule registry.
- app.facts: Bundle selection and discount facts.
- app.loaders: Rule/strategy loader with TTL cache, coupon validation.
- app.pipeline: Staged event processing and the pricing breakdown.
- app.persistence: PostgreSQL and in-memory stores.
- app.cache: Redis-backed coupon lookups.

Guidelines:
- A pricing request is self-contained; only the rule cache is shared.
- Keep rule evaluation total and deterministic; surface only missing
  bundles and missing rules as hard errors.
"""
