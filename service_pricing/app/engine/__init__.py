"""
Rules engine package.

Small typed interpreter for database-defined pricing rules:

- almanac: Per-request, lazily computed and memoized facts.
- conditions: Condition tree AST, parser and operators.
- models: Rule, Event and the event types the pipeline understands.
- registry: Priority-ordered rule set; evaluates all rules into events.

Evaluation never mutates rules; a registry is an immutable snapshot of the
rule set that was active when the request started.
"""
