"""Core mathematics, records and caching for the NHL prop engine.

This package contains pure, sport-agnostic building blocks:

- ``odds_math``: American/decimal conversion, implied probability, fair odds, EV
- ``kelly``: fractional Kelly sizing
- ``sport_config``: per-league constants (NHL averages, model weights, TTLs)
- ``records``: dataclasses shared by every service (outcome types, quotes)
- ``cache``: TTL cache with per-source quota lockout

Nothing in this package imports from ``backend.services``.
Apart from ``cache`` (which owns the only shared mutable state), all modules
are side-effect-free and unit-testable in isolation.
"""
