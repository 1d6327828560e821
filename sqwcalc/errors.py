"""
Exception types raised by sqwcalc.

Both derive from ``ValueError`` so callers that already guard against bad
input with ``except ValueError`` keep working.
"""


class ConfigurationError(ValueError):
    """Invalid construction-time settings (modes, observables, step sizes)."""


class QueryError(ValueError):
    """Malformed retrieval request (wavevector shapes, point counts, form factors)."""
