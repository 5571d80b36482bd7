"""Documents, parse-error and compiler diagnostics, and compiler integration for Gren tooling."""

__version__ = "0.1.0"