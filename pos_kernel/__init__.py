"""
POS Kernel - invoice computation core.

Domain types, typed errors and structured logging shared by the
engines and the invoice session:
- Decimal-only currency arithmetic, rounded at presentation time
- Typed, code-carrying exceptions
- JSON structured logging with session-scoped context
"""

__version__ = "0.1.0"
