"""SeatSync: seat-billing reconciliation for multi-tenant organizations."""

__version__ = "0.1.0"
