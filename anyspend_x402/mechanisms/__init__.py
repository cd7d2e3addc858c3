"""Payment mechanisms (per-ledger scheme implementations)."""
