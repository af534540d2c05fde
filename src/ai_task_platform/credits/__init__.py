"""Append-only credit ledger."""
