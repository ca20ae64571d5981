"""Operational command-line tools (schema setup, scam list import/export, ad-hoc checks)."""
