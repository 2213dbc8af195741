# Billing Ledger Test Suite
#
# Service-level tests against an in-memory SQLite database.
#
# Run with: python -m pytest [-m smoke]
