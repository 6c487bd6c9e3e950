"""Exactly-once migration system.

Tracks applied steps in a ledger and applies pending ones in order,
one runner at a time across every replica sharing the ledger.
"""
