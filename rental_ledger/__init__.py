"""
rental_ledger -- inventory movement and allocation ledger for a rental CRM.

Tracks how many units of each rentable item exist, how many are allocated
to subscriptions and events, and how units move between available,
allocated, damaged and lost.  Movements are append-only; the per-item
quantity summary is maintained in the same transaction and can be verified
by replay.
"""

__version__ = "0.1.0"
