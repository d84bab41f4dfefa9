"""
Credit Wallet Module
Credit-based access control for the virtual try-on generator

This module provides:
- Credit ledger (per-token balances, concurrency-safe deductions)
- Redemption codes (single use, optional email restriction)
- Free-trial grants (one claim per origin)
- Stripe checkout reconciliation for credit packages
- Best-effort snapshot persistence (JSON files or MongoDB)

Snapshot documents (each write replaces the whole document):
- ledger: balances keyed by token
- codes: redemption codes keyed by code
- free_trials: free-trial claims keyed by origin
- payments: reconciled checkout sessions keyed by session id
"""

__version__ = "1.0.0"
