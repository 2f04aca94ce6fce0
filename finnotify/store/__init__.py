"""Persistence collaborator for ledger entities and webhook subscriptions."""

from .ledger import LedgerStore

__all__ = ["LedgerStore"]
