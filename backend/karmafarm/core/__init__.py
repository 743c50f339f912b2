"""Core Layer: pure coordination rules, no IO, no async, no DB.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - Functions take time and state as arguments and are deterministic

Design Decisions:
    - Functional core (transitions, ledger rules, rating math, typing, presence)
      separated from the imperative shell in services/
"""
