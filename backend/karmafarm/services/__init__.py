"""Services Layer: the imperative shell around the core rules.

Invariants:
    - Every state change is committed before its realtime event is published
    - Services raise KarmaFarmError subclasses; routes never translate them

Design Decisions:
    - One coordinator per concern (engagements, ledger, ratings, chat, typing, presence)
"""
