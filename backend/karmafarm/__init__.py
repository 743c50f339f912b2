"""Karma Farm Coordination Package: task engagements, karma, ratings, chat and realtime sync.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)

Design Decisions:
    - Empty __init__.py: explicit imports only, no star exports
"""
