"""Infrastructure Layer: database sessions, identity, realtime fan-out, logging.

Invariants:
    - Infrastructure never imports from services/
    - External failures are mapped to KarmaFarmError subclasses at this boundary

Design Decisions:
    - Process-wide components are composed once in main.py and shared via app.state
"""
