"""API Layer: FastAPI routes, dependencies and error handlers.

Invariants:
    - Routes registered explicitly in main.py (no auto-discovery)
    - All endpoints return structured JSON responses, except the SSE streams

Design Decisions:
    - Thin routes delegate to services; identity comes from the bearer token only
"""
