"""Pydantic Schemas: request/response validation for API endpoints and the client.

Invariants:
    - Schemas validate at system boundary (user input, API responses)
    - Domain types from core/ used for enum fields

Design Decisions:
    - Separate from models: schemas are API contracts, models are persistence
    - The client parses responses with these same schemas
"""
