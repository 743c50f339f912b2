"""Root conftest: shared test configuration."""

import os

# Never point tests at a real database or a real signing secret
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite+aiosqlite:///test.db",
)
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("SETTLEMENT_SWEEP_SECONDS", "0")
