"""Async Python client for the Karma Farm API.

Invariants:
    - Error envelopes are decoded into the same KarmaFarmError subclasses the server raises
    - Only idempotent operations are retried (core/retry_policy.py)
    - Realtime subscriptions reconnect with backoff and re-fetch after every reconnect
"""

from karmafarm.client.http_client import KarmaFarmClient  # noqa: F401
from karmafarm.client.identity import StaticCredentials  # noqa: F401
from karmafarm.client.realtime_client import SubscriptionHandle  # noqa: F401
