"""Settlement Sweeper: background reconciliation of confirmed-but-unsettled engagements.

Invariants:
    - Each pass uses its own DB session; a failing pass is logged and the loop continues
    - Relies on KarmaLedger idempotency: a transfer that already happened is a no-op
"""

import asyncio
import logging
from collections.abc import Callable

from karmafarm.core.domain_types import SettlementStatus
from karmafarm.infrastructure.database import DatabaseSessionManager
from karmafarm.infrastructure.realtime import RealtimeHub
from karmafarm.services.engagement_engine import SettlementOutcome, TaskCompletionEngine
from karmafarm.services.karma_ledger import KarmaLedger
from karmafarm.services.post_registry import SqlPostRegistry

logger = logging.getLogger(__name__)


async def sweep_once(
    manager: DatabaseSessionManager,
    hub: RealtimeHub | None = None,
    allow_negative_balance: bool = True,
) -> list[SettlementOutcome]:
    async with manager.session() as db:
        engine = TaskCompletionEngine(
            db, SqlPostRegistry(db), KarmaLedger(db, allow_negative_balance), hub,
        )
        outcomes = await engine.settle_unsettled()
    settled = sum(1 for o in outcomes if o.status == SettlementStatus.SETTLED)
    if outcomes:
        logger.info(f"Settlement sweep: {settled}/{len(outcomes)} engagements settled")
    return outcomes


async def run_sweeper(
    get_manager: Callable[[], DatabaseSessionManager | None],
    interval_seconds: float,
    hub: RealtimeHub | None = None,
    allow_negative_balance: bool = True,
) -> None:
    """Loop forever until cancelled (lifespan shutdown)."""
    while True:
        await asyncio.sleep(interval_seconds)
        manager = get_manager()
        if manager is None:
            continue
        try:
            await sweep_once(manager, hub, allow_negative_balance)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Settlement sweep failed: {e}", exc_info=True)
