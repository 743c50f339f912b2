"""ORM Models: SQLAlchemy declarative models for all persisted entities.

Invariants:
    - All models inherit from Base (db/base.py)
    - TaskEngagement, KarmaTransaction, Rating, Chat, Message are the durable contract
      other collaborators may read

Design Decisions:
    - One file per entity (Rating and its running totals share a file)
    - All models imported here so Base.metadata is complete before create_all/autogenerate
"""

from karmafarm.models.post import Post  # noqa: F401
from karmafarm.models.task_engagement import TaskEngagement  # noqa: F401
from karmafarm.models.karma_transaction import KarmaTransaction  # noqa: F401
from karmafarm.models.rating import Rating, RatingTotals  # noqa: F401
from karmafarm.models.chat import Chat  # noqa: F401
from karmafarm.models.message import Message  # noqa: F401
