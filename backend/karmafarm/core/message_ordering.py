"""Message Ordering: chat pair canonicalization and message content checks.

Invariants:
    - A chat pair is unordered: canonical_pair(a, b) == canonical_pair(b, a)
    - Content is blank iff it is empty after stripping whitespace

Design Decisions:
    - Message order itself is (created_at, id), applied in SQL by ChatCoordinator
"""


def canonical_pair(user_a: str, user_b: str) -> tuple[str, str]:
    return (user_a, user_b) if user_a <= user_b else (user_b, user_a)


def is_blank(content: str | None) -> bool:
    return content is None or not content.strip()
