"""Message Ordering: tests for pair canonicalization and blank content."""

from karmafarm.core.message_ordering import canonical_pair, is_blank


def test_canonical_pair_is_symmetric():
    assert canonical_pair("bob", "alice") == ("alice", "bob")
    assert canonical_pair("alice", "bob") == ("alice", "bob")


def test_blank_content():
    assert is_blank(None)
    assert is_blank("")
    assert is_blank("   \n\t")
    assert not is_blank(" hi ")
