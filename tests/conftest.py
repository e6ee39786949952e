"""
Pytest fixtures for EditTree testing.

Provides node pools and a consistency checker shared by the kernel and
handle tests.
"""

import random

import pytest

from EditTree.EditTreeArray import NodePool


@pytest.fixture
def pool():
    """Small pool, so that most tests also exercise growth."""
    return NodePool(4)


@pytest.fixture
def rng():
    """Seeded random generator for reproducible operation sequences."""
    return random.Random(20180104)


@pytest.fixture
def consistent():
    """Return a checker asserting every structural invariant of a tree handle."""

    def check(tree, expected=None):
        assert tree.is_valid(), tree.to_debug_string()
        assert tree.size() == tree.slow_size()
        assert tree.height() == tree.slow_height()
        if expected is not None:
            assert str(tree) == expected
            assert tree.size() == len(expected)

    return check
