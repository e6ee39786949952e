"""
Tests for the packed node layout, the node pool and the JIT tree kernels.
"""

import numpy as np
import pytest

from EditTree.EditTreeArray import (
    NULL,
    BALANCED,
    LEFT_HEAVY,
    RIGHT_HEAVY,
    INDEX_MASK,
    RANK_MASK,
    NodePool,
    pack,
    unpack,
    get_node,
    _update_balance,
    _update_left,
    _update_rank,
    append,
    build,
    concatenate,
    copy_subtree,
    delete_at,
    get_at,
    get_range,
    height,
    inorder,
    insert_at,
    preorder_fields,
    release_subtree,
    size,
    subtree_stats,
    warmup,
)


def codes(text):
    return np.array([ord(ch) for ch in text], dtype=np.int64)


def text(array):
    return "".join(chr(c) for c in array.tolist())


class TestPackedLayout:
    """Bit packing of the two node words."""

    def test_pack_unpack_extremes(self):
        """Every field keeps its full width and both words stay non-negative."""
        head, link = pack(0x10FFFF, RANK_MASK, RIGHT_HEAVY, INDEX_MASK, 5)

        assert head >= 0 and link >= 0
        assert unpack(head, link) == (0x10FFFF, RANK_MASK, RIGHT_HEAVY, INDEX_MASK, 5)

    def test_updates_touch_only_their_field(self):
        """Updating rank, balance or left leaves the other fields alone."""
        node = pack(ord("q"), 7, LEFT_HEAVY, 3, 9)

        node = _update_rank(node[0], node[1], 12)
        node = _update_balance(node[0], node[1], RIGHT_HEAVY)
        node = _update_left(node[0], node[1], 4)

        assert unpack(node[0], node[1]) == (ord("q"), 12, RIGHT_HEAVY, 4, 9)


class TestNodePool:
    """Row allocation, recycling and growth."""

    def test_invalid_capacity(self):
        """Negative capacities are rejected."""
        with pytest.raises(ValueError):
            NodePool(-1)

    def test_row_zero_is_never_allocated(self):
        """The first allocation gets row 1 and row 0 stays zeroed."""
        p = NodePool(2)
        index = p.alloc(ord("a"))

        assert index == 1
        assert p.count == 1
        assert tuple(p.nodes[0]) == (0, 0)

    def test_alloc_past_capacity_without_reserve(self):
        """An empty pool that was never reserved has no rows to hand out."""
        p = NodePool(0)
        with pytest.raises(MemoryError):
            p.alloc(ord("a"))

    def test_release_recycles_rows(self):
        """Released rows are zeroed and handed out again first."""
        p = NodePool(4)
        first = p.alloc(ord("a"))
        p.alloc(ord("b"))
        p.release(first)

        assert p.count == 1
        assert tuple(p.nodes[first]) == (0, 0)
        assert p.alloc(ord("c")) == first

    def test_reserve_grows_and_keeps_rows(self):
        """Growth keeps existing rows and makes room for the request."""
        p = NodePool(2)
        index = p.alloc(ord("z"))
        p.reserve(100)

        assert p.capacity >= 101
        assert p.available() >= 100
        assert unpack(*get_node(p.nodes, index))[0] == ord("z")


class TestBuild:
    """Linear-time construction from a code point array."""

    def test_empty(self, pool):
        """An empty array builds the empty subtree."""
        assert build(pool, codes("")) == NULL

    def test_seven_is_perfect(self, pool):
        """Seven elements make a perfect tree of height 2."""
        root = build(pool, codes("abcdefg"))
        elements, ranks, balances = preorder_fields(pool.nodes, root)

        assert text(elements) == "dbacfeg"
        assert ranks.tolist() == [3, 1, 0, 0, 1, 0, 0]
        assert balances.tolist() == [BALANCED] * 7
        assert height(pool.nodes, root) == 2

    def test_even_sizes_lean_left(self, pool):
        """The left slice is never shorter, so only left-heavy codes appear."""
        root = build(pool, codes("abcd"))
        elements, ranks, balances = preorder_fields(pool.nodes, root)

        assert text(elements) == "cbad"
        assert ranks.tolist() == [2, 1, 0, 0]
        assert balances.tolist() == [LEFT_HEAVY, LEFT_HEAVY, BALANCED, BALANCED]

    def test_large_build_is_valid(self, pool):
        """Every size up to 130 builds a tree that passes the oracle."""
        for n in range(130):
            root = build(pool, codes("x" * n))
            s, h, valid = subtree_stats(pool.nodes, root)
            assert valid
            assert s == n == size(pool.nodes, root)
            assert h == height(pool.nodes, root)
            release_subtree(pool, root)

        assert pool.count == 0


class TestKernels:
    """Insert, delete, read and merge on raw row indexes."""

    def test_append_rotates_once(self, pool):
        """Three appends trigger exactly one single rotation."""
        root, total = NULL, 0
        for ch in "abc":
            root, spent = append(pool, root, ord(ch))
            total += spent

        assert total == 1
        assert text(inorder(pool.nodes, root)) == "abc"
        assert preorder_fields(pool.nodes, root)[1].tolist() == [1, 0, 0]

    def test_insert_double_rotation(self, pool):
        """Inserting between a and c under a right-leaning root is a double rotation."""
        root, _ = append(pool, NULL, ord("a"))
        root, _ = append(pool, root, ord("c"))
        root, spent = insert_at(pool, root, ord("b"), 1)

        assert spent == 2
        elements, ranks, balances = preorder_fields(pool.nodes, root)
        assert text(elements) == "bac"
        assert ranks.tolist() == [1, 0, 0]
        assert balances.tolist() == [BALANCED] * 3

    def test_delete_returns_removed_element(self, pool):
        """Deleting a node with two children moves its successor up."""
        root = build(pool, codes("abcdefg"))
        root, removed, spent = delete_at(pool, root, 3)

        assert chr(removed) == "d"
        assert spent == 0
        assert text(inorder(pool.nodes, root)) == "abcefg"
        assert subtree_stats(pool.nodes, root)[2]
        assert pool.count == 6

    def test_get_and_range(self, pool):
        """Positional reads agree with the in-order sequence."""
        root = build(pool, codes("abcdefghij"))

        assert chr(get_at(pool.nodes, root, 0)) == "a"
        assert chr(get_at(pool.nodes, root, 9)) == "j"
        assert text(get_range(pool.nodes, root, 3, 4)) == "defg"
        assert get_range(pool.nodes, root, 5, 0).size == 0

    def test_get_out_of_range(self, pool):
        """Reading past the end raises from the kernel."""
        root = build(pool, codes("abc"))
        with pytest.raises(IndexError):
            get_at(pool.nodes, root, 3)

    def test_concatenate_taller_left(self, pool):
        """A short right tree is grafted onto the right spine."""
        left = build(pool, codes("abcdefghijklmno"))
        right = build(pool, codes("xy"))
        root, _ = concatenate(pool, left, right)

        assert text(inorder(pool.nodes, root)) == "abcdefghijklmnoxy"
        assert subtree_stats(pool.nodes, root)[2]

    def test_concatenate_taller_right(self, pool):
        """A short left tree is grafted onto the left spine with rank updates."""
        left = build(pool, codes("ab"))
        right = build(pool, codes("cdefghijklmnopqrstu"))
        root, _ = concatenate(pool, left, right)

        assert text(inorder(pool.nodes, root)) == "abcdefghijklmnopqrstu"
        assert subtree_stats(pool.nodes, root)[2]

    def test_concatenate_with_empty(self, pool):
        """Either side empty returns the other root untouched."""
        root = build(pool, codes("abc"))

        assert concatenate(pool, root, NULL) == (root, 0)
        assert concatenate(pool, NULL, root) == (root, 0)

    def test_copy_subtree_between_pools(self, pool):
        """A copy has the same shape, ranks and balance codes."""
        root = build(pool, codes("abcdefghijk"))
        root, _ = append(pool, root, ord("l"))

        target = NodePool(1)
        copy = copy_subtree(pool.nodes, root, target)

        original = preorder_fields(pool.nodes, root)
        copied = preorder_fields(target.nodes, copy)
        for a, b in zip(original, copied):
            assert a.tolist() == b.tolist()
        assert target.count == pool.count

    def test_warmup(self):
        """Warmup compiles and runs every kernel on a valid tree."""
        assert warmup()
