import logging
import operator
import numpy as np
from typing import Optional, Tuple, Union

from EditTree.EditTreeArray import (
    NULL,
    BALANCED,
    LEFT_HEAVY,
    RIGHT_HEAVY,
    DEFAULT_CAPACITY,
    NodePool,
    append,
    build,
    concatenate,
    copy_subtree,
    delete_at,
    get_at,
    get_node,
    get_range,
    height,
    inorder,
    insert_at,
    preorder_fields,
    release_subtree,
    size,
    slow_height,
    slow_size,
    subtree_stats,
    unpack,
)



logger = logging.getLogger(__name__)

BALANCE_SYMBOLS = {
    LEFT_HEAVY : "/",
    BALANCED   : "=",
    RIGHT_HEAVY: "\\",
}



# --------- Errors ---------
class EditTreeError(Exception):
    """Base class for every error raised by an EditTree."""


class OutOfRangeError(EditTreeError, IndexError):
    """A position (or the last position of a range) falls outside the tree."""


class InvalidOperationError(EditTreeError, ValueError):
    """The operation is not allowed on these operands, e.g. concatenating a tree with itself."""



# --------- Text <-> code points ---------
def encode(text: str) -> np.ndarray:
    """
    Convert a string to a 1D int64 array of Unicode code points.
    """

    raw = text.encode("utf-32-le", "surrogatepass")
    return np.frombuffer(raw, dtype=np.uint32).astype(np.int64)

def decode(codes: np.ndarray) -> str:
    """
    Convert an array of code points back into a string.
    """

    raw = np.asarray(codes, dtype=np.uint32).tobytes()
    return raw.decode("utf-32-le", "surrogatepass")

def _code(element: str) -> int:
    if not isinstance(element, str):
        raise TypeError(f"element must be a str, not {type(element).__name__}")
    if len(element) != 1:
        raise ValueError(f"element must be a single character, got {element!r}")
    return ord(element)



# --------- EditTree API ---------
class EditTree:
    """
    A height-balanced binary tree with rank, holding a sequence of characters.

    Positional reads, inserts and deletes run in O(log N); concatenating two
    trees that share a NodePool runs in O(log N) of the larger one. Every
    position is validated here before a kernel touches the tree, so a
    rejected call leaves the tree exactly as it was.

    The tree is not locked: callers must serialize access to a tree, and to
    every tree sharing its pool.

    Attributes:
        pool (NodePool): Arena holding this tree's nodes.
        root (int): Row index of the root node, 0 when the tree is empty.
    """

    def __init__(
        self,
        source: Union[None, str, "EditTree"] = None,
        pool:   Optional[NodePool] = None

    ) -> None:

        """
        Args:
            source: None for an empty tree, a string (a single character
                included) to build from in linear time, or another EditTree to
                deep-copy with the same shape, ranks and balance codes.
            pool: NodePool to allocate nodes from. A private pool is created
                when omitted.
        """

        self.pool       = pool if pool is not None else NodePool(DEFAULT_CAPACITY)
        self.root       = NULL
        self._rotations = 0

        if source is None:
            return

        if isinstance(source, EditTree):
            if source.root != NULL:
                self._reserve(len(source))
                self.root = copy_subtree(source.pool.nodes, source.root, self.pool)
            logger.debug("Copied tree of %d nodes", len(source))

        elif isinstance(source, str):
            if source:
                self._reserve(len(source))
                self.root = build(self.pool, encode(source))
            logger.debug("Built tree of %d nodes, height %d", len(source), self.height())

        else:
            raise TypeError(
                f"EditTree source must be None, a str or an EditTree, not {type(source).__name__}"
            )

    def _reserve(
        self,
        n: int

    ) -> None:

        capacity = self.pool.capacity
        self.pool.reserve(n)
        if self.pool.capacity != capacity:
            logger.debug("Grew node pool from %d to %d rows", capacity, self.pool.capacity)

    def _check_position(
        self,
        pos:   int,
        limit: int

    ) -> int:

        pos = operator.index(pos)
        if not (0 <= pos < limit):
            raise OutOfRangeError(f"position {pos} is outside [0, {limit})")
        return pos

    # --- Mutators ---
    def append(
        self,
        element: str

    ) -> None:

        """Adds `element` after the last position."""

        code = _code(element)
        self._reserve(1)
        self.root, rotations = append(self.pool, self.root, code)
        self._rotations += rotations

    def insert_at(
        self,
        element: str,
        pos:     int

    ) -> None:

        """
        Adds `element` so that it ends up at in-order position `pos`.

        Raises:
            OutOfRangeError: unless 0 <= pos <= size().
        """

        code = _code(element)
        pos  = self._check_position(pos, len(self) + 1)
        self._reserve(1)
        self.root, rotations = insert_at(self.pool, self.root, code, pos)
        self._rotations += rotations

    def delete_at(
        self,
        pos: int

    ) -> str:

        """
        Removes the element at `pos` and returns it.

        When the node holding it has a right child, the node takes over its
        in-order successor's element and the successor's node is removed.

        Raises:
            OutOfRangeError: unless 0 <= pos < size(), including on an empty tree.
        """

        pos = self._check_position(pos, len(self))
        self.root, removed, rotations = delete_at(self.pool, self.root, pos)
        self._rotations += rotations
        return chr(removed)

    def concatenate(
        self,
        other: "EditTree"

    ) -> None:

        """
        Appends the contents of `other` to this tree and leaves `other` empty.

        Both trees in the same pool: O(log N) of the larger tree. Otherwise
        `other`'s nodes are first moved into this tree's pool, which is linear
        in the size of `other`.

        Raises:
            InvalidOperationError: if `other` is this tree. Neither tree changes.
        """

        if other is self:
            raise InvalidOperationError("cannot concatenate a tree with itself")

        other_size = len(other)
        other_root = other.root
        moved      = other_root != NULL and other.pool is not self.pool
        if moved:
            self._reserve(other_size + 1)
            other_root = copy_subtree(other.pool.nodes, other_root, self.pool)
            release_subtree(other.pool, other.root)
        other.root = NULL

        self._reserve(1)
        before = len(self)
        self.root, rotations = concatenate(self.pool, self.root, other_root)
        self._rotations += rotations

        logger.debug(
            "Concatenated %d + %d nodes (moved across pools: %s, rotations: %d)",
            before, other_size, moved, rotations
        )

    def clear(self) -> None:
        """Releases every node back to the pool. The rotation count is kept."""

        if self.root != NULL:
            release_subtree(self.pool, self.root)
            self.root = NULL

    # --- Queries ---
    def get(
        self,
        pos: int

    ) -> str:

        """
        Returns the element at in-order position `pos`.

        Raises:
            OutOfRangeError: unless 0 <= pos < size().
        """

        pos = self._check_position(pos, len(self))
        return chr(get_at(self.pool.nodes, self.root, pos))

    def get_range(
        self,
        pos:    int,
        length: int

    ) -> str:

        """
        Returns the `length` characters starting at `pos`, in O(length + log N).

        Raises:
            OutOfRangeError: unless both pos and pos + length - 1 are valid
                positions. An empty range is accepted for 0 <= pos <= size().
        """

        pos    = operator.index(pos)
        length = operator.index(length)
        total  = len(self)
        if length < 0 or pos < 0 or pos + length > total:
            raise OutOfRangeError(
                f"range [{pos}, {pos + length}) is outside [0, {total})"
            )

        return decode(get_range(self.pool.nodes, self.root, pos, length))

    def find(
        self,
        s:   str,
        pos: int = 0

    ) -> int:

        """
        Position of the first occurrence of `s` at or after `pos`, -1 if absent.

        Linear: the whole sequence is rebuilt and searched as a plain string.
        """

        return str(self).find(s, pos)

    def size(self) -> int:
        return int(size(self.pool.nodes, self.root))

    def height(self) -> int:
        return int(height(self.pool.nodes, self.root))

    def slow_size(self) -> int:
        """Size by visiting every node. For verification only."""

        return int(slow_size(self.pool.nodes, self.root))

    def slow_height(self) -> int:
        """Height by visiting every node. For verification only."""

        return int(slow_height(self.pool.nodes, self.root))

    def is_valid(self) -> bool:
        """
        Checks the rank, height-difference and balance-code invariants of
        every node in linear time.
        """

        _, _, valid = subtree_stats(self.pool.nodes, self.root)
        return bool(valid)

    def total_rotation_count(self) -> int:
        """Rotations performed since the tree was created; a double rotation counts as two."""

        return self._rotations

    # --- Inspection ---
    def node_info(
        self,
        index: int

    ) -> Tuple[str, int, int, int, int]:

        """
        Unpack the node stored at row `index` of the pool.

        Returns:
            Tuple[str, int, int, int, int]: (element, rank, balance, left, right)
            where left and right are row indexes, 0 for no child.
        """

        if index == NULL:
            raise OutOfRangeError("row 0 is the empty subtree")

        element, rank, balance, left, right = unpack(*get_node(self.pool.nodes, index))
        return chr(element), int(rank), int(balance), int(left), int(right)

    def root_info(self) -> Tuple[str, int, int, int, int]:
        return self.node_info(self.root)

    def to_debug_string(self) -> str:
        """
        Pre-order dump of element, rank and balance symbol per node, e.g.
        the tree with root b and children a and c gives "[b1=, a0=, c0=]".
        """

        elements, ranks, balances = preorder_fields(self.pool.nodes, self.root)
        entries = [
            f"{chr(e)}{r}{BALANCE_SYMBOLS[b]}"
            for e, r, b in zip(elements.tolist(), ranks.tolist(), balances.tolist())
        ]
        return "[" + ", ".join(entries) + "]"

    def to_string(self) -> str:
        return decode(inorder(self.pool.nodes, self.root))

    def copy(self) -> "EditTree":
        """Deep copy into a fresh pool; the copy's rotation count starts at 0."""

        return EditTree(self)

    def __getitem__(self, pos: int) -> str:
        return self.get(pos)

    def __len__(self) -> int:
        return self.size()

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return (
            "EditTree(size=" + str(self.size()) + ", root=" + str(self.root)
            + ", height=" + str(self.height()) + ")"
        )
