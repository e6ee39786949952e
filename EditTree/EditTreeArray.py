import numpy as np
from numba import njit, int64
from numba.experimental import jitclass
from typing import Tuple



# Packed 128-bit layout (two non-negative int64 words):
#     HEAD[64]: [unused[10] | element[21] | balance[2] | rank[31]]
#     LINK[64]: [unused[2]  | left[31]    | right[31]]
#     Limitations:
#         0 <= element <= 0x10FFFF        (one Unicode code point)
#         0 <= rank    <= (1 << 31) - 1
#         0 <= left    <= (1 << 31) - 1
#         0 <= right   <= (1 << 31) - 1
#
# Row 0 of every pool is the empty subtree: it is all zeros, never allocated
# and never written. A child index of 0 means "no subtree".



RANK_MASK     = np.int64(0x7FFFFFFF) # (1 << 31) - 1
BALANCE_MASK  = np.int64(0x3)        # (1 <<  2) - 1
ELEMENT_MASK  = np.int64(0x1FFFFF)   # (1 << 21) - 1
INDEX_MASK    = np.int64(0x7FFFFFFF) # (1 << 31) - 1
BALANCE_SHIFT = np.int64(0x1F)       # 31
ELEMENT_SHIFT = np.int64(0x21)       # 33
LEFT_SHIFT    = np.int64(0x1F)       # 31

NULL = 0

# Balance codes double as direction codes: a node that is LEFT_HEAVY has a
# taller LEFT subtree. opposite(d) == 3 - d for both.
BALANCED    = 0
LEFT_HEAVY  = 1
RIGHT_HEAVY = 2
LEFT        = 1
RIGHT       = 2

# Change tags carried back up the tree after an edit.
STABLE   = 0
INSERTED = 1
DELETED  = 2

MAX_DEPTH        = 128
DEFAULT_CAPACITY = 64



# ---------- JIT-Compiled Bitwise Accessors / Updaters for Packed Fields ----------
@njit(inline="always")
def pack(
    element: np.int64,
    rank:    np.int64,
    balance: np.int64,
    left:    np.int64,
    right:   np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Pack the five node fields into a tuple of two 64-bit integers (head, link)
    according to the layout:
        HEAD: [element[21] | balance[2] | rank[31]]
        LINK: [left[31] | right[31]]

    Every field is masked to its width, so both words stay non-negative and
    the arithmetic never touches the sign bit.

    :param element: Unicode code point stored in the node (up to 21 bits)
    :type element: np.int64
    :param rank: Number of nodes in the left subtree (up to 31 bits)
    :type rank: np.int64
    :param balance: One of BALANCED, LEFT_HEAVY, RIGHT_HEAVY
    :type balance: np.int64
    :param left: Row index of the left child, 0 for none
    :type left: np.int64
    :param right: Row index of the right child, 0 for none
    :type right: np.int64
    :return: A tuple (head, link) representing the packed node
    :rtype: Tuple[np.int64, np.int64]
    """

    element = np.int64(element)
    rank    = np.int64(rank)
    balance = np.int64(balance)
    left    = np.int64(left)
    right   = np.int64(right)

    head = ((element & ELEMENT_MASK) << ELEMENT_SHIFT) | ((balance & BALANCE_MASK) << BALANCE_SHIFT) | (rank & RANK_MASK)
    link = ((left & INDEX_MASK) << LEFT_SHIFT) | (right & INDEX_MASK)

    return np.int64(head), np.int64(link)

@njit(inline="always")
def unpack(
    head: np.int64,
    link: np.int64

) -> Tuple[np.int64, np.int64, np.int64, np.int64, np.int64]:

    """
    Unpack a node (head, link) into (element, rank, balance, left, right).

    NOTE:
    Intended for inspection, testing and debugging. The kernels below read
    single fields through the `_get_*` accessors instead.

    :param head: The head word of the packed node
    :type head: np.int64
    :param link: The link word of the packed node
    :type link: np.int64
    :return: A tuple of five integers (element, rank, balance, left, right)
    :rtype: Tuple[np.int64, np.int64, np.int64, np.int64, np.int64]
    """

    rank    = head & RANK_MASK
    balance = (head >> BALANCE_SHIFT) & BALANCE_MASK
    element = (head >> ELEMENT_SHIFT) & ELEMENT_MASK
    right   = link & INDEX_MASK
    left    = (link >> LEFT_SHIFT) & INDEX_MASK

    return element, rank, balance, left, right

@njit(inline="always")
def _get_element(
    head: np.int64,
    _:    np.int64

) -> np.int64:

    """
    Extract the 'element' field (21 bits) from the head word.
    """

    return np.int64((head >> ELEMENT_SHIFT) & ELEMENT_MASK)

@njit(inline="always")
def _get_balance(
    head: np.int64,
    _:    np.int64

) -> np.int64:

    """
    Extract the 'balance' field (2 bits) from the head word.
    """

    return np.int64((head >> BALANCE_SHIFT) & BALANCE_MASK)

@njit(inline="always")
def _get_rank(
    head: np.int64,
    _:    np.int64

) -> np.int64:

    """
    Extract the 'rank' field (31 bits) from the head word.
    """

    return np.int64(head & RANK_MASK)

@njit(inline="always")
def _get_left(
    _:    np.int64,
    link: np.int64

) -> np.int64:

    return np.int64((link >> LEFT_SHIFT) & INDEX_MASK)

@njit(inline="always")
def _get_right(
    _:    np.int64,
    link: np.int64

) -> np.int64:

    return np.int64(link & INDEX_MASK)

@njit(inline="always")
def _update_element(
    head:        np.int64,
    link:        np.int64,
    new_element: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Update the 'element' field in the head word.

    The link word is returned as-is. Only the element bits inside `head`
    are replaced with `new_element`.
    """

    new_element = np.int64(new_element)
    head = (head & ~(ELEMENT_MASK << ELEMENT_SHIFT)) | ((new_element & ELEMENT_MASK) << ELEMENT_SHIFT)

    return np.int64(head), link

@njit(inline="always")
def _update_balance(
    head:        np.int64,
    link:        np.int64,
    new_balance: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Update the 'balance' field in the head word.
    """

    new_balance = np.int64(new_balance)
    head = (head & ~(BALANCE_MASK << BALANCE_SHIFT)) | ((new_balance & BALANCE_MASK) << BALANCE_SHIFT)

    return np.int64(head), link

@njit(inline="always")
def _update_rank(
    head:     np.int64,
    link:     np.int64,
    new_rank: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Update the 'rank' field in the head word.
    """

    new_rank = np.int64(new_rank)
    head = (head & ~RANK_MASK) | (new_rank & RANK_MASK)

    return np.int64(head), link

@njit(inline="always")
def _update_left(
    head:     np.int64,
    link:     np.int64,
    new_left: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Update the 'left' field (upper 31 bits) in the link word.

    :param head: The head word, returned unchanged
    :type head: np.int64
    :param link: The link word containing 'left' and 'right'
    :type link: np.int64
    :param new_left: The new row index of the left child
    :type new_left: np.int64
    :return: A tuple of updated (head, link) words
    :rtype: Tuple[np.int64, np.int64]
    """

    new_left = np.int64(new_left)
    link = (link & INDEX_MASK) | ((new_left & INDEX_MASK) << LEFT_SHIFT)

    return head, np.int64(link)

@njit(inline="always")
def _update_right(
    head:      np.int64,
    link:      np.int64,
    new_right: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Update the 'right' field (lower 31 bits) in the link word.
    """

    new_right = np.int64(new_right)
    link = (link & ~INDEX_MASK) | (new_right & INDEX_MASK)

    return head, np.int64(link)

@njit(inline="always")
def set_node(
    nodes: np.ndarray,
    index,
    node:  Tuple[np.int64, np.int64]

) -> None:

    """
    Assign a packed node tuple (head, link) to the given row in the pool array.
    Compatible with Numba nopython mode.
    """

    nodes[np.int64(index), 0] = node[0]
    nodes[np.int64(index), 1] = node[1]

@njit(inline="always")
def get_node(
    nodes: np.ndarray,
    index: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Get a packed node from the pool array by row index.
    """

    i = np.int64(index)
    return nodes[i, 0], nodes[i, 1]



# ---------- JIT-Compiled Field Access by Row Index ----------
@njit(inline="always")
def element_of(nodes: np.ndarray, index: np.int64) -> np.int64:
    h, l = get_node(nodes, index)
    return _get_element(h, l)

@njit(inline="always")
def rank_of(nodes: np.ndarray, index: np.int64) -> np.int64:
    h, l = get_node(nodes, index)
    return _get_rank(h, l)

@njit(inline="always")
def balance_of(nodes: np.ndarray, index: np.int64) -> np.int64:
    h, l = get_node(nodes, index)
    return _get_balance(h, l)

@njit(inline="always")
def left_of(nodes: np.ndarray, index: np.int64) -> np.int64:
    h, l = get_node(nodes, index)
    return _get_left(h, l)

@njit(inline="always")
def right_of(nodes: np.ndarray, index: np.int64) -> np.int64:
    h, l = get_node(nodes, index)
    return _get_right(h, l)

@njit(inline="always")
def child_of(
    nodes:     np.ndarray,
    index:     np.int64,
    direction: np.int64

) -> np.int64:

    """
    Row index of the child on the given side (LEFT or RIGHT).
    """

    if direction == LEFT:
        return left_of(nodes, index)
    return right_of(nodes, index)

@njit(inline="always")
def set_element(nodes: np.ndarray, index: np.int64, value: np.int64) -> None:
    h, l = get_node(nodes, index)
    set_node(nodes, index, _update_element(h, l, value))

@njit(inline="always")
def set_rank(nodes: np.ndarray, index: np.int64, value: np.int64) -> None:
    h, l = get_node(nodes, index)
    set_node(nodes, index, _update_rank(h, l, value))

@njit(inline="always")
def set_balance(nodes: np.ndarray, index: np.int64, value: np.int64) -> None:
    h, l = get_node(nodes, index)
    set_node(nodes, index, _update_balance(h, l, value))

@njit(inline="always")
def set_child(
    nodes:     np.ndarray,
    index:     np.int64,
    direction: np.int64,
    child:     np.int64

) -> None:

    """
    Re-parent `child` onto the given side of the node at `index`.
    """

    h, l = get_node(nodes, index)
    if direction == LEFT:
        set_node(nodes, index, _update_left(h, l, child))
    else:
        set_node(nodes, index, _update_right(h, l, child))



# --------- Node Pool ---------
pool_spec = [
    ("capacity"      , int64),
    ("count"         , int64),
    ("nodes"         , int64[:, :]),
    ("_free"         , int64),
    ("_free_list"    , int64[:]),
    ("_free_list_top", int64),
    ("_path"         , int64[:]),
    ("_dirs"         , int64[:]),

]

@jitclass(pool_spec)
class NodePool:
    """
    Arena holding the packed nodes of one or more sequence trees.

    Rows are handed out by `alloc` and recycled through a free list by
    `release`. Trees that live in the same pool can be concatenated in
    logarithmic time because their subtrees can be re-parented in place.

    Attributes:
        capacity (int64): Number of allocatable rows (row 0 excluded).
        count (int64): Number of rows currently holding a live node.
        nodes (int64[:, :]): Underlying 2D array [capacity + 1, 2] of packed nodes.
    """

    def __init__(
        self,
        capacity: int

    ) -> None:

        if not (0 <= capacity <= INDEX_MASK - 1):
            raise ValueError("The pool capacity must be between 0 and 2**31 - 2")

        self.capacity       = capacity
        self.count          = 0
        self.nodes          = np.zeros((capacity + 1, 2), dtype=np.int64)
        self._free          = 1
        self._free_list     = np.zeros(capacity + 1, dtype=np.int64)
        self._free_list_top = 0
        self._path          = np.zeros(MAX_DEPTH, dtype=np.int64)
        self._dirs          = np.zeros(MAX_DEPTH, dtype=np.int64)

    def available(self) -> int:
        """Number of rows that can be allocated without growing the pool."""

        return self._free_list_top + (self.capacity + 1 - self._free)

    def reserve(
        self,
        n: int

    ) -> None:

        """
        Make sure at least `n` rows can be allocated without growing.

        Growth doubles the capacity (or jumps straight to what is needed) and
        copies the live rows over. Row indexes stay valid across growth, but
        any `nodes` array fetched before the call is stale afterwards.
        """

        if self.available() >= n:
            return

        needed       = self.count + n
        new_capacity = max(self.capacity * 2, needed, DEFAULT_CAPACITY)
        if new_capacity > INDEX_MASK - 1:
            if needed > INDEX_MASK - 1:
                raise MemoryError("node pool exhausted")
            new_capacity = INDEX_MASK - 1

        nodes = np.zeros((new_capacity + 1, 2), dtype=np.int64)
        nodes[: self.capacity + 1, :] = self.nodes

        free_list = np.zeros(new_capacity + 1, dtype=np.int64)
        free_list[: self._free_list_top] = self._free_list[: self._free_list_top]

        self.nodes      = nodes
        self._free_list = free_list
        self.capacity   = new_capacity

    def alloc(
        self,
        element: int

    ) -> int:

        """Hands out a fresh balanced leaf holding `element`. Returns its row index."""

        if self._free_list_top > 0:
            self._free_list_top -= 1
            index = self._free_list[self._free_list_top]
        else:
            if self._free > self.capacity:
                raise MemoryError("node pool exhausted")
            index = self._free
            self._free += 1

        set_node(self.nodes, index, pack(element, 0, BALANCED, NULL, NULL))
        self.count += 1
        return index

    def release(
        self,
        index: int

    ) -> None:

        """Zeroes the row and pushes it onto the free list."""

        set_node(self.nodes, index, (np.int64(0), np.int64(0)))
        self._free_list[self._free_list_top] = index
        self._free_list_top += 1
        self.count -= 1



# ---------- JIT-Compiled Rebalancing ----------
@njit(inline="always")
def single_rotation(
    nodes:     np.ndarray,
    index:     np.int64,
    direction: np.int64,
    change:    np.int64

) -> Tuple[np.int64, np.int64, np.int64]:

    """
    Perform a single rotation of the node at `index` in `direction`.

    The child on the opposite side is promoted to subtree root and the old
    root becomes its `direction` child. Balance codes are reset for an
    insertion, or whenever the promoted child leaned the same way as its
    parent; otherwise (a deletion under a balanced child) the two nodes take
    complementary codes and the height change is absorbed.

    Ranks are corrected by size conservation: rotating left, the promoted
    child gains the old root and its left subtree; rotating right, the old
    root loses the promoted child and its left subtree.

    :param nodes: Pool array holding the packed nodes
    :type nodes: np.ndarray
    :param index: Row index of the subtree root to rotate
    :type index: np.int64
    :param direction: LEFT or RIGHT
    :type direction: np.int64
    :param change: INSERTED or DELETED, the edit being rebalanced
    :type change: np.int64
    :return: (new subtree root, remaining change, rotations performed)
    :rtype: Tuple[np.int64, np.int64, np.int64]
    """

    opposite = 3 - direction
    child    = child_of(nodes, index, opposite)

    # Rotate
    set_child(nodes, index, opposite, child_of(nodes, child, direction))
    set_child(nodes, child, direction, index)

    # Balance codes
    if change == INSERTED or balance_of(nodes, child) == opposite:
        set_balance(nodes, index, BALANCED)
        set_balance(nodes, child, BALANCED)
    else:
        set_balance(nodes, index, opposite)
        set_balance(nodes, child, direction)
        change = STABLE

    if change == INSERTED:
        change = STABLE

    # Ranks
    if direction == LEFT:
        set_rank(nodes, child, rank_of(nodes, child) + rank_of(nodes, index) + 1)
    else:
        set_rank(nodes, index, rank_of(nodes, index) - rank_of(nodes, child) - 1)

    return child, change, np.int64(1)

@njit(inline="always")
def double_rotation(
    nodes:     np.ndarray,
    index:     np.int64,
    direction: np.int64,
    change:    np.int64

) -> Tuple[np.int64, np.int64, np.int64]:

    """
    Perform a double rotation of the node at `index` in `direction`.

    With `b` the child on the opposite side and `c` the grandchild on b's
    `direction` side, `c` becomes the subtree root with the old root and `b`
    as its children; c's former children fill the vacated slots. A double
    rotation always absorbs an insertion and always shortens the subtree
    after a deletion, so a DELETED change keeps propagating.

    Args:
        nodes (np.ndarray): Pool array holding the packed nodes.
        index (np.int64): Row index of the subtree root to rotate.
        direction (np.int64): LEFT or RIGHT.
        change (np.int64): INSERTED or DELETED.

    Returns:
        Tuple[np.int64, np.int64, np.int64]:
            - new subtree root (the old grandchild).
            - remaining change.
            - rotations performed (always 2).
    """

    opposite   = 3 - direction
    child      = child_of(nodes, index, opposite)
    grandchild = child_of(nodes, child, direction)

    # Rotate
    set_child(nodes, index, opposite, child_of(nodes, grandchild, direction))
    set_child(nodes, child, direction, child_of(nodes, grandchild, opposite))
    set_child(nodes, grandchild, opposite, child)
    set_child(nodes, grandchild, direction, index)

    # Balance codes
    tilt = balance_of(nodes, grandchild)
    if tilt == BALANCED:
        set_balance(nodes, index, BALANCED)
        set_balance(nodes, child, BALANCED)
    elif tilt == opposite:
        set_balance(nodes, index, direction)
        set_balance(nodes, child, BALANCED)
    else:
        set_balance(nodes, index, BALANCED)
        set_balance(nodes, child, opposite)
    set_balance(nodes, grandchild, BALANCED)

    if change == INSERTED:
        change = STABLE

    # Ranks
    if direction == RIGHT:
        set_rank(nodes, index, rank_of(nodes, index) - rank_of(nodes, grandchild) - rank_of(nodes, child) - 2)
        set_rank(nodes, grandchild, rank_of(nodes, grandchild) + rank_of(nodes, child) + 1)
    else:
        set_rank(nodes, child, rank_of(nodes, child) - rank_of(nodes, grandchild) - 1)
        set_rank(nodes, grandchild, rank_of(nodes, grandchild) + rank_of(nodes, index) + 1)

    return grandchild, change, np.int64(2)

@njit
def check(
    nodes:  np.ndarray,
    index:  np.int64,
    side:   np.int64,
    child:  np.int64,
    change: np.int64

) -> Tuple[np.int64, np.int64, np.int64]:

    """
    Adopt `child` on `side` of the node at `index` and rebalance if needed.

    `change` says what happened inside the child: INSERTED (it may have
    grown), DELETED (it may have shrunk) or STABLE (its height is unchanged).
    For an insertion the subtree leans towards `side`; for a deletion it
    leans away from it. A node already leaning that way rotates, otherwise
    its balance code shifts by one step and the change either stops here or
    keeps climbing.

    Returns:
        Tuple[np.int64, np.int64, np.int64]: (subtree root, change to
        report to the parent, rotations performed).
    """

    set_child(nodes, index, side, child)
    if change == STABLE:
        return index, change, np.int64(0)

    if change == INSERTED:
        d = side
    else:
        d = 3 - side

    balance = balance_of(nodes, index)
    if balance == d:
        pivot = child_of(nodes, index, d)
        if balance_of(nodes, pivot) == 3 - d:
            return double_rotation(nodes, index, 3 - d, change)
        return single_rotation(nodes, index, 3 - d, change)

    if balance == 3 - d:
        set_balance(nodes, index, BALANCED)
        if change == INSERTED:
            change = STABLE
    else:
        set_balance(nodes, index, d)
        if change == DELETED:
            change = STABLE

    return index, change, np.int64(0)

@njit
def _climb(
    nodes:  np.ndarray,
    path:   np.ndarray,
    dirs:   np.ndarray,
    depth:  np.int64,
    child:  np.int64,
    change: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Walk the recorded path bottom-up, letting every ancestor check the
    subtree it gets back. Returns (new root, rotations performed).
    """

    rotations = 0
    for k in range(depth - 1, -1, -1):
        child, change, spent = check(nodes, path[k], dirs[k], child, change)
        rotations += spent

    return child, rotations



# ---------- JIT-Compiled Sequence Operations ----------
@njit
def append(
    pool:    NodePool,
    root:    np.int64,
    element: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Insert `element` after the last position, descending the right spine.
    Returns (new root, rotations performed).
    """

    pool.reserve(1)
    nodes = pool.nodes
    path  = pool._path
    dirs  = pool._dirs

    depth = 0
    node  = root
    while node != NULL:
        path[depth] = node
        dirs[depth] = RIGHT
        depth += 1
        node = right_of(nodes, node)

    leaf = pool.alloc(element)
    return _climb(nodes, path, dirs, depth, leaf, INSERTED)

@njit
def insert_at(
    pool:     NodePool,
    root:     np.int64,
    element:  np.int64,
    position: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Insert `element` so that it ends up at `position` in the in-order sequence.

    Parameters
    ----------
    pool : NodePool
        The pool holding the tree.
    root : np.int64
        Row index of the current root (0 if the tree is empty).
    element : np.int64
        Code point to insert.
    position : np.int64
        Target position, 0 <= position <= size. Validated by the caller.

    Returns
    -------
    Tuple[np.int64, np.int64]
        (new root, rotations performed).
    """

    pool.reserve(1)
    nodes = pool.nodes
    path  = pool._path
    dirs  = pool._dirs

    depth = 0
    node  = root
    while node != NULL:
        rank        = rank_of(nodes, node)
        path[depth] = node
        if position <= rank:
            set_rank(nodes, node, rank + 1)
            dirs[depth] = LEFT
            node        = left_of(nodes, node)
        else:
            position   -= rank + 1
            dirs[depth] = RIGHT
            node        = right_of(nodes, node)
        depth += 1

    if position != 0:
        raise IndexError("insert position out of range")

    leaf = pool.alloc(element)
    return _climb(nodes, path, dirs, depth, leaf, INSERTED)

@njit
def delete_at(
    pool:     NodePool,
    root:     np.int64,
    position: np.int64

) -> Tuple[np.int64, np.int64, np.int64]:

    """
    Remove the element at `position` and rebalance.

    A node with no right child is replaced by its left child. Otherwise the
    node takes over its in-order successor's element and the successor is
    removed instead, repeating down the chain until a node without a right
    child is reached.

    Args:
        pool (NodePool): The pool holding the tree.
        root (np.int64): Row index of the current root.
        position (np.int64): 0 <= position < size. Validated by the caller.

    Returns:
        Tuple[np.int64, np.int64, np.int64]:
            - new root.
            - removed element.
            - rotations performed.
    """

    nodes = pool.nodes
    path  = pool._path
    dirs  = pool._dirs

    depth = 0
    node  = root
    while 1:
        if node == NULL:
            raise IndexError("delete position out of range")

        rank = rank_of(nodes, node)
        if position > rank:
            path[depth] = node
            dirs[depth] = RIGHT
            depth      += 1
            position   -= rank + 1
            node        = right_of(nodes, node)
        elif position < rank:
            set_rank(nodes, node, rank - 1)
            path[depth] = node
            dirs[depth] = LEFT
            depth      += 1
            node        = left_of(nodes, node)
        else:
            break

    removed = element_of(nodes, node)
    target  = node
    while right_of(nodes, target) != NULL:
        path[depth] = target
        dirs[depth] = RIGHT
        depth      += 1

        successor = right_of(nodes, target)
        while left_of(nodes, successor) != NULL:
            set_rank(nodes, successor, rank_of(nodes, successor) - 1)
            path[depth] = successor
            dirs[depth] = LEFT
            depth      += 1
            successor   = left_of(nodes, successor)

        set_element(nodes, target, element_of(nodes, successor))
        target = successor

    replacement = left_of(nodes, target)
    pool.release(target)

    new_root, rotations = _climb(nodes, path, dirs, depth, replacement, DELETED)
    return new_root, removed, rotations

@njit
def get_at(
    nodes:    np.ndarray,
    root:     np.int64,
    position: np.int64

) -> np.int64:

    """Reads the element at `position` by rank comparison. No mutation."""

    node = root
    while node != NULL:
        rank = rank_of(nodes, node)
        if position < rank:
            node = left_of(nodes, node)
        elif position > rank:
            position -= rank + 1
            node      = right_of(nodes, node)
        else:
            return element_of(nodes, node)

    raise IndexError("position out of range")

@njit
def get_range(
    nodes:    np.ndarray,
    root:     np.int64,
    position: np.int64,
    length:   np.int64

) -> np.ndarray:

    """
    Collect `length` elements starting at `position` in in-order.

    Descends once to `position`, stacking every ancestor that still has to be
    emitted, then walks in-order successors, so the cost is
    O(length + log N).
    """

    out = np.empty(length, dtype=np.int64)
    if length == 0:
        return out

    stack = np.empty(MAX_DEPTH, dtype=np.int64)
    top   = 0
    node  = root
    while node != NULL:
        rank = rank_of(nodes, node)
        if position < rank:
            stack[top] = node
            top += 1
            node = left_of(nodes, node)
        elif position > rank:
            position -= rank + 1
            node      = right_of(nodes, node)
        else:
            stack[top] = node
            top += 1
            break

    for i in range(length):
        if top == 0:
            raise IndexError("range out of bounds")

        top -= 1
        node   = stack[top]
        out[i] = element_of(nodes, node)

        child = right_of(nodes, node)
        while child != NULL:
            stack[top] = child
            top += 1
            child = left_of(nodes, child)

    return out

@njit
def inorder(
    nodes: np.ndarray,
    root:  np.int64

) -> np.ndarray:
    """
    All elements of the tree in in-order.
    """

    return get_range(nodes, root, 0, size(nodes, root))

@njit
def height(
    nodes: np.ndarray,
    root:  np.int64

) -> np.int64:

    """
    Height of the subtree, following only the branch each balance code points
    at. The empty subtree has height -1.
    """

    h    = -1
    node = root
    while node != NULL:
        h += 1
        if balance_of(nodes, node) == LEFT_HEAVY:
            node = left_of(nodes, node)
        else:
            node = right_of(nodes, node)

    return h

@njit
def size(
    nodes: np.ndarray,
    root:  np.int64

) -> np.int64:

    """
    Number of nodes in the subtree, summing rank + 1 down the right spine.
    """

    total = 0
    node  = root
    while node != NULL:
        total += rank_of(nodes, node) + 1
        node   = right_of(nodes, node)

    return total

@njit
def _build_height(n: np.int64) -> np.int64:
    """Height of a middle-split tree of n nodes: floor(log2(n)), -1 when empty."""

    h = -1
    while n > 0:
        n >>= 1
        h += 1
    return h

@njit
def build(
    pool:  NodePool,
    codes: np.ndarray

) -> np.int64:

    """
    Builds a balanced tree over `codes` in linear time.

    The middle element of every slice becomes the local root, its rank is the
    length of the left slice, and it leans left exactly when the left slice
    is one level taller than the right one. Returns the new root.
    """

    n = codes.size
    if n == 0:
        return NULL

    pool.reserve(n)
    nodes = pool.nodes

    # Pending slices: [lo, hi, parent, side]
    stack = np.empty((MAX_DEPTH, 4), dtype=np.int64)
    stack[0, 0] = 0
    stack[0, 1] = n
    stack[0, 2] = NULL
    stack[0, 3] = LEFT
    top  = 1
    root = NULL

    while top > 0:
        top -= 1
        lo     = stack[top, 0]
        hi     = stack[top, 1]
        parent = stack[top, 2]
        side   = stack[top, 3]
        if lo >= hi:
            continue

        middle = lo + (hi - lo) // 2
        node   = pool.alloc(codes[middle])
        set_rank(nodes, node, middle - lo)
        if _build_height(middle - lo) > _build_height(hi - middle - 1):
            set_balance(nodes, node, LEFT_HEAVY)

        if parent == NULL:
            root = node
        else:
            set_child(nodes, parent, side, node)

        stack[top, 0] = middle + 1
        stack[top, 1] = hi
        stack[top, 2] = node
        stack[top, 3] = RIGHT
        top += 1

        stack[top, 0] = lo
        stack[top, 1] = middle
        stack[top, 2] = node
        stack[top, 3] = LEFT
        top += 1

    return root

@njit
def _graft(
    pool:    NodePool,
    tall:    np.int64,
    short:   np.int64,
    element: np.int64,
    side:    np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Join `short` onto the `side` spine of `tall` using `element` as the joint.

    Walks down the spine until the remaining subtree is at most one level
    taller than `short`, then builds a node with `element` whose `side` child
    is `short` and whose other child is that remaining subtree. The joint is
    one level taller than what it replaces, so it climbs back up as an
    insertion. Ranks along a left spine grow by the grafted size.
    """

    nodes = pool.nodes
    path  = pool._path
    dirs  = pool._dirs

    short_height = height(nodes, short)
    grafted      = size(nodes, short) + 1

    depth       = 0
    node        = tall
    node_height = height(nodes, tall)
    while node_height > short_height + 1:
        path[depth] = node
        dirs[depth] = side
        depth      += 1

        if side == LEFT:
            set_rank(nodes, node, rank_of(nodes, node) + grafted)

        if balance_of(nodes, node) == 3 - side:
            node_height -= 2
        else:
            node_height -= 1
        node = child_of(nodes, node, side)

    joint = pool.alloc(element)
    set_child(nodes, joint, side, short)
    set_child(nodes, joint, 3 - side, node)
    set_rank(nodes, joint, size(nodes, left_of(nodes, joint)))
    if node_height > short_height:
        set_balance(nodes, joint, 3 - side)

    return _climb(nodes, path, dirs, depth, joint, INSERTED)

@njit
def concatenate(
    pool:  NodePool,
    left:  np.int64,
    right: np.int64

) -> Tuple[np.int64, np.int64]:

    """
    Merge two trees of the same pool: `left`'s elements followed by `right`'s.

    The pivot is the last element of `left` when `left` is not the taller
    tree, otherwise the first element of `right`; it is removed first and
    then used as the joint of the graft. Runs in O(log N) of the larger tree.

    Returns:
        Tuple[np.int64, np.int64]: (new root, rotations performed).
    """

    if right == NULL:
        return left, np.int64(0)
    if left == NULL:
        return right, np.int64(0)

    pool.reserve(1)
    nodes = pool.nodes

    if height(nodes, left) <= height(nodes, right):
        left, pivot, spent   = delete_at(pool, left, size(nodes, left) - 1)
        root, grafted        = _graft(pool, right, left, pivot, LEFT)
    else:
        right, pivot, spent  = delete_at(pool, right, 0)
        root, grafted        = _graft(pool, left, right, pivot, RIGHT)

    return root, spent + grafted



# ---------- JIT-Compiled Traversals / Oracles ----------
@njit
def preorder(
    nodes: np.ndarray,
    root:  np.int64,
    bound: np.int64

) -> np.ndarray:

    """
    Row indexes of the subtree in pre-order. `bound` must be at least the
    number of nodes in the subtree.
    """

    order = np.empty(bound, dtype=np.int64)
    stack = np.empty(bound + 1, dtype=np.int64)
    top   = 0
    n     = 0

    if root != NULL:
        stack[0] = root
        top      = 1

    while top > 0:
        top -= 1
        node     = stack[top]
        order[n] = node
        n += 1

        right = right_of(nodes, node)
        if right != NULL:
            stack[top] = right
            top += 1
        left = left_of(nodes, node)
        if left != NULL:
            stack[top] = left
            top += 1

    return order[:n]

@njit
def preorder_fields(
    nodes: np.ndarray,
    root:  np.int64

) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:

    """
    (elements, ranks, balances) of every node in pre-order, for debug dumps.
    """

    order    = preorder(nodes, root, size(nodes, root))
    elements = np.empty(order.size, dtype=np.int64)
    ranks    = np.empty(order.size, dtype=np.int64)
    balances = np.empty(order.size, dtype=np.int64)

    for i in range(order.size):
        h, l        = get_node(nodes, order[i])
        elements[i] = _get_element(h, l)
        ranks[i]    = _get_rank(h, l)
        balances[i] = _get_balance(h, l)

    return elements, ranks, balances

@njit
def subtree_stats(
    nodes: np.ndarray,
    root:  np.int64

) -> Tuple[np.int64, np.int64, np.bool_]:

    """
    Linear-time oracle visiting every node of the subtree.

    Recomputes sizes and heights bottom-up (reverse pre-order visits children
    before their parent) and checks, for every node, that the rank equals the
    size of the left subtree, that the two child heights differ by at most
    one, and that the balance code names the taller side.

    WARNING: O(N) time and O(capacity) memory. Meant for verification only.

    Returns:
        Tuple[np.int64, np.int64, np.bool_]: (size, height, valid).
    """

    rows    = nodes.shape[0]
    order   = preorder(nodes, root, rows)
    sizes   = np.zeros(rows, dtype=np.int64)
    heights = np.zeros(rows, dtype=np.int64)
    heights[0] = -1
    valid   = True

    for k in range(order.size - 1, -1, -1):
        node  = order[k]
        left  = left_of(nodes, node)
        right = right_of(nodes, node)
        hl    = heights[left]
        hr    = heights[right]

        sizes[node]   = sizes[left] + sizes[right] + 1
        heights[node] = max(hl, hr) + 1

        if rank_of(nodes, node) != sizes[left]:
            valid = False

        balance = balance_of(nodes, node)
        if hl == hr:
            if balance != BALANCED:
                valid = False
        elif hl == hr + 1:
            if balance != LEFT_HEAVY:
                valid = False
        elif hr == hl + 1:
            if balance != RIGHT_HEAVY:
                valid = False
        else:
            valid = False

    return sizes[root], heights[root], valid

@njit
def slow_size(nodes: np.ndarray, root: np.int64) -> np.int64:
    s, _, _ = subtree_stats(nodes, root)
    return s

@njit
def slow_height(nodes: np.ndarray, root: np.int64) -> np.int64:
    _, h, _ = subtree_stats(nodes, root)
    return h



# ---------- JIT-Compiled Subtree Transfer ----------
@njit
def copy_subtree(
    source: np.ndarray,
    root:   np.int64,
    pool:   NodePool

) -> np.int64:

    """
    Copies the subtree at `root` of the `source` array into `pool`, keeping
    shape, ranks and balance codes. Returns the root of the copy.

    `source` may be the pool's own array: only rows that already exist are
    read from it, so a stale array left behind by growth is still accurate.
    """

    if root == NULL:
        return NULL

    count = size(source, root)
    pool.reserve(count)
    nodes = pool.nodes

    # Pending rows: [source row, parent copy, side]
    stack = np.empty((count + 1, 3), dtype=np.int64)
    stack[0, 0] = root
    stack[0, 1] = NULL
    stack[0, 2] = LEFT
    top      = 1
    new_root = NULL

    while top > 0:
        top -= 1
        original = stack[top, 0]
        parent   = stack[top, 1]
        side     = stack[top, 2]

        h, l = get_node(source, original)
        copy = pool.alloc(_get_element(h, l))
        set_rank(nodes, copy, _get_rank(h, l))
        set_balance(nodes, copy, _get_balance(h, l))

        if parent == NULL:
            new_root = copy
        else:
            set_child(nodes, parent, side, copy)

        right = _get_right(h, l)
        if right != NULL:
            stack[top, 0] = right
            stack[top, 1] = copy
            stack[top, 2] = RIGHT
            top += 1
        left = _get_left(h, l)
        if left != NULL:
            stack[top, 0] = left
            stack[top, 1] = copy
            stack[top, 2] = LEFT
            top += 1

    return new_root

@njit
def release_subtree(
    pool: NodePool,
    root: np.int64

) -> None:

    """
    Returns every row of the subtree to the pool's free list.
    """

    order = preorder(pool.nodes, root, size(pool.nodes, root))
    for i in range(order.size):
        pool.release(order[i])



# --------- Utils ---------
@njit
def warmup(capacity: int = 16):
    """
    Minimally triggers JIT compilation for the core sequence operations.
    """

    pool  = NodePool(capacity)
    codes = np.array([104, 101, 108, 108, 111], dtype=np.int64) # "hello"

    left  = build(pool, codes)
    right = build(pool, codes)

    left, rotations          = append(pool, left, 33)
    left, rotations          = insert_at(pool, left, 32, 0)
    left, removed, rotations = delete_at(pool, left, 2)
    left, rotations          = concatenate(pool, left, right)

    element         = get_at(pool.nodes, left, 1)
    window          = get_range(pool.nodes, left, 1, 3)
    h               = height(pool.nodes, left)
    s, sh, valid    = subtree_stats(pool.nodes, left)
    fields          = preorder_fields(pool.nodes, left)

    copy = copy_subtree(pool.nodes, left, pool)
    release_subtree(pool, copy)

    return valid
