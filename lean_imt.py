"""
Lean Incremental Merkle Tree (LeanIMT) using field elements.

This is the "off-chain" / non-ZK part: we build the tree and compute Merkle
openings in plain Python, the same way the ledger maintains its tree.

LeanIMT rules:
- A parent with two children is H2(left, right).
- A parent with only a left child takes the child's value unchanged
  (no hashing with a placeholder).
- The depth is dynamic: ceil(log2(number of leaves)).

Openings are padded with the zero sentinel up to the circuit's max_depth;
a zero sibling tells the verifier to propagate instead of hash.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from hash_utils import Compressor, field
from relation_errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MerkleProof:
    """
    Opening for one leaf.

    siblings has exactly max_depth entries; levels at or above the tree's
    depth (and levels where the node has no right sibling) hold 0.
    """

    leaf: int
    index: int
    siblings: List[int]
    depth: int
    root: int


class LeanIMT:
    """
    Binary LeanIMT (arity = 2).

    - levels[0] = leaves
    - levels[1] = parents of leaves
    - ...
    - levels[-1][0] = root
    """

    def __init__(self, compressor: Compressor, leaves: Iterable[int] = ()) -> None:
        self.compressor = compressor
        self.levels: List[List[int]] = [[]]
        self.insert_many(leaves)

    def insert(self, leaf: int) -> int:
        """
        Append a leaf and update its path to the root.

        Returns:
            index of the inserted leaf
        """
        leaf = field(leaf)
        self.levels[0].append(leaf)
        index = len(self.levels[0]) - 1
        leaf_index = index

        node = leaf
        level = 0
        while len(self.levels[level]) > 1:
            if index % 2 == 1:
                # Right child: hash with the left neighbour
                node = self.compressor.hash2(self.levels[level][index - 1], node)
            # Left child without a neighbour: propagate unchanged
            index //= 2
            level += 1
            if level == len(self.levels):
                self.levels.append([])
            if index < len(self.levels[level]):
                self.levels[level][index] = node
            else:
                self.levels[level].append(node)

        logger.debug("Inserted leaf #%d, depth now %d", leaf_index, self.depth)
        return leaf_index

    def insert_many(self, leaves: Iterable[int]) -> None:
        for leaf in leaves:
            self.insert(leaf)

    @property
    def size(self) -> int:
        return len(self.levels[0])

    @property
    def leaves(self) -> List[int]:
        return list(self.levels[0])

    @property
    def depth(self) -> int:
        """Number of hashing levels; 0 for empty and single-leaf trees."""
        return len(self.levels) - 1

    @property
    def root(self) -> int:
        """Root of the tree (a field element); 0 for an empty tree."""
        if self.size == 0:
            return 0
        return self.levels[-1][0]

    def node(self, level: int, index: int) -> Optional[int]:
        """Value of a node, or None if it does not exist."""
        if level < 0 or level >= len(self.levels):
            return None
        layer = self.levels[level]
        if index < 0 or index >= len(layer):
            return None
        return layer[index]

    def index_of(self, leaf: int) -> Optional[int]:
        """
        Index of the last leaf equal to the given value.

        A commitment deposited twice resolves to its latest insertion.
        """
        target = field(leaf)
        for index in range(len(self.levels[0]) - 1, -1, -1):
            if self.levels[0][index] == target:
                return index
        return None

    def proof(self, index: int, max_depth: Optional[int] = None) -> MerkleProof:
        """
        Compute the Merkle opening for a given leaf index.

        Example for a tree with leaves [A, B, C]:

                    root = H(N1, C)
                   /    \\
                 N1       C          (C propagated, no sibling)
                /  \\     |
               A    B   C

        Opening for C (index=2): siblings = [0, N1]
        Opening for A (index=0): siblings = [B, C]

        Args:
            index: leaf index
            max_depth: pad the sibling path to this length (defaults to depth)

        Raises:
            IndexError: index out of range
            ConfigError: tree deeper than max_depth
        """
        if index < 0 or index >= self.size:
            raise IndexError("Leaf index out of range")
        if max_depth is None:
            max_depth = self.depth
        if max_depth < self.depth:
            raise ConfigError(
                f"Tree depth {self.depth} exceeds max_depth {max_depth}"
            )

        siblings: List[int] = []
        idx = index
        for level in range(self.depth):
            layer = self.levels[level]
            # Sibling index: flip the last bit
            sib_idx = idx ^ 1
            if sib_idx < len(layer):
                siblings.append(layer[sib_idx])
            else:
                # Lone left child: zero sentinel means "propagate"
                siblings.append(0)
            idx //= 2

        siblings.extend([0] * (max_depth - len(siblings)))
        return MerkleProof(
            leaf=self.levels[0][index],
            index=index,
            siblings=siblings,
            depth=self.depth,
            root=self.root,
        )
