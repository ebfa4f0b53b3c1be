"""
Cluster tree representation for kmerclust.

Trees are stored as an arena: a flat list of nodes addressed by integer id,
each node holding its member indices, its parent id and its child ids.
"""

import hashlib
import re
from dataclasses import dataclass, replace
from typing import Dict, Iterator, List, Optional, Sequence, Tuple


def derive_node_seed(rng_seed: int, members: Sequence[int]) -> int:
    """
    Derive a 64-bit k-means seed from a base seed and a node's member set.

    The seed depends only on the member content, never on the order in which
    nodes are processed.
    """
    key = f"{rng_seed}:{','.join(str(m) for m in sorted(members))}"
    return int(hashlib.sha256(key.encode()).hexdigest()[:16], 16)


@dataclass(frozen=True)
class TreeNode:
    """One node of a ClusterTree."""
    id: int
    members: Tuple[int, ...]
    parent: Optional[int] = None
    children: Tuple[int, ...] = ()
    depth: int = 0

    @property
    def is_leaf(self) -> bool:
        return not self.children

    @property
    def size(self) -> int:
        return len(self.members)


_NEWICK_UNSAFE = re.compile(r"[\s()\[\]':;,]")


def _newick_label(label: str) -> str:
    if _NEWICK_UNSAFE.search(label):
        return "'" + label.replace("'", "''") + "'"
    return label


class ClusterTree:
    """Binary cluster tree over sequence indices, built top-down by bisection."""

    def __init__(self, labels: Sequence[str]):
        self.labels = tuple(labels)
        self._nodes: List[TreeNode] = []
        self._frozen = False

    @property
    def nodes(self) -> Tuple[TreeNode, ...]:
        return tuple(self._nodes)

    @property
    def root(self) -> TreeNode:
        return self._nodes[0]

    def node(self, node_id: int) -> TreeNode:
        return self._nodes[node_id]

    def add_node(self, members: Sequence[int], parent: Optional[int] = None) -> int:
        """Append a node and return its id; the first node added is the root."""
        if self._frozen:
            raise ValueError("Cannot modify a finished tree")
        depth = 0 if parent is None else self._nodes[parent].depth + 1
        node_id = len(self._nodes)
        self._nodes.append(TreeNode(id=node_id, members=tuple(sorted(members)),
                                    parent=parent, depth=depth))
        return node_id

    def split(self, node_id: int, left: Sequence[int], right: Sequence[int]) -> Tuple[int, int]:
        """Attach two children to a node and return their ids."""
        left_id = self.add_node(left, parent=node_id)
        right_id = self.add_node(right, parent=node_id)
        self._nodes[node_id] = replace(self._nodes[node_id], children=(left_id, right_id))
        return left_id, right_id

    def freeze(self) -> 'ClusterTree':
        self._frozen = True
        return self

    def iter_preorder(self) -> Iterator[TreeNode]:
        """Nodes in depth-first, left-to-right order."""
        if not self._nodes:
            return
        stack = [0]
        while stack:
            node = self._nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def leaves(self) -> List[TreeNode]:
        """Leaf nodes in left-to-right order."""
        return [node for node in self.iter_preorder() if node.is_leaf]

    @property
    def n_leaves(self) -> int:
        return sum(1 for node in self._nodes if node.is_leaf)

    def leaf_order(self) -> List[int]:
        """Sequence indices in left-to-right leaf order."""
        return [member for leaf in self.leaves() for member in leaf.members]

    def validate(self, singleton_leaves: bool = True) -> None:
        """
        Check the set-partition invariants.

        Raises:
            ValueError: If any leaf is not a singleton (when required), any
                sequence is missing or duplicated, or an internal node's
                members differ from the union of its children's
        """
        n = len(self.labels)
        seen = []
        for node in self._nodes:
            if node.is_leaf:
                if singleton_leaves and node.size != 1:
                    raise ValueError(f"Leaf {node.id} has {node.size} members")
                seen.extend(node.members)
                continue
            child_members = [m for child in node.children for m in self._nodes[child].members]
            if len(child_members) != len(set(child_members)):
                raise ValueError(f"Children of node {node.id} overlap")
            if set(child_members) != set(node.members):
                raise ValueError(f"Children of node {node.id} do not partition its members")
        if sorted(seen) != list(range(n)):
            raise ValueError("Leaves do not cover every sequence exactly once")

    def to_newick(self) -> str:
        """Newick string without branch lengths; multi-member leaves become polytomies."""
        if not self._nodes:
            return ";"
        rendered: Dict[int, str] = {}
        # Children always have larger ids than their parent
        for node in reversed(self._nodes):
            if node.is_leaf:
                names = [_newick_label(self.labels[m]) for m in node.members]
                rendered[node.id] = names[0] if len(names) == 1 else "(" + ",".join(names) + ")"
            else:
                rendered[node.id] = "(" + ",".join(rendered.pop(c) for c in node.children) + ")"
        return rendered[0] + ";"

    def to_dict(self) -> Dict:
        return {
            'labels': list(self.labels),
            'nodes': [
                {
                    'id': node.id,
                    'members': list(node.members),
                    'parent': node.parent,
                    'children': list(node.children),
                    'depth': node.depth,
                }
                for node in self._nodes
            ],
        }
