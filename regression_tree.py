from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class TreeLeaf:
    prediction: float


@dataclass
class TreeInteriorNode:
    attribute_index: int
    threshold: float
    left: TreeNode | None = None
    right: TreeNode | None = None

    def go_left(self, x: np.ndarray) -> bool:
        return bool(x[self.attribute_index] <= self.threshold)


TreeNode = TreeLeaf | TreeInteriorNode


@dataclass
class FlattenedTree:
    """Preorder array form of a tree; children are -1 for leaves."""

    attribute_indices: np.ndarray
    thresholds: np.ndarray
    lefts: np.ndarray
    rights: np.ndarray
    is_leaf: np.ndarray
    values: np.ndarray

    def apply(self, X: np.ndarray) -> np.ndarray:
        """Node id of the leaf every row of ``X`` lands in."""
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2:
            raise ValueError("X must be a 2D array")
        nodes = np.zeros(X.shape[0], dtype=np.int64)
        active = np.flatnonzero(~self.is_leaf[nodes])
        while active.size:
            current = nodes[active]
            go_left = X[active, self.attribute_indices[current]] <= self.thresholds[current]
            nodes[active] = np.where(go_left, self.lefts[current], self.rights[current])
            active = active[~self.is_leaf[nodes[active]]]
        return nodes


class RegressionTree:
    """Binary regression tree: instances go left iff ``value <= threshold``."""

    def __init__(self, root: TreeNode) -> None:
        self.root = root

    def regress(self, x: np.ndarray) -> float:
        x = np.asarray(x, dtype=np.float64)
        node = self.root
        while isinstance(node, TreeInteriorNode):
            node = node.left if node.go_left(x) else node.right
        return float(node.prediction)

    def predict(self, X: np.ndarray) -> np.ndarray:
        X = np.asarray(X, dtype=np.float64)
        if X.ndim != 2:
            raise ValueError("X must be a 2D array")
        preds = np.zeros(X.shape[0], dtype=np.float64)
        stack: list[tuple[TreeNode, np.ndarray]] = [(self.root, np.arange(X.shape[0]))]
        while stack:
            node, rows = stack.pop()
            if isinstance(node, TreeLeaf):
                preds[rows] = node.prediction
                continue
            left_mask = X[rows, node.attribute_index] <= node.threshold
            if np.any(left_mask):
                stack.append((node.left, rows[left_mask]))
            if not np.all(left_mask):
                stack.append((node.right, rows[~left_mask]))
        return preds

    def leaves(self) -> list[TreeLeaf]:
        found: list[TreeLeaf] = []
        stack: list[TreeNode] = [self.root]
        while stack:
            node = stack.pop()
            if isinstance(node, TreeLeaf):
                found.append(node)
            else:
                stack.append(node.right)
                stack.append(node.left)
        return found

    @property
    def num_leaves(self) -> int:
        return len(self.leaves())

    @property
    def depth(self) -> int:
        deepest = 0
        stack: list[tuple[TreeNode, int]] = [(self.root, 0)]
        while stack:
            node, depth = stack.pop()
            deepest = max(deepest, depth)
            if isinstance(node, TreeInteriorNode):
                stack.append((node.left, depth + 1))
                stack.append((node.right, depth + 1))
        return deepest

    def scaled(self, c: float) -> RegressionTree:
        """Copy of this tree with every leaf prediction multiplied by ``c``."""
        flat = self.flatten()
        flat.values = flat.values * c
        return RegressionTree.from_flattened(flat)

    def flatten(self) -> FlattenedTree:
        attribute_indices: list[int] = []
        thresholds: list[float] = []
        lefts: list[int] = []
        rights: list[int] = []
        is_leaf: list[bool] = []
        values: list[float] = []

        # (node, parent id, True if it is the parent's left child)
        stack: list[tuple[TreeNode, int, bool]] = [(self.root, -1, True)]
        while stack:
            node, parent_id, is_left = stack.pop()
            node_id = len(values)
            if parent_id >= 0:
                if is_left:
                    lefts[parent_id] = node_id
                else:
                    rights[parent_id] = node_id
            lefts.append(-1)
            rights.append(-1)
            if isinstance(node, TreeLeaf):
                attribute_indices.append(-1)
                thresholds.append(0.0)
                is_leaf.append(True)
                values.append(node.prediction)
                continue
            attribute_indices.append(node.attribute_index)
            thresholds.append(node.threshold)
            is_leaf.append(False)
            values.append(0.0)
            stack.append((node.right, node_id, False))
            stack.append((node.left, node_id, True))

        return FlattenedTree(
            attribute_indices=np.asarray(attribute_indices, dtype=np.int64),
            thresholds=np.asarray(thresholds, dtype=np.float64),
            lefts=np.asarray(lefts, dtype=np.int64),
            rights=np.asarray(rights, dtype=np.int64),
            is_leaf=np.asarray(is_leaf, dtype=bool),
            values=np.asarray(values, dtype=np.float64),
        )

    @classmethod
    def from_flattened(cls, flat: FlattenedTree) -> RegressionTree:
        n_nodes = int(flat.values.size)
        if n_nodes == 0:
            raise ValueError("a flattened tree needs at least one node")

        nodes: list[TreeNode] = []
        for node_id in range(n_nodes):
            if flat.is_leaf[node_id]:
                nodes.append(TreeLeaf(float(flat.values[node_id])))
            else:
                nodes.append(
                    TreeInteriorNode(
                        attribute_index=int(flat.attribute_indices[node_id]),
                        threshold=float(flat.thresholds[node_id]),
                    )
                )
        for node_id, node in enumerate(nodes):
            if isinstance(node, TreeLeaf):
                continue
            left_id = int(flat.lefts[node_id])
            right_id = int(flat.rights[node_id])
            if not (0 <= left_id < n_nodes and 0 <= right_id < n_nodes):
                raise ValueError(f"node {node_id} has a child index out of range")
            node.left = nodes[left_id]
            node.right = nodes[right_id]
        return cls(nodes[0])
