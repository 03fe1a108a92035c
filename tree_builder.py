from __future__ import annotations

from dataclasses import dataclass
import heapq
import itertools
import logging

import numpy as np

from errors import InvalidInputError
from instances import Attribute, Instances
from regression_tree import RegressionTree, TreeInteriorNode, TreeLeaf, TreeNode
from sorted_columns import Partition
from split_search import HistogramSplitSearch, SplitSearchResult

logger = logging.getLogger(__name__)

TREE_MODES = ("alpha", "depth", "num_leaves", "min_leaf_size")
_MODE_CODES = {"a": "alpha", "d": "depth", "l": "num_leaves", "s": "min_leaf_size"}


@dataclass
class TreeBuilderParams:
    mode: str = "alpha"  # one of: alpha, depth, num_leaves, min_leaf_size
    alpha: float = 0.01
    max_depth: int = 6
    max_num_leaves: int = 32
    min_leaf_size: int = 5

    # Size floor below which depth- and leaf-limited growth stops splitting.
    min_split_size: int = 5

    # Random-forest variant: features sampled per node. None uses all,
    # -1 uses a third of the attributes (at least one).
    num_features: int | None = None

    random_state: int = 0

    def __post_init__(self) -> None:
        if self.mode not in TREE_MODES:
            raise ValueError("mode must be one of: alpha, depth, num_leaves, min_leaf_size")
        if not (0.0 <= self.alpha <= 1.0):
            raise ValueError("alpha must be in [0, 1]")
        if self.max_depth < 0:
            raise ValueError("max_depth must be >= 0")
        if self.max_num_leaves < 1:
            raise ValueError("max_num_leaves must be >= 1")
        if self.min_leaf_size < 0:
            raise ValueError("min_leaf_size must be >= 0")
        if self.min_split_size < 0:
            raise ValueError("min_split_size must be >= 0")
        if self.num_features is not None and self.num_features != -1 and self.num_features < 1:
            raise ValueError("num_features must be None, -1 or a positive integer")

    @classmethod
    def from_mode_string(cls, mode: str, **kwargs) -> TreeBuilderParams:
        """Parse ``kind:parameter`` such as ``d:3``, ``l:16``, ``s:20`` or ``a:0.01``."""
        parts = mode.split(":")
        if len(parts) != 2 or parts[0] not in _MODE_CODES:
            raise ValueError(f"invalid tree construction mode: {mode!r}")
        name = _MODE_CODES[parts[0]]
        if name == "alpha":
            kwargs["alpha"] = float(parts[1])
        elif name == "depth":
            kwargs["max_depth"] = int(parts[1])
        elif name == "num_leaves":
            kwargs["max_num_leaves"] = int(parts[1])
        else:
            kwargs["min_leaf_size"] = int(parts[1])
        return cls(mode=name, **kwargs)


@dataclass
class TreeBuildMetrics:
    nodes_visited: int = 0
    nodes_split: int = 0
    leaves: int = 0
    forced_leaves: int = 0
    split_search_time_sec: float = 0.0


@dataclass
class _PendingNode:
    node: TreeInteriorNode
    partition: Partition
    depth: int
    prediction: float
    parent: TreeInteriorNode | None = None
    is_left: bool = True


class TreeBuilder:
    """Grows a regression tree over a :class:`Partition` under one growth policy."""

    def __init__(
        self,
        params: TreeBuilderParams | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self.params = params or TreeBuilderParams()
        self.rng = rng if rng is not None else np.random.default_rng(self.params.random_state)
        self.metrics = TreeBuildMetrics()

    def build(self, instances: Instances, targets: np.ndarray | None = None) -> RegressionTree:
        return self.build_tree(Partition.create(instances, targets=targets))

    def build_tree(self, partition: Partition) -> RegressionTree:
        if partition.size == 0:
            raise InvalidInputError("cannot build a regression tree from an empty partition")

        self.metrics = TreeBuildMetrics()
        mode = self.params.mode
        if mode == "depth":
            root = self._build_depth_limited(partition, self.params.max_depth)
        elif mode == "num_leaves":
            root = self._build_num_leaves_limited(partition, self.params.max_num_leaves)
        elif mode == "min_leaf_size":
            root = self._build_min_leaf_size_limited(partition, self.params.min_leaf_size)
        else:
            floor = int(self.params.alpha * partition.size)
            root = self._build_min_leaf_size_limited(partition, floor)

        tree = RegressionTree(root)
        logger.info(
            "built %s-limited tree: size=%d splits=%d leaves=%d",
            mode,
            partition.size,
            self.metrics.nodes_split,
            self.metrics.leaves,
        )
        return tree

    def _candidate_attributes(self, partition: Partition) -> list[Attribute]:
        attributes = partition.attributes
        num_features = self.params.num_features
        if num_features is None:
            return attributes
        if num_features == -1:
            num_features = max(1, len(attributes) // 3)
        if num_features >= len(attributes):
            return attributes
        chosen = self.rng.choice(len(attributes), size=num_features, replace=False)
        return [attributes[k] for k in np.sort(chosen)]

    def _leaf(self, prediction: float) -> TreeLeaf:
        self.metrics.leaves += 1
        return TreeLeaf(prediction)

    def _create_node(
        self,
        partition: Partition,
        floor: int,
    ) -> tuple[TreeNode, SplitSearchResult | None]:
        self.metrics.nodes_visited += 1
        prediction = partition.weighted_mean

        if partition.size < floor or partition.has_constant_target:
            return self._leaf(prediction), None

        search = HistogramSplitSearch(partition, self.rng, self._candidate_attributes(partition))
        result = search.search()
        self.metrics.split_search_time_sec += result.metrics.time_spent_sec

        if result.candidate is None or not np.isfinite(result.gain):
            return self._leaf(prediction), result

        node = TreeInteriorNode(
            attribute_index=result.candidate.attribute_index,
            threshold=result.candidate.threshold,
        )
        return node, result

    def _split(self, node: TreeInteriorNode, partition: Partition) -> tuple[Partition, Partition]:
        self.metrics.nodes_split += 1
        logger.debug(
            "split attribute=%d threshold=%g size=%d",
            node.attribute_index,
            node.threshold,
            partition.size,
        )
        return partition.split(node.attribute_index, node.threshold)

    def _build_depth_limited(self, partition: Partition, max_depth: int) -> TreeNode:
        floor = self.params.min_split_size
        if max_depth == 0:
            self.metrics.nodes_visited += 1
            return self._leaf(partition.weighted_mean)

        root, _ = self._create_node(partition, floor)
        stack: list[tuple[TreeInteriorNode, Partition, int]] = []
        if isinstance(root, TreeInteriorNode):
            stack.append((root, partition, 0))

        while stack:
            node, data, depth = stack.pop()
            left, right = self._split(node, data)
            children: list[TreeNode] = []
            for child_data in (left, right):
                if depth + 1 >= max_depth:
                    self.metrics.nodes_visited += 1
                    child = self._leaf(child_data.weighted_mean)
                else:
                    child, _ = self._create_node(child_data, floor)
                children.append(child)
            node.left, node.right = children

            if isinstance(node.right, TreeInteriorNode):
                stack.append((node.right, right, depth + 1))
            if isinstance(node.left, TreeInteriorNode):
                stack.append((node.left, left, depth + 1))

        return root

    def _build_min_leaf_size_limited(self, partition: Partition, floor: int) -> TreeNode:
        root, _ = self._create_node(partition, floor)
        stack: list[tuple[TreeInteriorNode, Partition]] = []
        if isinstance(root, TreeInteriorNode):
            stack.append((root, partition))

        while stack:
            node, data = stack.pop()
            left, right = self._split(node, data)
            node.left, _ = self._create_node(left, floor)
            node.right, _ = self._create_node(right, floor)

            if isinstance(node.right, TreeInteriorNode):
                stack.append((node.right, right))
            if isinstance(node.left, TreeInteriorNode):
                stack.append((node.left, left))

        return root

    def _build_num_leaves_limited(self, partition: Partition, max_num_leaves: int) -> TreeNode:
        floor = self.params.min_split_size
        if max_num_leaves <= 1:
            self.metrics.nodes_visited += 1
            return self._leaf(partition.weighted_mean)

        root, result = self._create_node(partition, floor)
        if isinstance(root, TreeLeaf):
            return root

        # Max-heap on SSE reduction; the counter keeps insertion order on ties.
        counter = itertools.count()
        queue: list[tuple[float, int, _PendingNode]] = []
        pending = _PendingNode(root, partition, 0, partition.weighted_mean)
        heapq.heappush(queue, (-result.reduction, next(counter), pending))

        num_leaves = 0
        while queue:
            _, _, pending = heapq.heappop(queue)
            node = pending.node
            left, right = self._split(node, pending.partition)
            for child_data, is_left in ((left, True), (right, False)):
                child, child_result = self._create_node(child_data, floor)
                if is_left:
                    node.left = child
                else:
                    node.right = child
                if isinstance(child, TreeInteriorNode):
                    child_pending = _PendingNode(
                        node=child,
                        partition=child_data,
                        depth=pending.depth + 1,
                        prediction=child_data.weighted_mean,
                        parent=node,
                        is_left=is_left,
                    )
                    heapq.heappush(queue, (-child_result.reduction, next(counter), child_pending))
                else:
                    num_leaves += 1

            if num_leaves + len(queue) >= max_num_leaves:
                break

        # Out of budget: every node still queued becomes a leaf.
        for _, _, pending in queue:
            leaf = self._leaf(pending.prediction)
            self.metrics.forced_leaves += 1
            if pending.is_left:
                pending.parent.left = leaf
            else:
                pending.parent.right = leaf

        return root
