"""First-match traversal of a decision tree for one input row."""

from __future__ import annotations

from collections.abc import Mapping
from typing import NamedTuple

from localtree.fields import FieldValue
from localtree.predicates import MissingPredicate, Predicate
from localtree.settings import PredictionPolicy
from localtree.tree import DecisionNode, Edge


class Traversal(NamedTuple):
    """Outcome of walking a tree for one row.

    Attributes:
        node (DecisionNode): The node where traversal stopped.
        path (tuple[Predicate, ...]): Predicates of every edge taken, root first.
        depth (int): Number of edges descended from the starting node's root.
        blocked_by_missing (bool): True when traversal stopped at an internal
            node because no edge matched and at least one edge could still
            match once an absent field was known.
    """

    node: DecisionNode
    path: tuple[Predicate, ...]
    depth: int
    blocked_by_missing: bool


def traverse(
    root: DecisionNode,
    row: Mapping[str, FieldValue],
    *,
    policy: PredictionPolicy,
    start_depth: int = 0,
) -> Traversal:
    """Walk from `root` following the first matching edge at each node.

    Stops at a leaf, when no edge matches (the current node is the result),
    when `policy.max_depth` edges have been descended, or when the matching
    child has fewer than `policy.min_count` training instances.

    Args:
        root (DecisionNode): Node to start from.
        row (Mapping[str, FieldValue]): Coerced input values keyed by field id.
        policy (PredictionPolicy): Early-stop thresholds.
        start_depth (int): Depth of `root` within the whole tree, counted in
            edges; used to apply `max_depth` when starting below the root.

    Returns:
        Traversal: The terminal node and the path that led to it.

    Examples:
        >>> from localtree.predicates import NumericPredicate
        >>> leaf = DecisionNode(id="1", output="small", confidence=1.0, count=3)
        >>> edge = Edge(predicates=(NumericPredicate(operator="<", field="f", value=2.0),), child=leaf)
        >>> root = DecisionNode(id="0", output="big", confidence=0.5, count=6, children=(edge,))
        >>> traverse(root, {"f": 1.0}, policy=PredictionPolicy()).node.output
        'small'
    """
    node = root
    path: list[Predicate] = []
    depth = start_depth
    while node.children:
        if policy.max_depth is not None and depth >= policy.max_depth:
            break
        edge = _first_matching_edge(node, row)
        if edge is None:
            blocked = any(_is_undecided(candidate, row) for candidate in node.children)
            return Traversal(node=node, path=tuple(path), depth=depth, blocked_by_missing=blocked)
        if edge.child.count < policy.min_count:
            break
        path.extend(edge.predicates)
        node = edge.child
        depth += 1
    return Traversal(node=node, path=tuple(path), depth=depth, blocked_by_missing=False)


def proportional_terminals(
    node: DecisionNode,
    row: Mapping[str, FieldValue],
    *,
    policy: PredictionPolicy,
    depth: int,
) -> list[DecisionNode]:
    """Collect the nodes reached by exploring the undecided children of a blocked node.

    Only edges that could still match are entered: an edge with a predicate
    that already fails on a present value is skipped. Each entered child is
    traversed normally; a child traversal that is itself blocked by a missing
    field is expanded the same way. Children under `policy.min_count`, or
    beyond `policy.max_depth`, are not entered.

    Args:
        node (DecisionNode): Node at which traversal was blocked.
        row (Mapping[str, FieldValue]): Coerced input values keyed by field id.
        policy (PredictionPolicy): Early-stop thresholds.
        depth (int): Depth of `node` within the tree, counted in edges.

    Returns:
        list[DecisionNode]: Terminal nodes in left-to-right order; `[node]`
            when no child may be entered.
    """
    terminals: list[DecisionNode] = []
    # (node, depth, whether the node still has to be expanded); popped left to right
    stack: list[tuple[DecisionNode, int, bool]] = [(node, depth, True)]
    while stack:
        current, current_depth, expand = stack.pop()
        if not expand or (policy.max_depth is not None and current_depth >= policy.max_depth):
            terminals.append(current)
            continue
        reached: list[tuple[DecisionNode, int, bool]] = []
        for edge in current.children:
            if edge.child.count < policy.min_count or not _is_undecided(edge, row):
                continue
            outcome = traverse(edge.child, row, policy=policy, start_depth=current_depth + 1)
            reached.append((outcome.node, outcome.depth, outcome.blocked_by_missing))
        if reached:
            stack.extend(reversed(reached))
        else:
            terminals.append(current)
    return terminals


def _first_matching_edge(node: DecisionNode, row: Mapping[str, FieldValue]) -> Edge | None:
    """Return the first edge whose predicates all hold, or `None`."""
    for edge in node.children:
        if all(predicate.matches(row) for predicate in edge.predicates):
            return edge
    return None


def _is_undecided(edge: Edge, row: Mapping[str, FieldValue]) -> bool:
    """Whether an edge could still match once its absent fields were known.

    An edge is undecided when some predicate compares an absent field and
    none of the predicates on present fields fails. Missing tests and
    predicates carrying the `missing` flag are decidable without the value.
    """
    undecided = False
    for predicate in edge.predicates:
        if isinstance(predicate, MissingPredicate) or predicate.missing or row.get(predicate.field) is not None:
            if not predicate.matches(row):
                return False
        else:
            undecided = True
    return undecided
