"""Decision node models and construction of a tree from its description."""

from __future__ import annotations

import numbers
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Final, NamedTuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from localtree.exceptions import MalformedTreeError
from localtree.fields import FieldRegistry, _summarize_validation_error
from localtree.predicates import Predicate, parse_predicate

_REQUIRED_STATISTICS: Final[tuple[str, ...]] = ("output", "confidence", "count")

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class DecisionNode(BaseModel):
    """One node of a decision tree, with its outgoing edges and statistics.

    Every node, leaf or internal, carries the statistics recorded for the
    training instances that reached it, so traversal may stop at any node and
    still produce a prediction.

    Attributes:
        id (str): Node identifier, unique within the tree.
        output (str | float): Predicted class label or regression value.
        confidence (float): Confidence of `output`, between 0.0 and 1.0.
        count (int): Number of training instances that reached this node.
        distribution (Mapping[str | float, int]): Read-only instance count per
            class label (or per value, for regression).
        children (tuple[Edge, ...]): Outgoing edges in definition order. The
            first edge whose predicates all hold is taken.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Node identifier, unique within the tree.")
    output: str | float = Field(description="Predicted class label or regression value.")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence of the output.")
    count: int = Field(ge=0, description="Number of training instances that reached this node.")
    distribution: Mapping[str | float, int] = Field(
        default_factory=dict,
        validate_default=True,
        description="Instance count per class label or value.",
    )
    children: tuple[Edge, ...] = Field(default=(), description="Outgoing edges in definition order.")

    @field_validator("distribution", mode="after")
    @classmethod
    def _freeze_distribution(cls, value: Mapping[str | float, int]) -> Mapping[str | float, int]:
        """Wrap the distribution in a read-only view so loaded nodes stay immutable."""
        return MappingProxyType(dict(value))

    @property
    def is_leaf(self) -> bool:
        """Whether the node has no outgoing edges."""
        return not self.children


class Edge(BaseModel):
    """A guarded edge from a parent node to one child.

    Attributes:
        predicates (tuple[Predicate, ...]): Conjunction guarding the edge; the
            edge is taken only when every predicate holds.
        child (DecisionNode): The node reached through this edge.
    """

    model_config = ConfigDict(frozen=True)

    predicates: tuple[Predicate, ...] = Field(min_length=1, description="Conjunction guarding the edge.")
    child: DecisionNode = Field(description="The node reached through this edge.")


DecisionNode.model_rebuild()
Edge.model_rebuild()


@dataclass(frozen=True)
class DecisionTree:
    """A loaded tree: its field registry, its root node and shape metadata.

    Instances are immutable and safe to share between threads.

    Attributes:
        registry (FieldRegistry): Field metadata the predicates refer to.
        root (DecisionNode): The root node.
        depth (int): Largest number of predicates on any root-to-leaf path.
        node_count (int): Total number of nodes.
        leaf_count (int): Number of leaf nodes.
    """

    registry: FieldRegistry
    root: DecisionNode
    depth: int = field(init=False)
    node_count: int = field(init=False)
    leaf_count: int = field(init=False)

    def __post_init__(self) -> None:
        """Compute shape metadata from the node graph."""
        depth = node_count = leaf_count = 0
        for path, node in iter_nodes(self.root):
            node_count += 1
            if node.is_leaf:
                leaf_count += 1
                depth = max(depth, len(path))
        object.__setattr__(self, "depth", depth)
        object.__setattr__(self, "node_count", node_count)
        object.__setattr__(self, "leaf_count", leaf_count)

    @classmethod
    def from_description(cls, description: Mapping[str, Any]) -> DecisionTree:
        """Load a tree from a deserialized tree description.

        Args:
            description (Mapping[str, Any]): Mapping with `fields`, `root` and
                an optional `objective_field`.

        Returns:
            DecisionTree: The validated, immutable tree.

        Raises:
            MalformedTreeError: If any part of the description is invalid.
        """
        if not isinstance(description, Mapping):
            raise MalformedTreeError("Tree description must be a mapping")
        for key in ("fields", "root"):
            if key not in description:
                raise MalformedTreeError(f"Tree description has no {key!r} section")
        registry = FieldRegistry.from_description(
            description["fields"],
            objective_field=description.get("objective_field"),
        )
        tree = cls(registry=registry, root=build_tree(description["root"], registry))
        logger.info(
            "Tree loaded",
            fields=len(registry),
            nodes=tree.node_count,
            leaves=tree.leaf_count,
            depth=tree.depth,
        )
        return tree

    @property
    def task_type(self) -> str:
        """`"classification"` or `"regression"`.

        Taken from the objective field's optype when the registry names one,
        otherwise from the type of the root output.
        """
        objective = self.registry.objective_field
        if objective is not None:
            return "regression" if self.registry[objective].optype == "numeric" else "classification"
        return "classification" if isinstance(self.root.output, str) else "regression"


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def build_tree(node_description: Mapping[str, Any], registry: FieldRegistry) -> DecisionNode:
    """Build the node graph rooted at `node_description`.

    Children may be given as `{"predicate": ..., "node": ...}`, as
    `{"predicates": [...], "node": ...}` for a conjunction, or as a node
    mapping carrying its own `predicate` entry. Node ids default to the
    node's pre-order position.

    Outputs are checked against the task. Classification outputs and
    distribution labels are stored as strings, so integer labels `0`/`1`
    become `"0"`/`"1"`; regression outputs must be numbers. The task is taken
    from the objective field's optype, or from the root output when the
    registry names no objective field.

    Args:
        node_description (Mapping[str, Any]): The root node entry.
        registry (FieldRegistry): Registry that every predicate must refer to.

    Returns:
        DecisionNode: The root of the validated tree.

    Raises:
        MalformedTreeError: If a node lacks statistics or has an output of the
            wrong kind, a predicate is invalid, node ids repeat, or a node
            entry appears more than once.
    """
    builder = _TreeBuilder(registry, classification=_is_classification(node_description, registry))
    root = builder.build(node_description)
    logger.debug("Node graph built", nodes=len(builder.entries))
    return root


def iter_nodes(root: DecisionNode) -> Iterator[tuple[tuple[Predicate, ...], DecisionNode]]:
    """Yield every node with the predicates leading to it, depth first.

    Children are visited in definition order, so leaves come out in the same
    left-to-right order the traversal engine tries them.

    Args:
        root (DecisionNode): The node to start from.

    Yields:
        tuple[tuple[Predicate, ...], DecisionNode]: The root-to-node path and
            the node.
    """
    stack: list[tuple[tuple[Predicate, ...], DecisionNode]] = [((), root)]
    while stack:
        path, node = stack.pop()
        yield path, node
        for edge in reversed(node.children):
            stack.append(((*path, *edge.predicates), edge.child))


def iter_leaves(root: DecisionNode) -> Iterator[tuple[tuple[Predicate, ...], DecisionNode]]:
    """Yield every leaf with the predicates leading to it, depth first."""
    for path, node in iter_nodes(root):
        if node.is_leaf:
            yield path, node


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


class _NodeEntry(NamedTuple):
    """A node entry read during the first pass of `_TreeBuilder`."""

    raw: Mapping[str, Any]
    location: str
    node_id: str
    output: str | float
    distribution: dict[Any, Any]
    edges: list[tuple[tuple[Predicate, ...], int]]


class _TreeBuilder:
    """Two-pass builder that tracks visited entries and node ids.

    The first pass walks node entries in pre-order with an explicit stack,
    assigning ids and parsing predicates. The second pass constructs nodes
    from the last entry back to the root, so every child exists before its
    parent. Neither pass recurses, so description depth is not limited by
    the interpreter stack.
    """

    def __init__(self, registry: FieldRegistry, *, classification: bool) -> None:
        self.registry = registry
        self.classification = classification
        self.entries: list[_NodeEntry] = []
        self._visited: set[int] = set()
        self._node_ids: set[str] = set()

    def build(self, root_raw: Any) -> DecisionNode:
        # (entry, location, parent index, predicates of the edge from the parent)
        pending: list[tuple[Any, str, int | None, tuple[Predicate, ...]]] = [(root_raw, "root", None, ())]
        while pending:
            raw, location, parent, predicates = pending.pop()
            index = len(self.entries)
            entry, children = self._read_node(raw, location)
            self.entries.append(entry)
            if parent is not None:
                self.entries[parent].edges.append((predicates, index))
            for child_predicates, child_raw, child_location in reversed(children):
                pending.append((child_raw, child_location, index, child_predicates))

        nodes: list[DecisionNode | None] = [None] * len(self.entries)
        for index in reversed(range(len(self.entries))):
            entry = self.entries[index]
            try:
                nodes[index] = DecisionNode(
                    id=entry.node_id,
                    output=entry.output,
                    confidence=entry.raw["confidence"],
                    count=entry.raw["count"],
                    distribution=entry.distribution,
                    children=tuple(
                        Edge(predicates=predicates, child=nodes[child]) for predicates, child in entry.edges
                    ),
                )
            except ValidationError as exc:
                raise MalformedTreeError(_summarize_validation_error(exc), location=entry.location) from exc
            for _, child in entry.edges:
                nodes[child] = None
        return nodes[0]

    def _read_node(
        self,
        raw: Any,
        location: str,
    ) -> tuple[_NodeEntry, list[tuple[tuple[Predicate, ...], Any, str]]]:
        if not isinstance(raw, Mapping):
            raise MalformedTreeError("Node must be a mapping", location=location)
        # Entries are tracked by identity: a repeated entry would make the graph a DAG or a cycle.
        if id(raw) in self._visited:
            raise MalformedTreeError("Node entry is reachable through more than one edge", location=location)
        self._visited.add(id(raw))

        node_id = str(raw.get("id", len(self.entries)))
        if node_id in self._node_ids:
            raise MalformedTreeError(f"Duplicate node id {node_id!r}", location=location)
        self._node_ids.add(node_id)

        missing = [key for key in _REQUIRED_STATISTICS if raw.get(key) is None]
        if missing:
            raise MalformedTreeError(f"Node is missing statistics {missing}", location=location)

        distribution = _parse_distribution(raw.get("distribution"), location)
        if self.classification:
            labels = {_class_label(label, location): count for label, count in distribution.items()}
            if len(labels) != len(distribution):
                raise MalformedTreeError("Distribution repeats a label after conversion to text", location=location)
            distribution = labels
        entry = _NodeEntry(
            raw=raw,
            location=location,
            node_id=node_id,
            output=self._output(raw["output"], location),
            distribution=distribution,
            edges=[],
        )
        children = [
            self._read_edge(child, f"{location}.children[{index}]")
            for index, child in enumerate(raw.get("children") or ())
        ]
        return entry, children

    def _output(self, output: Any, location: str) -> str | float:
        if self.classification:
            return _class_label(output, location)
        if isinstance(output, bool) or not isinstance(output, numbers.Real):
            raise MalformedTreeError(f"Regression output must be a number, got {output!r}", location=location)
        return float(output)

    def _read_edge(self, entry: Any, location: str) -> tuple[tuple[Predicate, ...], Any, str]:
        if not isinstance(entry, Mapping):
            raise MalformedTreeError("Child entry must be a mapping", location=location)
        if "node" in entry:
            child_raw = entry["node"]
            child_location = f"{location}.node"
        else:
            child_raw = entry
            child_location = location

        if "predicates" in entry:
            descriptors = entry["predicates"]
            if isinstance(descriptors, Mapping) or not isinstance(descriptors, Sequence) or not descriptors:
                raise MalformedTreeError("'predicates' must be a non-empty list", location=location)
            predicates = tuple(
                parse_predicate(descriptor, self.registry, location=f"{location}.predicates[{index}]")
                for index, descriptor in enumerate(descriptors)
            )
        elif "predicate" in entry:
            predicates = (parse_predicate(entry["predicate"], self.registry, location=f"{location}.predicate"),)
        else:
            raise MalformedTreeError("Child entry has no predicate", location=location)
        return predicates, child_raw, child_location


def _is_classification(root_raw: Any, registry: FieldRegistry) -> bool:
    """Decide the task from the objective field, or from the root output."""
    objective = registry.objective_field
    if objective is not None:
        return registry[objective].optype != "numeric"
    return isinstance(root_raw, Mapping) and isinstance(root_raw.get("output"), str)


def _class_label(value: Any, location: str) -> str:
    """Return a class label as text; integer labels are accepted."""
    if isinstance(value, str):
        return value
    if isinstance(value, numbers.Integral) and not isinstance(value, bool):
        return str(value)
    raise MalformedTreeError(f"Class label must be a string or an integer, got {value!r}", location=location)


def _parse_distribution(raw: Any, location: str) -> dict[Any, Any]:
    """Normalize a distribution given as a mapping or as `[label, count]` pairs.

    Args:
        raw (Any): The raw distribution entry, or `None`.
        location (str): Dotted path of the owning node.

    Returns:
        dict[Any, Any]: Label mapped to count, in the order given. Values are
            validated by the node model.

    Raises:
        MalformedTreeError: If the entry has the wrong shape or repeats a label.
    """
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, str) or not isinstance(raw, Sequence):
        raise MalformedTreeError("Distribution must be a mapping or a list of pairs", location=location)
    distribution: dict[Any, Any] = {}
    for pair in raw:
        if isinstance(pair, str) or not isinstance(pair, Sequence) or len(pair) != 2:
            raise MalformedTreeError(f"Distribution entry {pair!r} is not a [label, count] pair", location=location)
        label, count = pair
        if label in distribution:
            raise MalformedTreeError(f"Distribution repeats label {label!r}", location=location)
        distribution[label] = count
    return distribution
