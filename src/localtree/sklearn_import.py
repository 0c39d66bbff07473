"""Conversion of fitted scikit-learn trees into tree descriptions."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Final

import numpy as np
from sklearn.tree import DecisionTreeClassifier, DecisionTreeRegressor

type SklearnTree = DecisionTreeClassifier | DecisionTreeRegressor

OBJECTIVE_FIELD_ID: Final[str] = "objective"
_CONFIDENCE_DECIMAL_PLACES: Final[int] = 4


def description_from_sklearn(
    tree: SklearnTree,
    feature_names: Sequence[str],
    *,
    class_names: Sequence[str] | None = None,
    objective_name: str = "prediction",
) -> dict[str, Any]:
    """Build a tree description from a fitted scikit-learn decision tree.

    Every feature becomes a numeric field whose id is `f<index>`. Each split
    becomes two children, `<= threshold` first and `> threshold` second,
    matching scikit-learn's left/right convention. Classification nodes carry
    class-count distributions with the majority class as output and its share
    as confidence; regression nodes carry the node mean with confidence 1.0.

    Args:
        tree (SklearnTree): A fitted `DecisionTreeClassifier` or
            `DecisionTreeRegressor`.
        feature_names (Sequence[str]): Names parallel to the training columns.
        class_names (Sequence[str] | None): Labels parallel to
            `tree.classes_`; defaults to `str(label)` of each class.
        objective_name (str): Display name of the objective field.

    Returns:
        dict[str, Any]: A description accepted by `DecisionTree.from_description`.

    Raises:
        ValueError: If the tree is not fitted or `feature_names` has the wrong
            length.
    """
    if not hasattr(tree, "tree_"):
        raise ValueError("The scikit-learn tree must be fitted before conversion.")
    if len(feature_names) != tree.n_features_in_:
        raise ValueError(f"Expected {tree.n_features_in_} feature names, got {len(feature_names)}.")

    is_classifier = isinstance(tree, DecisionTreeClassifier)
    labels: list[str] | None = None
    if is_classifier:
        labels = list(class_names) if class_names is not None else [str(label) for label in tree.classes_]

    fields: dict[str, dict[str, Any]] = {
        f"f{index}": {"name": name, "optype": "numeric"} for index, name in enumerate(feature_names)
    }
    fields[OBJECTIVE_FIELD_ID] = (
        {"name": objective_name, "optype": "categorical", "categories": labels}
        if labels is not None
        else {"name": objective_name, "optype": "numeric"}
    )
    return {
        "fields": fields,
        "objective_field": OBJECTIVE_FIELD_ID,
        "root": _walk_tree(tree.tree_, labels),
    }


def _walk_tree(sklearn_tree: Any, labels: list[str] | None) -> dict[str, Any]:
    """Convert every node of `tree.tree_` and link children to their parents.

    Nodes are read by index and linked afterwards, so the conversion does not
    recurse and handles trees of any depth.

    Args:
        sklearn_tree (Any): The `tree.tree_` internal structure.
        labels (list[str] | None): Class labels for classification; `None`
            for regression.

    Returns:
        dict[str, Any]: The root node description.
    """
    nodes = [_node_statistics(sklearn_tree, node_id, labels) for node_id in range(sklearn_tree.node_count)]
    for node_id, node in enumerate(nodes):
        left_child = sklearn_tree.children_left[node_id]
        right_child = sklearn_tree.children_right[node_id]
        if left_child == right_child:  # Both are TREE_LEAF (-1) at leaves
            continue

        field_id = f"f{int(sklearn_tree.feature[node_id])}"
        threshold = float(sklearn_tree.threshold[node_id])
        node["children"] = [
            {
                "predicate": {"op_type": "numeric", "operator": "<=", "field": field_id, "value": threshold},
                "node": nodes[int(left_child)],
            },
            {
                "predicate": {"op_type": "numeric", "operator": ">", "field": field_id, "value": threshold},
                "node": nodes[int(right_child)],
            },
        ]
    return nodes[0]


def _node_statistics(sklearn_tree: Any, node_id: int, labels: list[str] | None) -> dict[str, Any]:
    """Read the output statistics of one scikit-learn node.

    Recent scikit-learn releases store class fractions rather than counts in
    `tree_.value` for classifiers; both layouts are scaled back to instance
    counts using `n_node_samples`.

    Args:
        sklearn_tree (Any): The `tree.tree_` internal structure.
        node_id (int): Index of the node.
        labels (list[str] | None): Class labels, or `None` for regression.

    Returns:
        dict[str, Any]: `id`, `output`, `confidence`, `count` and
            `distribution` entries.
    """
    n_samples = int(sklearn_tree.n_node_samples[node_id])
    node_value = np.asarray(sklearn_tree.value[node_id][0], dtype=float)

    if labels is None:
        return {
            "id": node_id,
            "output": float(node_value[0]),
            "confidence": 1.0,
            "count": n_samples,
            "distribution": [],
        }

    total = float(node_value.sum())
    shares = node_value / total if total > 0 else node_value
    counts = np.rint(shares * n_samples).astype(int)
    class_index = int(np.argmax(node_value))
    return {
        "id": node_id,
        "output": labels[class_index],
        "confidence": round(float(shares[class_index]), _CONFIDENCE_DECIMAL_PLACES),
        "count": n_samples,
        "distribution": [[label, int(count)] for label, count in zip(labels, counts, strict=True) if count > 0],
    }
