"""Local predictive model: offline predictions and rules from a loaded tree."""

from __future__ import annotations

import json
import math
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any, Final

import polars as pl
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from localtree.exceptions import InputTypeError, MalformedTreeError
from localtree.logging import PREDICTION_LEVEL
from localtree.predicates import Predicate
from localtree.rules import LeafRule, extract_rules, list_rules, render
from localtree.settings import PredictionPolicy
from localtree.traversal import proportional_terminals, traverse
from localtree.tree import DecisionNode, DecisionTree

_WILSON_Z: Final[float] = 1.96  # 95% two-sided normal quantile.

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class PredictionResult(BaseModel):
    """The outcome of evaluating one input row.

    Attributes:
        prediction (str | float): Predicted class label or regression value.
        confidence (float): Confidence of the prediction, between 0.0 and 1.0.
        count (int): Training instances behind the prediction.
        distribution (dict[str | float, int]): Instance count per label or value.
        path (tuple[Predicate, ...]): Predicates satisfied from the root to
            the node where traversal stopped.
        node_id (str): Id of the node where traversal stopped.
    """

    model_config = ConfigDict(frozen=True)

    prediction: str | float = Field(description="Predicted class label or regression value.")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence of the prediction.")
    count: int = Field(ge=0, description="Training instances behind the prediction.")
    distribution: dict[str | float, int] = Field(description="Instance count per label or value.")
    path: tuple[Predicate, ...] = Field(description="Predicates satisfied from the root, in order.")
    node_id: str = Field(description="Id of the node where traversal stopped.")

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-compatible dictionary of this result."""
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


class LocalModel:
    """A decision tree evaluated offline, without calls to the remote service.

    The model owns an immutable `DecisionTree`; `predict`, `list_rules` and
    `explain` never mutate it, so one instance can serve many threads.

    Examples:
        >>> model = LocalModel.from_description({
        ...     "fields": {"000002": {"name": "petal length", "optype": "numeric"}},
        ...     "root": {
        ...         "output": "Iris-versicolor", "confidence": 0.5, "count": 100,
        ...         "children": [
        ...             {"predicate": {"operator": "<", "field": "000002", "value": 2.45},
        ...              "node": {"output": "Iris-setosa", "confidence": 1.0, "count": 50}},
        ...             {"predicate": {"operator": ">=", "field": "000002", "value": 2.45},
        ...              "node": {"output": "Iris-virginica", "confidence": 0.9, "count": 50}},
        ...         ],
        ...     },
        ... })
        >>> model.predict({"000002": 1.0}).prediction
        'Iris-setosa'
        >>> model.list_rules()
        ['petal length < 2.45', 'petal length >= 2.45']
    """

    def __init__(self, tree: DecisionTree, *, policy: PredictionPolicy | None = None) -> None:
        """Initialize the model.

        Args:
            tree (DecisionTree): The loaded tree.
            policy (PredictionPolicy | None): Default policy for `predict`.
                When `None`, a policy is read from `LOCALTREE_*` environment
                variables, falling back to plain first-match traversal.
        """
        self._tree = tree
        self._policy = policy if policy is not None else PredictionPolicy()

    @classmethod
    def from_description(
        cls,
        description: Mapping[str, Any],
        *,
        policy: PredictionPolicy | None = None,
    ) -> LocalModel:
        """Load a model from a deserialized tree description.

        Args:
            description (Mapping[str, Any]): Mapping with `fields`, `root` and
                an optional `objective_field`.
            policy (PredictionPolicy | None): Default prediction policy.

        Returns:
            LocalModel: The loaded model.

        Raises:
            MalformedTreeError: If the description is invalid.
        """
        return cls(DecisionTree.from_description(description), policy=policy)

    @classmethod
    def from_json(cls, text: str | bytes, *, policy: PredictionPolicy | None = None) -> LocalModel:
        """Load a model from the JSON text of a tree description.

        Args:
            text (str | bytes): JSON document.
            policy (PredictionPolicy | None): Default prediction policy.

        Returns:
            LocalModel: The loaded model.

        Raises:
            MalformedTreeError: If the text is not valid JSON or the
                description is invalid.
        """
        try:
            description = json.loads(text)
        except json.JSONDecodeError as exc:
            raise MalformedTreeError(f"Tree description is not valid JSON: {exc.msg}") from exc
        return cls.from_description(description, policy=policy)

    @property
    def tree(self) -> DecisionTree:
        """The loaded tree."""
        return self._tree

    @property
    def policy(self) -> PredictionPolicy:
        """The default prediction policy."""
        return self._policy

    def predict(
        self,
        row: Mapping[str, Any],
        *,
        by_name: bool = False,
        policy: PredictionPolicy | None = None,
    ) -> PredictionResult:
        """Predict the objective for one input row.

        The row is validated against the field registry first; then the tree
        is walked from the root, taking the first edge whose predicates all
        hold. Statistics are read from the node where traversal stops.

        Args:
            row (Mapping[str, Any]): Input values keyed by field id, or by
                field name when `by_name` is True. Absent or `None` values are
                missing; unknown keys are ignored.
            by_name (bool): Whether the keys of `row` are field names.
            policy (PredictionPolicy | None): Overrides the model's default
                policy for this call.

        Returns:
            PredictionResult: The prediction with its statistics and path.

        Raises:
            InputTypeError: If any value is incompatible with its field's
                optype. Nothing is evaluated in that case.
        """
        active_policy = policy if policy is not None else self._policy
        try:
            values = self._tree.registry.coerce_row(row, by_name=by_name)
        except InputTypeError as exc:
            logger.warning("Input row rejected", invalid_fields=sorted(exc.invalid_fields))
            raise

        outcome = traverse(self._tree.root, values, policy=active_policy)
        if outcome.blocked_by_missing and active_policy.missing_strategy == "proportional":
            terminals = proportional_terminals(outcome.node, values, policy=active_policy, depth=outcome.depth)
            result = self._combine(terminals, path=outcome.path, node_id=outcome.node.id)
        else:
            result = _result_from_node(outcome.node, path=outcome.path)

        logger.log(
            PREDICTION_LEVEL,
            "Prediction made",
            node_id=result.node_id,
            prediction=result.prediction,
            confidence=result.confidence,
            path_length=len(result.path),
        )
        return result

    def predict_frame(
        self,
        df: pl.DataFrame,
        *,
        by_name: bool = True,
        policy: PredictionPolicy | None = None,
    ) -> pl.DataFrame:
        """Predict every row of a DataFrame.

        Null cells are missing values. Columns that match no field are
        ignored.

        Args:
            df (pl.DataFrame): Input rows; column names are field names, or
                field ids when `by_name` is False.
            by_name (bool): Whether column names are field names.
            policy (PredictionPolicy | None): Overrides the model's default
                policy for these calls.

        Returns:
            pl.DataFrame: One row per input row with columns `prediction`,
                `confidence`, `count` and `node_id`.

        Raises:
            InputTypeError: If any row holds an incompatible value; the
                message names the first offending row index.
        """
        results: list[PredictionResult] = []
        for index, row in enumerate(df.iter_rows(named=True)):
            try:
                results.append(self.predict(row, by_name=by_name, policy=policy))
            except InputTypeError as exc:
                raise InputTypeError(
                    exc.invalid_fields,
                    message=f"Row {index} has values incompatible with field types: {sorted(exc.invalid_fields)}",
                ) from exc
        prediction_dtype = pl.String if self._tree.task_type == "classification" else pl.Float64
        return pl.DataFrame(
            {
                "prediction": [result.prediction for result in results],
                "confidence": [result.confidence for result in results],
                "count": [result.count for result in results],
                "node_id": [result.node_id for result in results],
            },
            schema={
                "prediction": prediction_dtype,
                "confidence": pl.Float64,
                "count": pl.Int64,
                "node_id": pl.String,
            },
        )

    def list_rules(self) -> list[str]:
        """Render one rule per leaf, depth first in definition order."""
        return list_rules(self._tree.root, self._tree.registry)

    def extract_rules(self) -> list[LeafRule]:
        """Return one structured rule per leaf, depth first in definition order."""
        return extract_rules(self._tree.root)

    def explain(self, result: PredictionResult) -> str:
        """Render the path of a prediction as a rule.

        Args:
            result (PredictionResult): A result produced by this model.

        Returns:
            str: One condition per line, root first.
        """
        return render(result.path, self._tree.registry)

    def _combine(
        self,
        terminals: Sequence[DecisionNode],
        *,
        path: tuple[Predicate, ...],
        node_id: str,
    ) -> PredictionResult:
        """Merge the statistics of several terminal nodes into one result.

        Args:
            terminals (Sequence[DecisionNode]): Nodes reached by exploring the
                children of a node blocked by a missing field.
            path (tuple[Predicate, ...]): Path to the blocked node.
            node_id (str): Id of the blocked node.

        Returns:
            PredictionResult: The combined result.
        """
        if len(terminals) == 1:
            return _result_from_node(terminals[0], path=path).model_copy(update={"node_id": node_id})

        merged: Counter[str | float] = Counter()
        for terminal in terminals:
            if terminal.distribution:
                merged.update(terminal.distribution)
            else:
                merged[terminal.output] += terminal.count
        total_count = sum(terminal.count for terminal in terminals)
        distribution = dict(sorted(merged.items(), key=lambda item: (-item[1], str(item[0]))))

        if self._tree.task_type == "classification":
            prediction: str | float = next(iter(distribution)) if distribution else terminals[0].output
            instances = sum(distribution.values())
            confidence = wilson_score(distribution.get(prediction, 0), instances)
        else:
            weights = [terminal.count for terminal in terminals]
            if sum(weights) == 0:
                weights = [1] * len(terminals)
            weight_total = sum(weights)
            prediction = sum(float(t.output) * w for t, w in zip(terminals, weights, strict=True)) / weight_total
            confidence = sum(t.confidence * w for t, w in zip(terminals, weights, strict=True)) / weight_total

        return PredictionResult(
            prediction=prediction,
            confidence=min(max(confidence, 0.0), 1.0),
            count=total_count,
            distribution=distribution,
            path=path,
            node_id=node_id,
        )


def wilson_score(positive: int, total: int, *, z: float = _WILSON_Z) -> float:
    """Lower bound of the Wilson score interval for a proportion.

    Args:
        positive (int): Instances of the predicted class.
        total (int): All instances.
        z (float): Normal quantile of the interval.

    Returns:
        float: The lower bound, between 0.0 and 1.0; 0.0 when `total` is 0.

    Examples:
        >>> round(wilson_score(50, 50), 4)
        0.9287
        >>> wilson_score(0, 0)
        0.0
    """
    if total <= 0:
        return 0.0
    proportion = positive / total
    z_squared = z * z
    centre = proportion + z_squared / (2 * total)
    spread = z * math.sqrt((proportion * (1 - proportion) + z_squared / (4 * total)) / total)
    return min(max((centre - spread) / (1 + z_squared / total), 0.0), 1.0)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _result_from_node(node: DecisionNode, *, path: tuple[Predicate, ...]) -> PredictionResult:
    """Copy a node's statistics verbatim into a fresh result."""
    return PredictionResult(
        prediction=node.output,
        confidence=node.confidence,
        count=node.count,
        distribution=dict(node.distribution),
        path=path,
        node_id=node.id,
    )
