"""Human-readable decision rules for predicate paths and tree leaves."""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from localtree.fields import FieldRegistry
from localtree.predicates import OPERATOR_SYMBOLS, MissingPredicate, Predicate, format_operand
from localtree.tree import DecisionNode, iter_leaves

RULE_SEPARATOR = "\n"


class LeafRule(BaseModel):
    """The conjunction of predicates leading to one leaf, with its statistics.

    Attributes:
        node_id (str): Id of the leaf.
        predicates (tuple[Predicate, ...]): Predicates along the root-to-leaf
            path. Empty for a single-leaf tree.
        prediction (str | float): Output recorded at the leaf.
        confidence (float): Confidence recorded at the leaf.
        count (int): Training instances that reached the leaf.
    """

    model_config = ConfigDict(frozen=True)

    node_id: str = Field(description="Id of the leaf.")
    predicates: tuple[Predicate, ...] = Field(description="Predicates along the root-to-leaf path.")
    prediction: str | float = Field(description="Output recorded at the leaf.")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence recorded at the leaf.")
    count: int = Field(ge=0, description="Training instances that reached the leaf.")

    def render(self, registry: FieldRegistry) -> str:
        """Render the rule's conditions; see `render`."""
        return render(self.predicates, registry)


def render_predicate(predicate: Predicate, registry: FieldRegistry) -> str:
    """Render one predicate as `"<field name> <symbol> <value>"`.

    Missing tests have no value; predicates that also match absent values get
    an `" or missing"` suffix.

    Args:
        predicate (Predicate): The predicate to render.
        registry (FieldRegistry): Registry used to resolve the field name.

    Returns:
        str: The rule fragment.

    Examples:
        >>> from localtree.predicates import NumericPredicate
        >>> registry = FieldRegistry.from_description({"f": {"name": "petal length", "optype": "numeric"}})
        >>> render_predicate(NumericPredicate(operator="<", field="f", value=2.45), registry)
        'petal length < 2.45'
        >>> render_predicate(NumericPredicate(operator=">=", field="f", value=3, missing=True), registry)
        'petal length >= 3 or missing'
    """
    name = registry.name_of(predicate.field)
    symbol = OPERATOR_SYMBOLS[predicate.operator]
    if isinstance(predicate, MissingPredicate):
        return f"{name} {symbol}"
    fragment = f"{name} {symbol} {format_operand(predicate)}"
    return f"{fragment} or missing" if predicate.missing else fragment


def render(path: Sequence[Predicate], registry: FieldRegistry) -> str:
    """Render a predicate path as a rule, one conjunct per line, root first.

    Args:
        path (Sequence[Predicate]): Predicates in root-to-leaf order.
        registry (FieldRegistry): Registry used to resolve field names.

    Returns:
        str: The rule text; an empty string for an empty path.
    """
    return RULE_SEPARATOR.join(render_predicate(predicate, registry) for predicate in path)


def extract_rules(root: DecisionNode) -> list[LeafRule]:
    """Build one `LeafRule` per leaf, depth first in definition order.

    Args:
        root (DecisionNode): Root of the tree.

    Returns:
        list[LeafRule]: One rule per leaf.
    """
    return [
        LeafRule(
            node_id=leaf.id,
            predicates=path,
            prediction=leaf.output,
            confidence=leaf.confidence,
            count=leaf.count,
        )
        for path, leaf in iter_leaves(root)
    ]


def list_rules(root: DecisionNode, registry: FieldRegistry) -> list[str]:
    """Render one rule string per leaf, depth first in definition order.

    Args:
        root (DecisionNode): Root of the tree.
        registry (FieldRegistry): Registry used to resolve field names.

    Returns:
        list[str]: One rendered rule per leaf.
    """
    return [render(path, registry) for path, _ in iter_leaves(root)]
