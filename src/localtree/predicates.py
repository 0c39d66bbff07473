"""Predicate models, descriptor parsing, and predicate evaluation.

A predicate is a single branching condition on one field. Predicates form a
discriminated union on `op_type`, one model per operand shape:

- `NumericPredicate` (`op_type="numeric"`): ordering and equality against a
  number. Numeric fields only.
- `StringPredicate` (`op_type="string"`): equality against a label, or a
  case-sensitive substring test (`contains`, text fields only).
- `SetPredicate` (`op_type="set"`): membership in a set of labels.
  Categorical fields only.
- `MissingPredicate` (`op_type="missing"`): tests whether the field is absent
  from the input row.

Operand/field compatibility is checked once, when a tree is loaded, by
`parse_predicate`; evaluation itself never re-checks it.
"""

from __future__ import annotations

import operator
from abc import abstractmethod
from collections.abc import Callable, Mapping
from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from localtree.exceptions import MalformedTreeError
from localtree.fields import FieldRegistry, FieldValue, TreeField, _summarize_validation_error

# ---------------------------------------------------------------------------
# Public type aliases and constants
# ---------------------------------------------------------------------------

type NumericOperator = Literal["=", "!=", "<", "<=", ">", ">="]

type StringOperator = Literal["=", "!=", "contains"]

type MissingOperator = Literal["is missing", "is not missing"]

# Symbols used when rendering rules. Part of the audit log format: do not localize.
OPERATOR_SYMBOLS: Final[Mapping[str, str]] = {
    "=": "=",
    "!=": "!=",
    "<": "<",
    "<=": "<=",
    ">": ">",
    ">=": ">=",
    "in": "in",
    "contains": "contains",
    "is missing": "is missing",
    "is not missing": "is not missing",
}

_OPERATOR_ALIASES: Final[Mapping[str, str]] = {
    "==": "=",
    "is_missing": "is missing",
    "missing": "is missing",
    "is_not_missing": "is not missing",
}

_MISSING_SUFFIX: Final[str] = "*"

_SCALAR_OPS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "=": operator.eq,
    "!=": operator.ne,
}

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class _ComparisonPredicate(BaseModel):
    """Shared behaviour of predicates that compare a present value."""

    model_config = ConfigDict(frozen=True)

    field: str = Field(min_length=1, description="Id of the field the condition applies to.")
    missing: bool = Field(
        default=False,
        description="When True the predicate also holds for rows in which the field is absent.",
    )

    def matches(self, row: Mapping[str, FieldValue]) -> bool:
        """Evaluate this predicate against a coerced input row.

        Args:
            row (Mapping[str, FieldValue]): Coerced values keyed by field id.

        Returns:
            bool: The `missing` flag when the field is absent, otherwise the
                result of the comparison.
        """
        value = row.get(self.field)
        if value is None:
            return self.missing
        return self._holds(value)

    @abstractmethod
    def _holds(self, value: FieldValue) -> bool:
        """Compare a present value against the operand."""


class NumericPredicate(_ComparisonPredicate):
    """Comparison of a numeric field against a number, e.g. `petal length < 2.45`.

    Examples:
        >>> p = NumericPredicate(operator="<", field="000002", value=2.45)
        >>> p.matches({"000002": 1.0}), p.matches({"000002": 2.45}), p.matches({})
        (True, False, False)
    """

    op_type: Literal["numeric"] = "numeric"
    operator: NumericOperator
    value: float

    def _holds(self, value: FieldValue) -> bool:
        return _SCALAR_OPS[self.operator](value, self.value)


class StringPredicate(_ComparisonPredicate):
    """Equality or substring test of a categorical/text field against a string.

    Examples:
        >>> StringPredicate(operator="contains", field="t", value="free").matches({"t": "Get it free"})
        True
        >>> StringPredicate(operator="contains", field="t", value="Free").matches({"t": "Get it free"})
        False
    """

    op_type: Literal["string"] = "string"
    operator: StringOperator
    value: str

    def _holds(self, value: FieldValue) -> bool:
        if self.operator == "contains":
            return isinstance(value, str) and self.value in value
        return _SCALAR_OPS[self.operator](value, self.value)


class SetPredicate(_ComparisonPredicate):
    """Membership of a categorical field in a set of labels.

    The labels keep the order in which the tree description lists them.

    Examples:
        >>> SetPredicate(field="c", value=("red", "blue")).matches({"c": "blue"})
        True
    """

    op_type: Literal["set"] = "set"
    operator: Literal["in"] = "in"
    value: tuple[str, ...]

    def _holds(self, value: FieldValue) -> bool:
        return value in self.value


class MissingPredicate(BaseModel):
    """Tests whether a field is absent from the input row.

    Examples:
        >>> MissingPredicate(field="000003").matches({})
        True
        >>> MissingPredicate(field="000003", operator="is not missing").matches({})
        False
    """

    model_config = ConfigDict(frozen=True)

    op_type: Literal["missing"] = "missing"
    operator: MissingOperator = "is missing"
    field: str = Field(min_length=1, description="Id of the field the condition applies to.")
    value: None = None

    def matches(self, row: Mapping[str, FieldValue]) -> bool:
        """Evaluate this predicate against a coerced input row.

        Args:
            row (Mapping[str, FieldValue]): Coerced values keyed by field id.

        Returns:
            bool: Whether the field's presence matches the operator.
        """
        absent = row.get(self.field) is None
        return absent if self.operator == "is missing" else not absent


# Use this alias wherever any predicate is accepted; pydantic selects the model from `op_type`.
Predicate = Annotated[
    NumericPredicate | StringPredicate | SetPredicate | MissingPredicate,
    Field(discriminator="op_type"),
]

_PREDICATE_ADAPTER: TypeAdapter[Predicate] = TypeAdapter(Predicate)

# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def evaluate(predicate: Predicate, row: Mapping[str, FieldValue]) -> bool:
    """Evaluate a predicate against a coerced input row.

    Comparison predicates are False when their field is absent (unless the
    predicate carries the `missing` flag); `is missing` is True exactly when
    the field is absent. Never raises for rows produced by
    `FieldRegistry.coerce_row`.

    Args:
        predicate (Predicate): The condition to test.
        row (Mapping[str, FieldValue]): Coerced values keyed by field id.

    Returns:
        bool: Whether the condition holds for `row`.
    """
    return predicate.matches(row)


def format_operand(predicate: Predicate) -> str:
    """Render the operand of a predicate for a rule fragment.

    Args:
        predicate (Predicate): The predicate whose value to render.

    Returns:
        str: Numbers without a trailing `.0` when integral, strings verbatim,
            label sets as `{a, b}`, and an empty string for missing tests.

    Examples:
        >>> format_operand(NumericPredicate(operator=">", field="f", value=6.0))
        '6'
        >>> format_operand(SetPredicate(field="f", value=("b", "a")))
        '{b, a}'
    """
    match predicate:
        case NumericPredicate(value=number):
            return _format_number(number)
        case SetPredicate(value=labels):
            return "{" + ", ".join(labels) + "}"
        case MissingPredicate():
            return ""
        case _:
            return str(predicate.value)


def parse_predicate(
    descriptor: Mapping[str, Any],
    registry: FieldRegistry,
    *,
    location: str = "predicate",
) -> Predicate:
    """Build a validated predicate from a tree-description predicate entry.

    The descriptor carries `operator`, `field`, `value` and an optional
    `op_type`. Operator aliases (`==`, `is_missing`) are normalized; a
    trailing `*` on the operator sets the `missing` flag; `= null` and
    `!= null` become missing tests. When `op_type` is omitted it is inferred
    from the operator and the field's optype.

    Args:
        descriptor (Mapping[str, Any]): Raw predicate entry.
        registry (FieldRegistry): Registry the predicate will be evaluated
            against.
        location (str): Dotted path of the entry, used in error messages.

    Returns:
        Predicate: The validated predicate.

    Raises:
        MalformedTreeError: If the field is unknown, the operator is
            unsupported, or the operand is incompatible with the operator or
            the field's optype.
    """
    if not isinstance(descriptor, Mapping):
        raise MalformedTreeError("Predicate must be a mapping", location=location)
    field_id = descriptor.get("field")
    if not isinstance(field_id, str) or field_id not in registry:
        raise MalformedTreeError(f"Unknown field {field_id!r}", location=location)
    tree_field = registry[field_id]

    raw_operator = descriptor.get("operator")
    if not isinstance(raw_operator, str):
        raise MalformedTreeError(f"Operator must be a string, got {raw_operator!r}", location=location)
    op, missing = _normalize_operator(raw_operator)
    value = descriptor.get("value")
    if value is None and op in {"=", "!="}:
        op = "is missing" if op == "=" else "is not missing"

    op_type = descriptor.get("op_type") or _infer_op_type(op, tree_field)
    payload: dict[str, Any] = {"op_type": op_type, "operator": op, "field": field_id}
    if op_type == "missing":
        if value is not None:
            raise MalformedTreeError(f"Operator {op!r} takes no value, got {value!r}", location=location)
    else:
        payload["value"] = value
        payload["missing"] = missing

    try:
        predicate = _PREDICATE_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        raise MalformedTreeError(_summarize_validation_error(exc), location=location) from exc

    problem = _field_incompatibility(predicate, tree_field)
    if problem is not None:
        raise MalformedTreeError(problem, location=location)
    return predicate


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _normalize_operator(raw_operator: str) -> tuple[str, bool]:
    """Split the missing suffix off an operator and resolve aliases.

    Args:
        raw_operator (str): Operator as written in the tree description.

    Returns:
        tuple[str, bool]: The canonical operator and whether it carried the
            `*` missing suffix.
    """
    op = raw_operator.strip()
    missing = op.endswith(_MISSING_SUFFIX)
    if missing:
        op = op[: -len(_MISSING_SUFFIX)]
    return _OPERATOR_ALIASES.get(op, op), missing


def _infer_op_type(op: str, tree_field: TreeField) -> str:
    """Infer the operand shape from the operator and the field's optype."""
    if op in {"is missing", "is not missing"}:
        return "missing"
    if op == "in":
        return "set"
    if op == "contains" or tree_field.optype != "numeric":
        return "string"
    return "numeric"


def _field_incompatibility(predicate: Predicate, tree_field: TreeField) -> str | None:
    """Describe why a predicate cannot be evaluated against a field.

    Args:
        predicate (Predicate): A predicate that passed model validation.
        tree_field (TreeField): The field the predicate refers to.

    Returns:
        str | None: A reason string, or `None` when the pair is compatible.
    """
    optype = tree_field.optype
    match predicate:
        case NumericPredicate() if optype != "numeric":
            return f"Numeric operator {predicate.operator!r} is not valid on {optype} field {tree_field.name!r}"
        case StringPredicate(operator="contains") if optype != "text":
            return f"Operator 'contains' is only valid on text fields, not {optype} field {tree_field.name!r}"
        case StringPredicate() if optype == "numeric":
            return f"String operand {predicate.value!r} is not valid on numeric field {tree_field.name!r}"
        case SetPredicate() if optype != "categorical":
            return f"Operator 'in' is only valid on categorical fields, not {optype} field {tree_field.name!r}"
    if tree_field.categories is not None and isinstance(predicate, StringPredicate | SetPredicate):
        labels = predicate.value if isinstance(predicate, SetPredicate) else (predicate.value,)
        unknown = [label for label in labels if label not in tree_field.categories]
        if unknown:
            return f"Labels {unknown} are not categories of field {tree_field.name!r}"
    return None


def _format_number(number: float) -> str:
    """Format a float without locale influence, dropping a redundant `.0`."""
    if number.is_integer() and abs(number) < 1e16:
        return str(int(number))
    return repr(number)
