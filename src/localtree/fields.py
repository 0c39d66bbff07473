"""Field metadata registry and input row coercion."""

from __future__ import annotations

import math
import numbers
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from localtree.exceptions import InputTypeError, MalformedTreeError

type OpType = Literal["categorical", "numeric", "text"]

type FieldValue = float | str


class TreeField(BaseModel):
    """Metadata for one input or objective field of a tree.

    Attributes:
        id (str): Opaque field identifier used as the key of input rows,
            e.g. `"000002"`.
        name (str): Human-readable field name used in rules and by-name rows.
        optype (OpType): `"categorical"`, `"numeric"` or `"text"`.
        categories (tuple[str, ...] | None): Ordered valid labels of a
            categorical field; `None` when not declared or not categorical.

    Examples:
        >>> TreeField(id="000004", name="species", optype="categorical", categories=("a", "b")).categories
        ('a', 'b')
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Opaque field identifier.")
    name: str = Field(min_length=1, description="Human-readable field name.")
    optype: OpType = Field(description="Field optype: categorical, numeric or text.")
    categories: tuple[str, ...] | None = Field(
        default=None,
        description="Ordered valid labels; only allowed on categorical fields.",
    )

    @model_validator(mode="after")
    def _validate_categories_only_on_categorical(self) -> TreeField:
        """Reject category labels on non-categorical fields.

        Returns:
            TreeField: The validated model instance.

        Raises:
            ValueError: If `categories` is set on a numeric or text field.
        """
        if self.categories is not None and self.optype != "categorical":
            raise ValueError(f"categories are only allowed on categorical fields, not {self.optype!r}")
        return self


@dataclass(frozen=True)
class FieldRegistry:
    """Read-only mapping from field id to `TreeField`.

    Field names must be unique so rows keyed by name resolve unambiguously.

    Attributes:
        objective_field (str | None): Id of the predicted field, if known.
    """

    _fields: Mapping[str, TreeField]
    objective_field: str | None = None
    _ids_by_name: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Freeze the field mapping and index fields by name.

        Raises:
            MalformedTreeError: If two fields share a name, a key disagrees
                with its field id, or the objective field is unknown.
        """
        ids_by_name: dict[str, str] = {}
        for field_id, tree_field in self._fields.items():
            if field_id != tree_field.id:
                msg = f"Key {field_id!r} does not match field id {tree_field.id!r}"
                raise MalformedTreeError(msg, location="fields")
            if tree_field.name in ids_by_name:
                raise MalformedTreeError(
                    f"Duplicate field name {tree_field.name!r} for ids {ids_by_name[tree_field.name]!r}"
                    f" and {field_id!r}",
                    location="fields",
                )
            ids_by_name[tree_field.name] = field_id
        if self.objective_field is not None and self.objective_field not in self._fields:
            raise MalformedTreeError(f"Unknown objective field {self.objective_field!r}", location="objective_field")
        object.__setattr__(self, "_fields", MappingProxyType(dict(self._fields)))
        object.__setattr__(self, "_ids_by_name", MappingProxyType(ids_by_name))

    @classmethod
    def from_description(
        cls,
        fields: Mapping[str, Mapping[str, Any]],
        *,
        objective_field: str | None = None,
    ) -> FieldRegistry:
        """Build a registry from the `fields` section of a tree description.

        Args:
            fields (Mapping[str, Mapping[str, Any]]): Field id mapped to a
                mapping with `name`, `optype` and optional `categories`. A
                missing `name` defaults to the field id.
            objective_field (str | None): Id of the predicted field.

        Returns:
            FieldRegistry: The validated registry.

        Raises:
            MalformedTreeError: If any field entry is invalid.
        """
        if not isinstance(fields, Mapping):
            raise MalformedTreeError("Field metadata must be a mapping of field id to field", location="fields")
        parsed: dict[str, TreeField] = {}
        for field_id, raw in fields.items():
            if not isinstance(raw, Mapping):
                raise MalformedTreeError("Field entry must be a mapping", location=f"fields.{field_id}")
            try:
                parsed[field_id] = TreeField(
                    id=field_id,
                    name=raw.get("name", field_id),
                    optype=raw.get("optype"),
                    categories=raw.get("categories"),
                )
            except ValidationError as exc:
                raise MalformedTreeError(_summarize_validation_error(exc), location=f"fields.{field_id}") from exc
        return cls(parsed, objective_field=objective_field)

    @property
    def fields(self) -> Mapping[str, TreeField]:
        """Read-only view of registered fields."""
        return self._fields

    def __getitem__(self, field_id: str) -> TreeField:
        return self._fields[field_id]

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._fields

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def name_of(self, field_id: str) -> str:
        """Return the display name of a field.

        Args:
            field_id (str): The field id to look up.

        Returns:
            str: The field name.

        Raises:
            KeyError: If the field id is not registered.
        """
        return self._fields[field_id].name

    def id_for_name(self, name: str) -> str | None:
        """Return the id of the field called `name`, or `None` if unknown."""
        return self._ids_by_name.get(name)

    def coerce_row(self, row: Mapping[str, Any], *, by_name: bool = False) -> dict[str, FieldValue]:
        """Resolve, validate and coerce an input row.

        Keys that do not name a registered field are ignored. `None` values
        (and NaN for numeric fields) are treated as missing and dropped. All
        remaining values are coerced to the field's Python type; every field
        whose value cannot be coerced is collected before raising.

        Args:
            row (Mapping[str, Any]): Input values keyed by field id, or by
                field name when `by_name` is True.
            by_name (bool): Whether the keys of `row` are field names.

        Returns:
            dict[str, FieldValue]: Coerced values keyed by field id. Absent
                fields are absent from the result.

        Raises:
            InputTypeError: If any value is incompatible with its field.

        Examples:
            >>> registry = FieldRegistry.from_description({"f1": {"name": "age", "optype": "numeric"}})
            >>> registry.coerce_row({"age": "42", "unused": 1}, by_name=True)
            {'f1': 42.0}
        """
        coerced: dict[str, FieldValue] = {}
        invalid: dict[str, str] = {}
        ignored: list[str] = []
        for key, raw in row.items():
            field_id = self._ids_by_name.get(key) if by_name else (key if key in self._fields else None)
            if field_id is None:
                ignored.append(key)
                continue
            try:
                value = _coerce_value(self._fields[field_id], raw)
            except (TypeError, ValueError) as exc:
                invalid[field_id] = str(exc)
                continue
            if value is not None:
                coerced[field_id] = value
        if ignored:
            logger.debug("Ignoring input keys with no matching field", keys=ignored)
        if invalid:
            raise InputTypeError(invalid)
        return coerced


def _coerce_value(tree_field: TreeField, raw: Any) -> FieldValue | None:
    """Coerce one raw input value to the Python type of its field.

    Args:
        tree_field (TreeField): The field the value belongs to.
        raw (Any): The raw value supplied by the caller.

    Returns:
        FieldValue | None: `float` for numeric fields, `str` otherwise, or
            `None` when the value counts as missing.

    Raises:
        TypeError: If the value has a type that cannot represent the field.
        ValueError: If a string cannot be parsed as a number.
    """
    if raw is None:
        return None
    if tree_field.optype == "numeric":
        if isinstance(raw, bool):
            raise TypeError(f"expected a number, got {raw!r}")
        if isinstance(raw, numbers.Real):
            number = float(raw)
            return None if math.isnan(number) else number
        if isinstance(raw, str):
            stripped = raw.strip()
            if not stripped:
                return None
            try:
                number = float(stripped)
            except ValueError:
                raise ValueError(f"expected a number, got {raw!r}") from None
            return None if math.isnan(number) else number
        raise TypeError(f"expected a number, got {type(raw).__name__}")
    if isinstance(raw, str):
        return raw
    if isinstance(raw, numbers.Integral) and not isinstance(raw, bool):
        return str(raw)
    raise TypeError(f"expected a string, got {raw!r}")


def _summarize_validation_error(exc: ValidationError) -> str:
    """Collapse a pydantic ValidationError into a single-line message.

    Args:
        exc (ValidationError): The error raised by pydantic.

    Returns:
        str: `"; "`-joined `"<loc>: <msg>"` entries.
    """
    parts = []
    for error in exc.errors():
        loc = ".".join(str(item) for item in error["loc"])
        parts.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return "; ".join(parts)
