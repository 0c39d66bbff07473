"""Custom exceptions for local decision tree evaluation.

This module defines the error taxonomy of the package:

- LocalTreeError: Base class for every error raised by localtree. Catch this to
  handle any failure coming from the package.
- MalformedTreeError: Raised while loading a tree description that cannot be
  turned into a valid tree (unknown fields, missing statistics, operator and
  operand mismatches, shared nodes). Subclasses ValueError.
- InputTypeError: Raised while evaluating an input row that supplies a value
  incompatible with a field's optype. Subclasses TypeError.

Missing fields and inputs that match no branch are not errors and never raise.
"""

from __future__ import annotations


class LocalTreeError(Exception):
    """Base exception for all localtree errors."""


class MalformedTreeError(LocalTreeError, ValueError):
    """Raised when a tree description cannot be loaded.

    Loading is all-or-nothing: when this error is raised no partially built
    tree is exposed to the caller.

    Attributes:
        location (str | None): Dotted path to the offending element of the
            description, e.g. `"root.children[1].predicate"`, or `None` when
            the error concerns the description as a whole.

    Examples:
        >>> err = MalformedTreeError("Unknown field '000009'", location="root.children[0].predicate")
        >>> err.location
        'root.children[0].predicate'
        >>> str(err)
        "Unknown field '000009' (at root.children[0].predicate)"
    """

    location: str | None

    def __init__(self, message: str, *, location: str | None = None) -> None:
        """Initialize MalformedTreeError.

        Args:
            message (str): Description of what is wrong with the tree.
            location (str | None): Dotted path to the offending element.
        """
        super().__init__(f"{message} (at {location})" if location else message)
        self.location = location

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including message and location.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, location={self.location!r})"


class InputTypeError(LocalTreeError, TypeError):
    """Raised when an input row holds values incompatible with their fields.

    Every offending field of the row is reported at once; the row is rejected
    before any predicate is evaluated.

    Attributes:
        invalid_fields (dict[str, str]): Mapping of field id to a
            human-readable reason the supplied value was rejected.

    Examples:
        >>> err = InputTypeError({"000002": "expected a number, got 'abc'"})
        >>> err.invalid_fields
        {'000002': "expected a number, got 'abc'"}
    """

    invalid_fields: dict[str, str]

    def __init__(self, invalid_fields: dict[str, str], *, message: str | None = None) -> None:
        """Initialize InputTypeError.

        Args:
            invalid_fields (dict[str, str]): Field ids mapped to rejection reasons.
            message (str | None): Optional message overriding the default one.
        """
        default = f"Input values incompatible with field types: {sorted(invalid_fields)}"
        super().__init__(message or default)
        self.invalid_fields = invalid_fields

    def format_details(self) -> str:
        """Format one line per offending field.

        Returns:
            str: Multi-line string, sorted by field id.

        Examples:
            >>> err = InputTypeError({"b": "expected a number, got 'x'", "a": "expected a string, got True"})
            >>> print(err.format_details())
            Field "a": expected a string, got True
            Field "b": expected a number, got 'x'
        """
        return "\n".join(f'Field "{field_id}": {reason}' for field_id, reason in sorted(self.invalid_fields.items()))

    def __repr__(self) -> str:
        """Return detailed representation for debugging.

        Returns:
            str: Detailed string representation including message and invalid fields.
        """
        return f"{self.__class__.__name__}(message={str(self)!r}, invalid_fields={self.invalid_fields!r})"
