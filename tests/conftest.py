"""Pytest fixtures for the localtree test suite."""

from __future__ import annotations

import os
from typing import Any

import pytest
from tree_fixtures import make_iris_description, make_text_description

from localtree.fields import FieldRegistry
from localtree.predictor import LocalModel


@pytest.fixture(autouse=True)
def clear_policy_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove LOCALTREE_* variables so default policies are deterministic.

    Args:
        monkeypatch (pytest.MonkeyPatch): Pytest fixture for patching the environment.
    """
    for name in list(os.environ):
        if name.startswith("LOCALTREE_"):
            monkeypatch.delenv(name)


@pytest.fixture
def iris_description() -> dict[str, Any]:
    """Return a fresh iris tree description."""
    return make_iris_description()


@pytest.fixture
def iris_model() -> LocalModel:
    """Return a model loaded from the iris tree description."""
    return LocalModel.from_description(make_iris_description())


@pytest.fixture
def iris_registry() -> FieldRegistry:
    """Return the field registry of the iris tree description."""
    description = make_iris_description()
    return FieldRegistry.from_description(description["fields"], objective_field=description["objective_field"])


@pytest.fixture
def text_model() -> LocalModel:
    """Return a model loaded from the categorical/text tree description."""
    return LocalModel.from_description(make_text_description())
