"""Prediction policy settings, loadable from the environment."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

type MissingStrategy = Literal["last_prediction", "proportional"]


class PredictionPolicy(BaseSettings):
    """Controls where traversal stops and how missing values are handled.

    The defaults reproduce plain first-match traversal: descend until a leaf
    is reached or no branch matches, and stop at the current node when the
    branching field is missing.

    Every attribute can be set through an environment variable prefixed with
    `LOCALTREE_`, e.g. `LOCALTREE_MISSING_STRATEGY=proportional`.

    Attributes:
        missing_strategy (MissingStrategy): `"last_prediction"` stops at the
            node whose branches all depend on absent fields. `"proportional"`
            explores every child of that node and combines the statistics of
            the nodes reached.
        max_depth (int | None): Maximum number of edges to descend from the
            root, or `None` for no limit.
        min_count (int): Children whose training instance count is below this
            threshold are not entered; the parent's statistics are used.

    Examples:
        >>> policy = PredictionPolicy(max_depth=2)
        >>> policy.missing_strategy
        'last_prediction'
    """

    model_config = SettingsConfigDict(env_prefix="LOCALTREE_", frozen=True, extra="ignore")

    missing_strategy: MissingStrategy = Field(
        default="last_prediction",
        description="How to proceed when every branch at a node depends on a missing field.",
    )
    max_depth: int | None = Field(
        default=None,
        ge=1,
        description="Maximum number of edges to descend from the root; None means unlimited.",
    )
    min_count: int = Field(
        default=0,
        ge=0,
        description="Minimum training instance count a child must have to be entered.",
    )
