"""localtree: offline evaluation and explanation of decision tree models."""

from loguru import logger

from localtree.exceptions import InputTypeError, LocalTreeError, MalformedTreeError
from localtree.logging import PACKAGE_NAME, enable_logging
from localtree.predictor import LocalModel, PredictionResult
from localtree.settings import PredictionPolicy
from localtree.tree import DecisionTree

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the localtree package by default

__all__ = [
    "DecisionTree",
    "InputTypeError",
    "LocalModel",
    "LocalTreeError",
    "MalformedTreeError",
    "PredictionPolicy",
    "PredictionResult",
    "enable_logging",
]
