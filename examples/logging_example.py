"""Demonstrates how to enable and configure logging in localtree.

localtree logging is disabled by default. Users opt in by calling ``enable_logging()``,
which returns a ``LoggingHandle``. The handle can be used as a context manager
(``with enable_logging(): ...``) or disabled manually via ``handle.disable()``.

Key concepts shown here:

- ``level``: the custom ``PREDICTION`` level (numeric value 25, between INFO and
  WARNING) emits one record per prediction and is the default. ``"DEBUG"`` also
  shows tree construction and ignored input keys.
- ``log_format``: ``"full"`` adds the module and line number.
- Rejected rows are logged at WARNING before ``InputTypeError`` propagates.
"""

from localtree import InputTypeError, LocalModel, PredictionPolicy, enable_logging

DESCRIPTION = {
    "fields": {
        "000002": {"name": "petal length", "optype": "numeric"},
        "000003": {"name": "petal width", "optype": "numeric"},
    },
    "root": {
        "output": "Iris-versicolor",
        "confidence": 0.5,
        "count": 100,
        "distribution": [["Iris-versicolor", 50], ["Iris-virginica", 50]],
        "children": [
            {
                "predicate": {"operator": "<", "field": "000003", "value": 1.75},
                "node": {"output": "Iris-versicolor", "confidence": 0.89, "count": 54},
            },
            {
                "predicate": {"operator": ">=", "field": "000003", "value": 1.75},
                "node": {"output": "Iris-virginica", "confidence": 0.91, "count": 46},
            },
        ],
    },
}

with enable_logging(level="DEBUG", log_format="full"):
    model = LocalModel.from_description(DESCRIPTION)

    result = model.predict({"petal width": 2.0, "sepal length": 6.1}, by_name=True)
    print(f"\n{result.prediction} ({result.confidence:.2f})\n{model.explain(result)}\n")

    # Missing branching field: stops at the root, or combines both leaves
    model.predict({})
    model.predict({}, policy=PredictionPolicy(missing_strategy="proportional"))

    try:
        model.predict({"000003": "wide"})
    except InputTypeError as exc:
        print(exc.format_details())

# Logging automatically disabled here
