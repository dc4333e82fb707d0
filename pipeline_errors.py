# pipeline_errors.py
# Errors and warnings raised by the on-time delivery pipeline.
# Structural problems (unreadable file, missing columns) are exceptions and stop the run;
# numerical trouble in the solver is a warning and the run continues.

from __future__ import annotations


class DataLoadError(IOError):
    """The input file exists but cannot be parsed as a table."""


class SchemaError(ValueError):
    """An expected column is absent or has the wrong type."""


class DivisionByZeroError(ZeroDivisionError):
    """A ratio feature would divide by zero."""


class EmptyPartitionError(ValueError):
    """A target class has no rows, so the stratified split is impossible."""


class NotFittedError(RuntimeError):
    """transform() was called before fit()."""


class ConvergenceWarning(UserWarning):
    """IRLS stopped at the iteration cap before the deviance settled."""


class RankDeficiencyWarning(UserWarning):
    """The design matrix has linearly dependent columns."""


def require_columns(df, columns, where: str = "") -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        suffix = f" ({where})" if where else ""
        raise SchemaError(f"Missing required column(s){suffix}: {', '.join(missing)}")
