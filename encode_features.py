# encode_features.py
# Indicator encoding for the categorical fields and min-max scaling for the numeric ones.
# Both are fitted on the training subset only and then applied unchanged to validation/test.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from logging_setup import get_logger
from pipeline_errors import NotFittedError, require_columns


def _level_key(value) -> str:
    # 2 and 2.0 are the same level
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        value = int(value)
    return str(value)


@dataclass
class CategoricalEncoder:
    """
    One indicator column per observed (column, value) pair.

    With drop_reference=True the first level of every column (lexicographic) is the
    reference category and gets no indicator, so k levels give k-1 columns and the
    design matrix stays full rank next to the intercept.
    """
    columns: Sequence[str]
    drop_reference: bool = True
    categories_: Optional[Dict[str, List[str]]] = field(default=None, init=False)

    def fit(self, df: pd.DataFrame) -> "CategoricalEncoder":
        require_columns(df, self.columns, where="categorical encoder")
        self.categories_ = {}
        for c in sorted(self.columns):
            self.categories_[c] = sorted(df[c].dropna().map(_level_key).unique().tolist())
        return self

    def _levels(self, col: str) -> List[str]:
        levels = self.categories_[col]
        return levels[1:] if self.drop_reference else list(levels)

    @property
    def feature_names_(self) -> List[str]:
        if self.categories_ is None:
            raise NotFittedError("CategoricalEncoder is not fitted yet")
        return [f"{c}_{v}" for c in self.categories_ for v in self._levels(c)]

    def reference_levels(self) -> Dict[str, Optional[str]]:
        if self.categories_ is None:
            raise NotFittedError("CategoricalEncoder is not fitted yet")
        return {c: (v[0] if v and self.drop_reference else None) for c, v in self.categories_.items()}

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.categories_ is None:
            raise NotFittedError("CategoricalEncoder is not fitted yet")
        require_columns(df, self.categories_.keys(), where="categorical encoder")
        out = df.drop(columns=list(self.categories_.keys()))
        dummies = {}
        for c in self.categories_:
            observed = df[c].notna()
            values = df[c].map(_level_key)
            for v in self._levels(c):
                dummies[f"{c}_{v}"] = ((values == v) & observed).astype(float)
        if dummies:
            out = pd.concat([out, pd.DataFrame(dummies, index=df.index)], axis=1)
        return out

    def fit_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        return self.fit(df).transform(df)


@dataclass
class MinMaxNormalizer:
    """Rescale every non-excluded numeric column to (x - min) / (max - min) using fitted bounds."""
    exclude: Sequence[str] = ()
    bounds_: Optional[Dict[str, Tuple[float, float]]] = field(default=None, init=False)

    def fit(self, df: pd.DataFrame) -> "MinMaxNormalizer":
        logger = get_logger()
        cols = [c for c in df.select_dtypes(include=[np.number]).columns if c not in self.exclude]
        self.bounds_ = {}
        for c in cols:
            lo, hi = float(df[c].min()), float(df[c].max())
            self.bounds_[c] = (lo, hi)
            if lo == hi:
                logger.warning(f"Column '{c}' is constant ({lo:g}) in the reference set; it will be scaled to 0.")
        return self

    @property
    def constant_columns(self) -> List[str]:
        if self.bounds_ is None:
            raise NotFittedError("MinMaxNormalizer is not fitted yet")
        return [c for c, (lo, hi) in self.bounds_.items() if lo == hi]

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        if self.bounds_ is None:
            raise NotFittedError("MinMaxNormalizer is not fitted yet")
        require_columns(df, self.bounds_.keys(), where="normalizer")
        out = df.copy()
        for c, (lo, hi) in self.bounds_.items():
            x = out[c].astype(float)
            if hi == lo:
                out[c] = x.where(x.isna(), 0.0)
            else:
                out[c] = (x - lo) / (hi - lo)
        return out

    def fit_transform(self, df: pd.DataFrame) -> pd.DataFrame:
        return self.fit(df).transform(df)


def print_scaling_check(df: pd.DataFrame, cols=("Scheduled_Lead_Time_Days", "Shipping_Cost_USD")) -> None:
    print("\nStandardization check (training set):")
    for c in cols:
        if c in df.columns:
            print(f"  {c}: range [{df[c].min():.2f}, {df[c].max():.2f}]")
