# split_data.py
# Stratified train / validation / test split on the binary target.

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
import pandas as pd

from pipeline_errors import EmptyPartitionError, SchemaError, require_columns

TRAIN_FRACTION = 0.4
VAL_FRACTION_OF_REMAINDER = 0.5
RANDOM_SEED = 42


@dataclass(frozen=True)
class Partition:
    train: np.ndarray
    val: np.ndarray
    test: np.ndarray

    def sizes(self) -> Tuple[int, int, int]:
        return len(self.train), len(self.val), len(self.test)


def _check_fraction(name: str, value: float) -> None:
    if not 0.0 < float(value) < 1.0:
        raise ValueError(f"{name} must be strictly between 0 and 1, got {value}")


def stratified_split(df: pd.DataFrame, target: str,
                     train_fraction: float = TRAIN_FRACTION,
                     val_fraction_of_remainder: float = VAL_FRACTION_OF_REMAINDER,
                     seed: int = RANDOM_SEED) -> Partition:
    """
    Split row labels of df into train / validation / test, class by class.

    Each class is shuffled with one seeded generator, round(train_fraction * n) rows go
    to training and round(val_fraction_of_remainder * rest) of the remainder to
    validation; the rest is test. Same seed and input give the same partition.
    """
    _check_fraction("train_fraction", train_fraction)
    _check_fraction("val_fraction_of_remainder", val_fraction_of_remainder)
    require_columns(df, [target], where="partitioner")
    if len(df) == 0:
        raise EmptyPartitionError("Cannot split an empty table")
    if not df.index.is_unique:
        raise SchemaError("Row labels must be unique to build disjoint partitions")

    y = pd.to_numeric(df[target], errors="coerce")
    if y.isna().any():
        raise SchemaError(f"Target '{target}' has {int(y.isna().sum()):,} missing or non-numeric value(s)")
    classes = sorted(y.unique().tolist())
    if not set(classes).issubset({0, 1}):
        raise SchemaError(f"Target '{target}' must be 0/1, found values {classes}")
    for cls in (0, 1):
        if cls not in classes:
            raise EmptyPartitionError(f"Target class {cls} has no rows; stratified split is impossible")

    rng = np.random.default_rng(seed)
    labels = df.index.to_numpy()
    train_parts, val_parts, test_parts = [], [], []
    for cls in (0, 1):
        members = labels[(y == cls).to_numpy()]
        members = members[rng.permutation(len(members))]
        n_train = int(round(train_fraction * len(members)))
        rest = members[n_train:]
        n_val = int(round(val_fraction_of_remainder * len(rest)))
        train_parts.append(members[:n_train])
        val_parts.append(rest[:n_val])
        test_parts.append(rest[n_val:])

    # keep the original row order inside each subset
    def _ordered(parts):
        return labels[np.isin(labels, np.concatenate(parts))]

    return Partition(train=_ordered(train_parts), val=_ordered(val_parts), test=_ordered(test_parts))


def partition_frames(df: pd.DataFrame, partition: Partition):
    return (df.loc[partition.train].copy(),
            df.loc[partition.val].copy(),
            df.loc[partition.test].copy())


def split_summary(frames, target: str, names=("train", "val", "test")) -> pd.DataFrame:
    total = sum(len(f) for f in frames)
    rows = []
    for name, f in zip(names, frames):
        n = len(f)
        rows.append({
            "subset": name,
            "rows": n,
            "share": n / total if total else np.nan,
            "on_time_rate": float(f[target].mean()) if n else np.nan,
        })
    return pd.DataFrame(rows)


def print_split_summary(summary: pd.DataFrame) -> None:
    print("\nData split:")
    labels = {"train": "Training set", "val": "Validation set", "test": "Test set"}
    for _, r in summary.iterrows():
        print(f"  {labels.get(r['subset'], r['subset']):<15}: {int(r['rows']):,} orders "
              f"({r['share']*100:.0f}%), on-time rate {r['on_time_rate']*100:.1f}%")
