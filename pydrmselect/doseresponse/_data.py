"""Input table handling: validation and per-target partitioning.

The input is a long-format table with one row per observation.  Reading it
from a spreadsheet or CSV is left to the caller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Hashable, Iterator

import numpy as np
import pandas as pd
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

TARGET_COL = "TARGET"
DOSE_COL = "MEAS1_VALUE"
RESPONSE_COL = "MEAS2_VALUE"
UNIT_COL = "MEAS2_UNIT"

REQUIRED_COLUMNS = (TARGET_COL, DOSE_COL, RESPONSE_COL, UNIT_COL)


@dataclass(frozen=True)
class Observation:
    """One dose/response measurement for a target."""

    target: Hashable
    dose: float
    response: float
    response_unit: str


@dataclass(frozen=True)
class TargetData:
    """All observations of one target, as read-only arrays."""

    target: Hashable
    dose: NDArray[np.floating]
    response: NDArray[np.floating]
    response_unit: str

    @property
    def n_obs(self) -> int:
        return len(self.dose)


def validate_frame(frame: pd.DataFrame) -> pd.DataFrame:
    """Check columns and coerce types of an input table.

    Rows with a missing dose or response are dropped (and logged).  Doses
    are not range-checked here; a negative dose fails only its own target
    when the curves are fitted.

    Returns
    -------
    pd.DataFrame
        A cleaned copy with float dose/response columns.

    Raises
    ------
    ValueError
        Not a DataFrame, or missing columns.
    """
    if not isinstance(frame, pd.DataFrame):
        raise ValueError(f"expected a pandas DataFrame, got {type(frame).__name__}")
    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"input table is missing columns: {missing}")

    out = frame.loc[:, list(REQUIRED_COLUMNS)].copy()
    out[DOSE_COL] = pd.to_numeric(out[DOSE_COL], errors="coerce")
    out[RESPONSE_COL] = pd.to_numeric(out[RESPONSE_COL], errors="coerce")

    bad = out[TARGET_COL].isna() | out[DOSE_COL].isna() | out[RESPONSE_COL].isna()
    if bad.any():
        logger.warning("dropping %d row(s) with missing target, dose or response", int(bad.sum()))
        out = out.loc[~bad]

    out[DOSE_COL] = out[DOSE_COL].astype(np.float64)
    out[RESPONSE_COL] = out[RESPONSE_COL].astype(np.float64)
    out[UNIT_COL] = out[UNIT_COL].fillna("").astype(str)
    return out.reset_index(drop=True)


def observations_from_frame(frame: pd.DataFrame) -> list[Observation]:
    """Convert an input table to a list of :class:`Observation`."""
    clean = validate_frame(frame)
    return [
        Observation(target=t, dose=float(x), response=float(y), response_unit=u)
        for t, x, y, u in zip(
            clean[TARGET_COL], clean[DOSE_COL], clean[RESPONSE_COL], clean[UNIT_COL]
        )
    ]


def _read_only(values: pd.Series) -> NDArray[np.floating]:
    arr = values.to_numpy(dtype=np.float64, copy=True)
    arr.flags.writeable = False
    return arr


def partition(frame: pd.DataFrame) -> Iterator[TargetData]:
    """Split an input table into per-target samples, in order of first
    appearance of each target.

    A target whose rows were all dropped for missing values is still
    yielded, with empty arrays, so that it can be reported as rejected.
    """
    clean = validate_frame(frame)
    groups = dict(iter(clean.groupby(TARGET_COL, sort=False)))
    for target in frame[TARGET_COL].dropna().unique():
        group = groups.get(target)
        if group is None:
            logger.warning("target %r has no complete observations", target)
            group = clean.iloc[:0]
        units = group[UNIT_COL].unique()
        yield TargetData(
            target=target,
            dose=_read_only(group[DOSE_COL]),
            response=_read_only(group[RESPONSE_COL]),
            response_unit=str(units[0]) if len(units) else "",
        )
