"""Parallel model selection across many targets.

Each target's fit/score/select pipeline is independent of every other
target's, so targets are fanned out to a ``concurrent.futures`` worker pool.
Workers only read their own target's data; results are gathered in input
order and aggregated by a single writer afterwards.

**serial**: loops over targets calling :func:`select_model` for each.

**process** / **thread**: ``ProcessPoolExecutor`` / ``ThreadPoolExecutor``
with ``executor.map``, which preserves input order.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
from functools import partial
from typing import Sequence

import pandas as pd

from pydrmselect.doseresponse._data import partition
from pydrmselect.doseresponse._fit import MAX_NFEV
from pydrmselect.doseresponse._models import DEFAULT_MODELS, CurveModel
from pydrmselect.doseresponse._potency import ED_LEVEL
from pydrmselect.doseresponse._select import (
    ADEQUACY_ALPHA,
    SelectionReport,
    _check_select_args,
    _collect,
    _resolve_models,
    _select_target,
)

logger = logging.getLogger(__name__)

VALID_BACKENDS = ("serial", "process", "thread", "auto")

# Below this many targets a process pool costs more than it saves
_AUTO_MIN_TARGETS = 16


def _resolve_backend(backend: str, n_targets: int) -> str:
    if backend != "auto":
        return backend
    cpus = os.cpu_count() or 1
    if cpus > 1 and n_targets >= _AUTO_MIN_TARGETS:
        return "process"
    return "serial"


def select_models_batch(
    frame: pd.DataFrame,
    *,
    backend: str = "auto",
    max_workers: int | None = None,
    models: Sequence[CurveModel | str] = DEFAULT_MODELS,
    alpha: float = ADEQUACY_ALPHA,
    ed_level: float = ED_LEVEL,
    conf_level: float = 0.95,
    max_nfev: int = MAX_NFEV,
    zero_dose_offset: float | None = None,
) -> SelectionReport:
    """Select the best curve model for every target, in parallel.

    Parameters
    ----------
    frame : pd.DataFrame
        Input table, see :func:`select_models`.
    backend : str
        ``'serial'``, ``'process'``, ``'thread'`` or ``'auto'``.  ``'auto'``
        uses a process pool for larger inputs on multi-core machines and
        runs serially otherwise.
    max_workers : int or None
        Pool size (``None`` lets ``concurrent.futures`` decide).
    models, alpha, ed_level, conf_level, max_nfev, zero_dose_offset
        See :func:`select_model`.

    Returns
    -------
    SelectionReport
        Identical to :func:`select_models` on the same input, whatever the
        backend.
    """
    if backend not in VALID_BACKENDS:
        raise ValueError(f"backend must be one of {VALID_BACKENDS}, got {backend!r}")
    if max_workers is not None and max_workers < 1:
        raise ValueError(f"max_workers must be positive, got {max_workers}")
    _check_select_args(alpha, zero_dose_offset, ed_level, conf_level)

    select_kwargs = dict(
        models=_resolve_models(models),
        alpha=alpha,
        ed_level=ed_level,
        conf_level=conf_level,
        max_nfev=max_nfev,
        zero_dose_offset=zero_dose_offset,
    )
    targets = list(partition(frame))
    backend = _resolve_backend(backend, len(targets))
    logger.debug("selecting models for %d targets (backend=%s)", len(targets), backend)

    work = partial(_select_target, select_kwargs=select_kwargs)
    if backend == "serial" or len(targets) <= 1:
        selections = [work(t) for t in targets]
    else:
        pool_cls = ProcessPoolExecutor if backend == "process" else ThreadPoolExecutor
        with pool_cls(max_workers=max_workers) as ex:
            selections = list(ex.map(work, targets))

    return _collect(selections, ed_level)
