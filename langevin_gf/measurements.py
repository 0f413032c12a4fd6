"""调用方一侧的多次采样平均（估计器本身每次 update 只给一个样本）。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import numpy as np

from .correlators import CORRELATOR_NAMES
from .greens_estimator import GreensFunctionEstimator


@dataclass
class MeasurementSummary:
    """多次 update 的统计结果。"""

    n_updates: int
    mean: Dict[str, np.ndarray]
    stderr: Dict[str, np.ndarray]
    max_residual: float
    n_unconverged: int


def accumulate_correlators(
    estimator: GreensFunctionEstimator,
    model,
    n_updates: int,
) -> MeasurementSummary:
    """重复调用 update，返回四个关联数组的样本均值与标准误差。

    复数样本的方差按 E|x|² − |E x|² 计算；n_updates == 1 时标准误差记为 0。
    """
    if n_updates <= 0:
        raise ValueError("n_updates 必须为正整数")

    sums = {name: np.zeros(estimator.store.shape, dtype=complex) for name in CORRELATOR_NAMES}
    sq_sums = {name: np.zeros(estimator.store.shape, dtype=float) for name in CORRELATOR_NAMES}
    max_residual = 0.0
    n_unconverged = 0

    for _ in range(int(n_updates)):
        results = estimator.update(model)
        for res in results:
            max_residual = max(max_residual, float(res.residual))
            n_unconverged += int(not res.converged)
        for name in CORRELATOR_NAMES:
            sample = estimator.store[name]
            sums[name] += sample
            sq_sums[name] += np.abs(sample) ** 2

    n = float(n_updates)
    mean: Dict[str, np.ndarray] = {}
    stderr: Dict[str, np.ndarray] = {}
    for name in CORRELATOR_NAMES:
        mu = sums[name] / n
        mean[name] = mu
        if n_updates > 1:
            var = (sq_sums[name] / n - np.abs(mu) ** 2) * n / (n - 1.0)
            stderr[name] = np.sqrt(np.maximum(var, 0.0) / n)
        else:
            stderr[name] = np.zeros(estimator.store.shape, dtype=float)

    return MeasurementSummary(
        n_updates=int(n_updates),
        mean=mean,
        stderr=stderr,
        max_residual=max_residual,
        n_unconverged=n_unconverged,
    )
