"""声子场初始化。"""

from __future__ import annotations

import numpy as np

from .lattice import get_index
from .models import HolsteinModel


def sample_qho(omega: float, beta: float, rng: np.random.Generator) -> float:
    """按频率 ω、逆温度 β 的量子谐振子位置分布抽样。

    σ = sqrt(tanh(βω/2) / (2ω))
    """
    if omega <= 0.0 or beta <= 0.0:
        raise ValueError("omega 与 beta 必须为正数")
    sigma = np.sqrt(np.tanh(beta * omega / 2.0) / (2.0 * omega))
    return float(sigma * rng.standard_normal())


def init_phonons_half_filled(model: HolsteinModel, rng: np.random.Generator) -> None:
    """半满初始化：每个格点的虚时路径取常数。

    路径整体平移 x0 = −2λ/ω²·n，n ∈ {0, 1} 随机，对应格点上电子数 0 或 2，
    再叠加一次谐振子抽样。
    """
    L = model.Ltau
    for site in range(model.Nsites):
        omega = float(model.omega[site])
        lam = float(model.lam[site])
        x0 = -2.0 * lam / omega**2 * float(rng.integers(0, 2))
        xr = x0 + sample_qho(omega, model.beta, rng)
        start = get_index(0, site, L)
        model.x[start : start + L] = xr
    model.update_model()
