"""四种关联函数的存储与按物理位移取值。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple

import numpy as np

from .lattice import LatticeShape

CORRELATOR_NAMES = ("g_delta_0", "g_delta_0_g_delta_0", "g_delta_delta_g_00", "g_delta_0_g_0_delta")


def _as_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ValueError(f"{name} 必须为整数")
    return int(value)


@dataclass
class CorrelatorStore:
    """形状均为 [2L, norb, norb, L1, L2, L3] 的四个复数数组。

    - g_delta_0           : G[Δ,0] = ⟨T c_{i+r}(τ) c†_i(0)⟩
    - g_delta_0_g_delta_0 : G[Δ,0]·G[Δ,0]
    - g_delta_delta_g_00  : G[Δ,Δ]·G[0,0]
    - g_delta_0_g_0_delta : G[Δ,0]·G[0,Δ]

    每次 update 都整体覆盖，不在这里做跨调用平均。
    """

    L: int
    lattice: LatticeShape
    arrays: Dict[str, np.ndarray] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.L <= 0:
            raise ValueError("L 必须为正整数")
        shape = self.shape
        self.arrays = {name: np.zeros(shape, dtype=complex) for name in CORRELATOR_NAMES}

    @property
    def shape(self) -> Tuple[int, ...]:
        lat = self.lattice
        return (2 * self.L, lat.norb, lat.norb, lat.L1, lat.L2, lat.L3)

    def __getitem__(self, name: str) -> np.ndarray:
        if name not in self.arrays:
            raise ValueError(f"未知关联函数: {name}")
        return self.arrays[name]

    def zero(self) -> None:
        for arr in self.arrays.values():
            arr.fill(0.0)

    def slot(self, l1: int, l2: int, l3: int, o1: int, o2: int, tau: int) -> Tuple[int, ...]:
        """物理位移 -> 数组下标。

        零位移对应第 0 个位置；τ 以 2L 为周期、空间位移以 Lk 为周期折回。
        轨道对按 [o2, o1] 存放（G 从轨道 o2 传播到 o1）。
        """
        lat = self.lattice
        l1 = _as_int(l1, "l1")
        l2 = _as_int(l2, "l2")
        l3 = _as_int(l3, "l3")
        o1 = _as_int(o1, "o1")
        o2 = _as_int(o2, "o2")
        tau = _as_int(tau, "tau")
        if not (0 <= o1 < lat.norb and 0 <= o2 < lat.norb):
            raise ValueError("轨道编号越界")
        return (tau % (2 * self.L), o2, o1, l1 % lat.L1, l2 % lat.L2, l3 % lat.L3)

    def value(self, name: str, l1: int, l2: int, l3: int, o1: int, o2: int, tau: int) -> complex:
        return complex(self[name][self.slot(l1, l2, l3, o1, o2, tau)])
