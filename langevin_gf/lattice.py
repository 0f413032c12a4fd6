"""晶格形状与时空索引工具。

约定（全部 0 起始）：
- 格点编号：site = o + norb·(l1 + L1·(l2 + L2·l3))，轨道最快；
- 向量编号：index = site·L + τ，虚时最快。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class LatticeShape:
    """三方向周期晶格 + 每原胞轨道数。"""

    L1: int
    L2: int = 1
    L3: int = 1
    norb: int = 1

    def __post_init__(self) -> None:
        for name in ("L1", "L2", "L3", "norb"):
            value = getattr(self, name)
            if int(value) != value or value <= 0:
                raise ValueError(f"{name} 必须为正整数")

    @property
    def ncells(self) -> int:
        """原胞数 L1·L2·L3。"""
        return int(self.L1 * self.L2 * self.L3)

    @property
    def nsites(self) -> int:
        """格点（轨道）总数 N。"""
        return int(self.norb * self.ncells)

    @property
    def extents(self) -> Tuple[int, int, int]:
        return (int(self.L1), int(self.L2), int(self.L3))


def site_index(shape: LatticeShape, o: int, l1: int, l2: int = 0, l3: int = 0) -> int:
    """(轨道, 原胞坐标) -> 格点编号，原胞坐标按周期边界折回。"""
    if o < 0 or o >= shape.norb:
        raise ValueError("轨道编号越界")
    l1 = l1 % shape.L1
    l2 = l2 % shape.L2
    l3 = l3 % shape.L3
    return int(o + shape.norb * (l1 + shape.L1 * (l2 + shape.L2 * l3)))


def get_index(tau: int, site: int, L: int) -> int:
    """(τ, site) -> 长度 N·L 向量中的位置。"""
    return int(site * L + tau)


def get_site(index: int, L: int) -> int:
    return int(index // L)


def get_tau(index: int, L: int) -> int:
    return int(index % L)


def neighbor_table(
    shape: LatticeShape,
    dL: Sequence[int],
    o1: int,
    o2: int,
) -> np.ndarray:
    """列出位移 dL、轨道 o1 -> o2 的全部周期键。

    Returns:
        形状 (n_bonds, 2) 的整数数组，每行 (site_1, site_2)
    """
    d = list(dL) + [0] * (3 - len(dL))
    if len(d) != 3:
        raise ValueError("dL 最多三个分量")
    bonds: List[Tuple[int, int]] = []
    for l3 in range(shape.L3):
        for l2 in range(shape.L2):
            for l1 in range(shape.L1):
                i = site_index(shape, o1, l1, l2, l3)
                j = site_index(shape, o2, l1 + d[0], l2 + d[1], l3 + d[2])
                bonds.append((i, j))
    return np.asarray(bonds, dtype=int)
