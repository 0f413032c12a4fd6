"""时间 + 三个空间方向上的谱卷积（互关联）。

对形状 [2L, n, L1, L2, L3] 的两个场 a、b，计算

    out[Δτ, s2, s1, Δ1, Δ2, Δ3] += Σ_x a[x, s2]·b[x+Δ, s1] / V,   V = 2L·N/n

做法：对 a、b 在 (τ, l1, l2, l3) 四个轴上做 FFT，
a 的频率/动量取反后与 b 逐元素相乘，再逆变换回实空间。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import scipy.fft


@dataclass(frozen=True)
class FFTPlan:
    """固定形状、固定轴的 FFT 方案。"""

    shape: Tuple[int, ...]
    axes: Tuple[int, ...]
    inverse: bool = False
    workers: int = 1

    def execute(self, x: np.ndarray, out: np.ndarray) -> np.ndarray:
        if x.shape != self.shape or out.shape != self.shape:
            raise ValueError(f"数组形状 {x.shape} 与 FFT 方案 {self.shape} 不一致")
        transform = scipy.fft.ifftn if self.inverse else scipy.fft.fftn
        out[...] = transform(x, axes=self.axes, workers=self.workers)
        return out


def negate_frequencies(a: np.ndarray, axes: Tuple[int, ...]) -> np.ndarray:
    """在给定轴上把下标 n 映射到 (−n) mod P，0 保持不变。"""
    return np.roll(np.flip(a, axis=axes), shift=1, axis=axes)


class SpectralConvolver:
    """持有 FFT 方案与中间数组的卷积器。

    Args:
        L: 虚时层数（时间轴长度为 2L）
        norb: 每原胞轨道数
        extents: (L1, L2, L3)
        workers: scipy.fft 线程数；外层已有并行（多条马尔可夫链）时保持 1

    中间数组在四次卷积之间复用，每次均先写后读。
    """

    def __init__(self, L: int, norb: int, extents: Tuple[int, int, int], workers: int = 1):
        if L <= 0 or norb <= 0 or any(e <= 0 for e in extents):
            raise ValueError("L、norb、extents 必须为正整数")
        if workers < 1:
            raise ValueError("workers 必须 >= 1")
        L1, L2, L3 = (int(e) for e in extents)
        self.L = int(L)
        self.norb = int(norb)
        self.extents = (L1, L2, L3)
        self.field_shape = (2 * self.L, self.norb, L1, L2, L3)
        self.pair_shape = (2 * self.L, self.norb, self.norb, L1, L2, L3)
        self.V = 2.0 * self.L * L1 * L2 * L3

        self.pfft: Optional[FFTPlan] = FFTPlan(self.field_shape, (0, 2, 3, 4), False, int(workers))
        self.pifft: Optional[FFTPlan] = FFTPlan(self.pair_shape, (0, 3, 4, 5), True, int(workers))
        self._a_k = np.zeros(self.field_shape, dtype=complex)
        self._b_k = np.zeros(self.field_shape, dtype=complex)
        self._ab_k = np.zeros(self.pair_shape, dtype=complex)
        self._ab = np.zeros(self.pair_shape, dtype=complex)

    @property
    def closed(self) -> bool:
        return self.pfft is None

    def close(self) -> None:
        """释放方案与中间数组；之后不可再使用。"""
        self.pfft = None
        self.pifft = None
        self._a_k = self._b_k = self._ab_k = self._ab = None

    def __enter__(self) -> "SpectralConvolver":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def convolve(self, out: np.ndarray, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        """out += a ⋆ b（见模块说明），返回 out。"""
        if self.closed:
            raise RuntimeError("SpectralConvolver 已关闭")
        if out.shape != self.pair_shape:
            raise ValueError(f"out 形状必须为 {self.pair_shape}")

        self.pfft.execute(a, self._a_k)
        self.pfft.execute(b, self._b_k)

        a_neg = negate_frequencies(self._a_k, axes=(0, 2, 3, 4))
        # ab[ω, s2, s1, k] = a[−ω, s2, −k]·b[ω, s1, k] / V
        np.multiply(a_neg[:, :, None], self._b_k[:, None, :], out=self._ab_k)
        self._ab_k /= self.V

        self.pifft.execute(self._ab_k, self._ab)
        out += self._ab
        return out
