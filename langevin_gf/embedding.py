"""把长度 L·M 的虚时有序向量嵌入长度 2L 的缓冲区。

向量约定 index = site·L + τ；缓冲区形状 (2L, *site_shape)，
site_shape 通常为 (norb, L1, L2, L3)，也可以是扁平的 (M,)。
"""

from __future__ import annotations

from typing import Sequence

import numpy as np


def time_major_view(v: np.ndarray, L: int, site_shape: Sequence[int]) -> np.ndarray:
    """把扁平向量视为形状 (L, *site_shape) 的数组（不复制）。

    格点编号中第一个 site 轴变化最快，因此先按逆序 reshape 再整体转置。
    """
    site_shape = tuple(int(s) for s in site_shape)
    if v.ndim != 1 or v.shape[0] != L * int(np.prod(site_shape)):
        raise ValueError("向量长度与 L·M 不一致")
    return v.reshape(site_shape[::-1] + (L,)).transpose()


def _check_buffer(buf: np.ndarray, L: int) -> None:
    if buf.ndim < 2 or buf.shape[0] != 2 * L:
        raise ValueError("缓冲区第 0 轴长度必须为 2L")


def antiperiodic_copy(y: np.ndarray, x: np.ndarray, L: int) -> np.ndarray:
    """y[τ] = x[τ]，y[τ+L] = −x[τ]（反周期延拓，用于单粒子格林函数）。"""
    _check_buffer(y, L)
    X = time_major_view(x, L, y.shape[1:])
    y[:L] = X
    y[L:] = -X
    return y


def periodic_product(z: np.ndarray, x: np.ndarray, y: np.ndarray, L: int) -> np.ndarray:
    """z[τ] = z[τ+L] = x[τ]·y[τ]（周期延拓，用于密度型两点关联）。"""
    _check_buffer(z, L)
    X = time_major_view(x, L, z.shape[1:])
    Y = time_major_view(y, L, z.shape[1:])
    np.multiply(X, Y, out=z[:L])
    z[L:] = z[:L]
    return z
