"""随机向量 + FFT 卷积的格林函数估计器。

单次 update 的流程：
1) 清零四个关联数组与两个解向量；
2) 抽取随机向量 r₁、r₂；
3) 求解 M⁻¹r₁、M⁻¹r₂（直接解 M，或解正规方程 MᵀM·x = Mᵀr）；
4) 构造嵌入缓冲区并对四种关联函数分别做谱卷积。

估计器只给出“一次采样”，跨调用的平均、分箱由调用方负责。
"""

from __future__ import annotations

from typing import List

import numpy as np

from .convolution import SpectralConvolver
from .correlators import CorrelatorStore
from .embedding import antiperiodic_copy, periodic_product
from .lattice import LatticeShape, get_index
from .linear_solvers import SolveResult, ldiv
from .log import get_logger
from .preconditioners import IdentityPreconditioner
from .random_vectors import RandomVectorSource

logger = get_logger(__name__)

SQRT2 = np.sqrt(2.0)


def _model_dims(model):
    lat = model.lattice
    return (int(model.Ndim), int(model.Nsites), int(model.Ltau), lat.L1, lat.L2, lat.L3, lat.norb)


class GreensFunctionEstimator:
    """对给定模型估计 G[Δ,0] 及三种两粒子乘积。

    Args:
        model: 提供 Ndim、Nsites、Ltau、lattice、mul_by_M、mul_Mt 以及求解器设置
        rng: 外部注入的随机数生成器
        preconditioner: 预条件子（默认恒等），构造时选定
        num_random_vectors: 每次 update 内平均的独立探测向量对数
        workers: FFT 线程数
    """

    def __init__(
        self,
        model,
        rng: np.random.Generator,
        preconditioner=None,
        num_random_vectors: int = 1,
        workers: int = 1,
    ):
        NL, N, L, L1, L2, L3, norb = _model_dims(model)
        lattice = LatticeShape(L1, L2, L3, norb)
        if N != lattice.nsites:
            raise ValueError("Nsites 与 lattice 尺寸不一致")
        if NL != N * L:
            raise ValueError("Ndim 必须等于 Nsites·Ltau")
        if num_random_vectors < 1:
            raise ValueError("num_random_vectors 必须为正整数")

        self.NL = NL
        self.N = N
        self.L = L
        self.lattice = lattice
        self.num_random_vectors = int(num_random_vectors)
        self._dims = (NL, N, L, L1, L2, L3, norb)

        self.source = RandomVectorSource(rng, NL)
        self.preconditioner = preconditioner if preconditioner is not None else IdentityPreconditioner()

        self.r1 = np.zeros(NL, dtype=float)
        self.r2 = np.zeros(NL, dtype=float)
        self.M_inv_r1 = np.zeros(NL, dtype=float)
        self.M_inv_r2 = np.zeros(NL, dtype=float)
        self._Mt_r = np.zeros(NL, dtype=float)

        self.store = CorrelatorStore(L, lattice)
        self.convolver = SpectralConvolver(L, norb, lattice.extents, workers=workers)
        field_shape = self.convolver.field_shape
        self._a = np.zeros(field_shape, dtype=complex)
        self._b = np.zeros(field_shape, dtype=complex)
        self._z = np.zeros(field_shape, dtype=complex)

    def close(self) -> None:
        """释放卷积器与嵌入缓冲区；之后不可再 update。"""
        self.convolver.close()
        self._a = self._b = self._z = None

    def __enter__(self) -> "GreensFunctionEstimator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def g_delta_0(self) -> np.ndarray:
        return self.store["g_delta_0"]

    @property
    def g_delta_0_g_delta_0(self) -> np.ndarray:
        return self.store["g_delta_0_g_delta_0"]

    @property
    def g_delta_delta_g_00(self) -> np.ndarray:
        return self.store["g_delta_delta_g_00"]

    @property
    def g_delta_0_g_0_delta(self) -> np.ndarray:
        return self.store["g_delta_0_g_0_delta"]

    def _solve(self, model) -> List[SolveResult]:
        """M⁻¹r₁、M⁻¹r₂。"""
        self.preconditioner.setup(model)
        results = []
        for r, x in ((self.r1, self.M_inv_r1), (self.r2, self.M_inv_r2)):
            if model.mul_by_M:
                results.append(ldiv(x, model, r, self.preconditioner))
            else:
                # MᵀM·x = Mᵀr  ==>  x = M⁻¹r
                model.mul_Mt(self._Mt_r, r)
                results.append(ldiv(x, model, self._Mt_r, self.preconditioner))
        return results

    def _sample(self, model) -> List[SolveResult]:
        """抽一对探测向量并把四种卷积累加进 store。"""
        L = self.L
        a, b, z = self._a, self._b, self._z
        r1, r2 = self.r1, self.r2
        x1, x2 = self.M_inv_r1, self.M_inv_r2
        store = self.store
        conv = self.convolver

        x1.fill(0.0)
        x2.fill(0.0)
        self.source.draw(r1)
        self.source.draw(r2)
        results = self._solve(model)

        # G[Δ,0]
        antiperiodic_copy(a, r1, L)
        antiperiodic_copy(z, r2, L)
        a += z
        a /= SQRT2
        antiperiodic_copy(b, x1, L)
        antiperiodic_copy(z, x2, L)
        b += z
        b /= SQRT2
        conv.convolve(store["g_delta_0"], a, b)

        # G[Δ,0]·G[Δ,0]
        periodic_product(a, r1, r2, L)
        periodic_product(b, x1, x2, L)
        conv.convolve(store["g_delta_0_g_delta_0"], a, b)

        # G[Δ,Δ]·G[0,0]
        periodic_product(a, x1, r1, L)
        periodic_product(b, x2, r2, L)
        conv.convolve(store["g_delta_delta_g_00"], a, b)

        # G[Δ,0]·G[0,Δ]
        periodic_product(a, x2, r1, L)
        periodic_product(b, x1, r2, L)
        conv.convolve(store["g_delta_0_g_0_delta"], a, b)
        return results

    def update(self, model) -> List[SolveResult]:
        """按当前声子构型刷新四个关联数组（覆盖旧值）。

        Returns:
            本次调用中每次线性求解的诊断信息
        """
        if _model_dims(model) != self._dims:
            raise ValueError("模型尺寸与构造估计器时不一致")
        if self.convolver.closed:
            raise RuntimeError("估计器已关闭")

        self.store.zero()
        results: List[SolveResult] = []
        for _ in range(self.num_random_vectors):
            results.extend(self._sample(model))
        if self.num_random_vectors > 1:
            for arr in self.store.arrays.values():
                arr /= self.num_random_vectors

        logger.debug(
            "update: %d 次求解, 最大迭代 %d, 最大残差 %.3e",
            len(results),
            max(r.iterations for r in results),
            max(r.residual for r in results),
        )
        return results

    def estimate(self, i: int, j: int, tau2: int, tau1: int, sigma: int) -> float:
        """未卷积的单样本估计 ⟨T c_i(τ₂) c†_j(τ₁)⟩ ≈ (M⁻¹r_σ)[i,τ₂]·r_σ[j,τ₁]。"""
        if sigma not in (1, 2):
            raise ValueError("sigma 只能为 1 或 2")
        if not (0 <= i < self.N and 0 <= j < self.N):
            raise ValueError("格点编号越界")
        if not (0 <= tau1 < self.L and 0 <= tau2 < self.L):
            raise ValueError("虚时编号越界")
        m = get_index(tau1, j, self.L)
        n = get_index(tau2, i, self.L)
        if sigma == 1:
            return float(self.M_inv_r1[n] * self.r1[m])
        return float(self.M_inv_r2[n] * self.r2[m])


def measure_g_delta_0(
    estimator: GreensFunctionEstimator, l1: int, l2: int, l3: int, o1: int, o2: int, tau: int
) -> complex:
    """G[Δ,0] = ⟨T c_{i+r}(τ) c†_i(0)⟩，Δ = (τ, r)，r 以晶格矢量为单位。"""
    return estimator.store.value("g_delta_0", l1, l2, l3, o1, o2, tau)


def measure_g_delta_0_g_delta_0(
    estimator: GreensFunctionEstimator, l1: int, l2: int, l3: int, o1: int, o2: int, tau: int
) -> complex:
    """G[Δ,0]·G[Δ,0]。"""
    return estimator.store.value("g_delta_0_g_delta_0", l1, l2, l3, o1, o2, tau)


def measure_g_delta_delta_g_00(
    estimator: GreensFunctionEstimator, l1: int, l2: int, l3: int, o1: int, o2: int, tau: int
) -> complex:
    """G[Δ,Δ]·G[0,0]。"""
    return estimator.store.value("g_delta_delta_g_00", l1, l2, l3, o1, o2, tau)


def measure_g_delta_0_g_0_delta(
    estimator: GreensFunctionEstimator, l1: int, l2: int, l3: int, o1: int, o2: int, tau: int
) -> complex:
    """G[Δ,0]·G[0,Δ]。"""
    return estimator.store.value("g_delta_0_g_0_delta", l1, l2, l3, o1, o2, tau)
