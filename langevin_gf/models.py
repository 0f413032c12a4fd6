"""Holstein 模型的费米子矩阵 M（反周期虚时边界）。

约定（无量纲，t₀ = 1）：
    (M v)(τ) = v(τ) − B(τ)·v(τ−1),   τ ≥ 1
    (M v)(0) = v(0) + B(0)·v(L−1)
    B(τ) = exp(−Δτ·V(τ))·exp(−Δτ·K),  V_i(τ) = λ_i·x_i(τ) − μ_i

向量按 index = site·L + τ 排列（见 lattice.get_index），
因此 reshape(N, L) 后第 0 轴为格点、第 1 轴为虚时。
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
from scipy.linalg import expm

from .lattice import LatticeShape, neighbor_table

SOLVER_TYPES = ("cg", "gmres", "bicgstab")

Hopping = Tuple[float, int, int, Sequence[int]]


def _per_site(value, nsites: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.ndim == 0:
        return np.full(nsites, float(arr), dtype=float)
    if arr.shape != (nsites,):
        raise ValueError(f"{name} 必须为标量或长度 N 的数组")
    return arr.copy()


def hopping_matrix(lattice: LatticeShape, hoppings: Iterable[Hopping]) -> np.ndarray:
    """由跳跃列表 (t, o1, o2, dL) 构造实对称矩阵 K（每条键贡献 −t）。"""
    N = lattice.nsites
    K = np.zeros((N, N), dtype=float)
    for t, o1, o2, dL in hoppings:
        bonds = neighbor_table(lattice, dL, o1, o2)
        np.add.at(K, (bonds[:, 0], bonds[:, 1]), -float(t))
        np.add.at(K, (bonds[:, 1], bonds[:, 0]), -float(t))
    return K


class HolsteinModel:
    """Holstein 模型：费米子矩阵作用、转置作用与求解器设置。

    Args:
        lattice: 晶格形状
        beta: 逆温度 β
        dtau: 虚时步长 Δτ，要求 β/Δτ 为整数
        hoppings: 跳跃列表 [(t, o1, o2, dL), ...]
        mu: 化学势（标量或逐格点）
        lam: 电声耦合 λ（标量或逐格点）
        omega: 声子频率 ω（标量或逐格点）
        iterative_solver: "cg"（解正规方程 MᵀM）或 "gmres"/"bicgstab"（直接解 M）
        tol: 迭代求解相对残差容限
        maxiter: 最大迭代步数
        restart: GMRES 重启长度
    """

    def __init__(
        self,
        lattice: LatticeShape,
        beta: float,
        dtau: float,
        hoppings: Optional[Iterable[Hopping]] = None,
        mu=0.0,
        lam=0.0,
        omega=1.0,
        iterative_solver: str = "cg",
        tol: float = 1e-8,
        maxiter: int = 10000,
        restart: int = 20,
    ):
        if beta <= 0.0 or dtau <= 0.0:
            raise ValueError("beta 与 dtau 必须为正数")
        ltau = int(round(beta / dtau))
        if ltau <= 0 or not np.isclose(ltau * dtau, beta, rtol=1e-10, atol=0.0):
            raise ValueError("beta/dtau 必须为正整数")
        solver = iterative_solver.lower()
        if solver not in SOLVER_TYPES:
            raise ValueError(f"不支持的迭代求解器: {iterative_solver}")
        if tol <= 0.0 or maxiter <= 0 or restart <= 0:
            raise ValueError("tol、maxiter、restart 必须为正")

        self.lattice = lattice
        self.beta = float(beta)
        self.dtau = float(dtau)
        self.Ltau = ltau
        self.Nsites = lattice.nsites
        self.Ndim = self.Nsites * self.Ltau

        self.mu = _per_site(mu, self.Nsites, "mu")
        self.lam = _per_site(lam, self.Nsites, "lam")
        self.omega = _per_site(omega, self.Nsites, "omega")
        if np.any(self.omega <= 0.0):
            raise ValueError("omega 必须为正数")

        self.iterative_solver = solver
        self.mul_by_M = solver != "cg"
        self.tol = float(tol)
        self.maxiter = int(maxiter)
        self.restart = int(restart)

        self.K = hopping_matrix(lattice, hoppings or [])
        self.expK = expm(-self.dtau * self.K)
        self.x = np.zeros(self.Ndim, dtype=float)
        self.expV = np.ones((self.Nsites, self.Ltau), dtype=float)
        self.update_model()

    def __len__(self) -> int:
        return self.Ndim

    def update_model(self) -> None:
        """声子场 x 改变后刷新 exp(−Δτ·V)。"""
        if self.x.shape != (self.Ndim,):
            raise ValueError("声子场 x 长度必须为 N·L")
        x = self.x.reshape(self.Nsites, self.Ltau)
        V = self.lam[:, None] * x - self.mu[:, None]
        self.expV = np.exp(-self.dtau * V)

    def _check(self, out: np.ndarray, v: np.ndarray) -> None:
        if v.shape != (self.Ndim,) or out.shape != (self.Ndim,):
            raise ValueError("向量长度必须为 N·L")

    def mul_M(self, out: np.ndarray, v: np.ndarray) -> np.ndarray:
        """out = M·v。"""
        self._check(out, v)
        X = v.reshape(self.Nsites, self.Ltau)
        S = np.empty_like(X)
        S[:, 1:] = X[:, :-1]
        S[:, 0] = -X[:, -1]
        out[:] = (X - self.expV * (self.expK @ S)).ravel()
        return out

    def mul_Mt(self, out: np.ndarray, v: np.ndarray) -> np.ndarray:
        """out = Mᵀ·v。"""
        self._check(out, v)
        Y = v.reshape(self.Nsites, self.Ltau)
        W = self.expK.T @ (self.expV * Y)
        R = Y.copy()
        R[:, :-1] -= W[:, 1:]
        R[:, -1] += W[:, 0]
        out[:] = R.ravel()
        return out

    def mul_MtM(self, out: np.ndarray, v: np.ndarray) -> np.ndarray:
        """out = MᵀM·v。"""
        tmp = np.empty(self.Ndim, dtype=float)
        self.mul_M(tmp, v)
        return self.mul_Mt(out, tmp)

    def dense_M(self) -> np.ndarray:
        """显式构造 M（仅用于小体系校验）。"""
        M = np.zeros((self.Ndim, self.Ndim), dtype=float)
        e = np.zeros(self.Ndim, dtype=float)
        col = np.empty(self.Ndim, dtype=float)
        for k in range(self.Ndim):
            e[k] = 1.0
            M[:, k] = self.mul_M(col, e)
            e[k] = 0.0
        return M

    def free_equal_time_greens(self) -> np.ndarray:
        """无相互作用（λ·x = 0）时的等时格林函数 (I + exp(−β(K − μ)))⁻¹。

        此时 B 与 τ 无关且 exp(−ΔτK) 与均匀 μ 对易，Trotter 分解无误差。
        """
        H = self.K - np.diag(self.mu)
        eps, U = np.linalg.eigh(H)
        occ = 1.0 / (1.0 + np.exp(-self.beta * eps))
        return (U * occ) @ U.T
