"""迭代求解的预条件子：恒等与 Chebyshev（谱区间多项式）两种。

二者共享同一接口：
- setup(model): 每对求解前调用一次，绑定当前声子构型下的模型；
- apply(v): 返回近似逆作用于 v 的结果；
- as_linear_operator(n): 交给 scipy.sparse.linalg 的 M= 参数。
"""

from __future__ import annotations

from typing import Optional

import numpy as np
from numpy.polynomial import chebyshev
from scipy.sparse.linalg import LinearOperator


class IdentityPreconditioner:
    """不做预条件。"""

    def setup(self, model) -> None:
        return None

    def apply(self, v: np.ndarray) -> np.ndarray:
        return np.asarray(v, dtype=float)

    def as_linear_operator(self, n: int) -> Optional[LinearOperator]:
        # scipy 将 M=None 视为恒等
        return None


class ChebyshevPreconditioner:
    """用 Chebyshev 多项式 p(A) ≈ A⁻¹ 近似 A = MᵀM 的逆。

    Args:
        lambda_lo: MᵀM 谱下界估计（>0）
        lambda_hi: MᵀM 谱上界估计
        order: 多项式阶数

    Note:
        - 正规方程路径（model.mul_by_M 为 False）：apply(v) = p(MᵀM)·v；
        - 直接路径：apply(v) = p(MᵀM)·Mᵀ·v ≈ M⁻¹·v。
    """

    def __init__(self, lambda_lo: float, lambda_hi: float, order: int = 20):
        if not (0.0 < lambda_lo < lambda_hi):
            raise ValueError("要求 0 < lambda_lo < lambda_hi")
        if order < 1:
            raise ValueError("order 必须为正整数")
        self.lambda_lo = float(lambda_lo)
        self.lambda_hi = float(lambda_hi)
        self.order = int(order)
        self.coeffs: Optional[np.ndarray] = None
        self.model = None

    def setup(self, model) -> None:
        """绑定模型并生成 1/x 在 [λ_lo, λ_hi] 上的插值系数。"""
        lo, hi = self.lambda_lo, self.lambda_hi

        def inverse(y: np.ndarray) -> np.ndarray:
            x = 0.5 * (y * (hi - lo) + (hi + lo))
            return 1.0 / x

        self.coeffs = chebyshev.chebinterpolate(inverse, self.order)
        self.model = model

    def _scaled(self, u: np.ndarray) -> np.ndarray:
        """把 MᵀM 的谱区间线性映射到 [−1, 1] 后作用于 u。"""
        lo, hi = self.lambda_lo, self.lambda_hi
        Au = np.empty_like(u)
        self.model.mul_MtM(Au, u)
        return (2.0 * Au - (hi + lo) * u) / (hi - lo)

    def apply(self, v: np.ndarray) -> np.ndarray:
        if self.model is None or self.coeffs is None:
            raise RuntimeError("ChebyshevPreconditioner 尚未 setup")
        v = np.ascontiguousarray(np.ravel(v), dtype=float)
        if self.model.mul_by_M:
            w = np.empty_like(v)
            self.model.mul_Mt(w, v)
            v = w

        # Clenshaw 递推
        b1 = np.zeros_like(v)
        b2 = np.zeros_like(v)
        for c in self.coeffs[:0:-1]:
            b0 = c * v + 2.0 * self._scaled(b1) - b2
            b2 = b1
            b1 = b0
        return self.coeffs[0] * v + self._scaled(b1) - b2

    def as_linear_operator(self, n: int) -> LinearOperator:
        return LinearOperator((n, n), matvec=self.apply, dtype=float)


def make_preconditioner(kind: str = "identity", **params):
    """按名称构造预条件子（构造时一次性选定）。"""
    key = kind.lower()
    if key in ("identity", "none", "cg"):
        return IdentityPreconditioner()
    if key in ("chebyshev", "kpm"):
        return ChebyshevPreconditioner(
            lambda_lo=params["lambda_lo"],
            lambda_hi=params["lambda_hi"],
            order=params.get("order", 20),
        )
    raise ValueError(f"不支持的预条件子类型: {kind}")
