"""迭代线性求解：x = M⁻¹·r 或 x = [MᵀM]⁻¹·r。"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy.sparse.linalg import LinearOperator, bicgstab, cg, gmres

from .log import get_logger

logger = get_logger(__name__)


@dataclass
class SolveResult:
    """单次求解诊断。"""

    iterations: int
    residual: float
    converged: bool


class _IterationCounter:
    def __init__(self):
        self.count = 0

    def __call__(self, _arg) -> None:
        self.count += 1


def ldiv(out: np.ndarray, model, rhs: np.ndarray, preconditioner=None) -> SolveResult:
    """求解线性方程并把解写入 out。

    Args:
        out: 解向量（同时作为初始猜测）
        model: 提供 Ndim、mul_by_M、iterative_solver、tol、maxiter、restart
            以及 mul_M / mul_MtM 的模型
        rhs: 右端向量
        preconditioner: 可选预条件子（需已 setup）

    Returns:
        SolveResult(iterations, residual, converged)

    Note:
        - model.mul_by_M 为真时解 M·x = rhs，否则解 MᵀM·x = rhs（rhs 由调用方给出 Mᵀr）；
        - 不收敛不抛异常，只记录 WARNING 并由 converged=False 反映，接受与否由调用方决定。
    """
    n = int(model.Ndim)
    if out.shape != (n,) or rhs.shape != (n,):
        raise ValueError("out 与 rhs 长度必须为 N·L")

    if model.mul_by_M:
        def matvec(v: np.ndarray) -> np.ndarray:
            return model.mul_M(np.empty(n, dtype=float), np.ravel(v))
    else:
        def matvec(v: np.ndarray) -> np.ndarray:
            return model.mul_MtM(np.empty(n, dtype=float), np.ravel(v))

    A = LinearOperator((n, n), matvec=matvec, dtype=float)
    P = None if preconditioner is None else preconditioner.as_linear_operator(n)
    counter = _IterationCounter()
    x0 = np.array(out, dtype=float)

    solver = model.iterative_solver
    if solver == "cg":
        x, info = cg(A, rhs, x0=x0, rtol=model.tol, atol=0.0, maxiter=model.maxiter, M=P, callback=counter)
    elif solver == "gmres":
        x, info = gmres(
            A,
            rhs,
            x0=x0,
            rtol=model.tol,
            atol=0.0,
            restart=model.restart,
            maxiter=model.maxiter,
            M=P,
            callback=counter,
            callback_type="pr_norm",
        )
    elif solver == "bicgstab":
        x, info = bicgstab(A, rhs, x0=x0, rtol=model.tol, atol=0.0, maxiter=model.maxiter, M=P, callback=counter)
    else:
        raise ValueError(f"不支持的迭代求解器: {solver}")

    out[:] = x
    rhs_norm = float(np.linalg.norm(rhs))
    if rhs_norm == 0.0:
        residual = float(np.linalg.norm(x))
    else:
        residual = float(np.linalg.norm(rhs - matvec(x)) / rhs_norm)

    result = SolveResult(iterations=int(counter.count), residual=residual, converged=bool(info == 0))
    if not result.converged:
        logger.warning(
            "%s 未收敛: iters=%d, residual=%.3e, tol=%.1e",
            solver,
            result.iterations,
            result.residual,
            model.tol,
        )
    return result
