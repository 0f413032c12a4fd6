"""TOML 输入文件解析与对象构造。"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from .greens_estimator import GreensFunctionEstimator
from .lattice import LatticeShape
from .log import get_logger
from .models import SOLVER_TYPES, HolsteinModel
from .preconditioners import IdentityPreconditioner, make_preconditioner

logger = get_logger(__name__)


@dataclass
class SimulationParameters:
    """更新步数与分箱设置。

    约束：
    - nsteps ≥ meas_freq·num_bins
    - nsteps、burnin 均可被 meas_freq 整除
    - 测量次数可被 num_bins 整除
    """

    burnin: int
    nsteps: int
    meas_freq: int
    num_bins: int
    num_meas: int = field(init=False)
    bin_size: int = field(init=False)
    bin_steps: int = field(init=False)

    def __post_init__(self) -> None:
        if min(self.burnin, self.nsteps, self.meas_freq, self.num_bins) < 0:
            raise ValueError("burnin、nsteps、meas_freq、num_bins 不允许为负")
        freq = max(1, int(self.meas_freq))
        bins = max(1, int(self.num_bins))
        if self.nsteps < self.meas_freq * self.num_bins:
            raise ValueError("nsteps 必须 ≥ meas_freq·num_bins")
        if self.nsteps % freq != 0 or self.burnin % freq != 0:
            raise ValueError("nsteps 与 burnin 必须能被 meas_freq 整除")
        self.num_meas = self.nsteps // freq
        if self.num_meas % bins != 0:
            raise ValueError("测量次数必须能被 num_bins 整除")
        self.bin_size = self.num_meas // bins
        self.bin_steps = self.meas_freq * self.bin_size


@dataclass
class SolverConfig:
    type: str = "cg"
    tol: float = 1e-8
    maxiter: int = 10000
    restart: int = 20
    preconditioner: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.type = self.type.lower()
        if self.type not in SOLVER_TYPES:
            raise ValueError(f"不支持的迭代求解器: {self.type}")


@dataclass
class SimulationConfig:
    """一次模拟的全部输入。"""

    lattice: LatticeShape
    beta: float
    dtau: float
    hoppings: List[Tuple[float, int, int, List[int]]]
    mu: Any
    lam: Any
    omega: Any
    solver: SolverConfig
    simulation: SimulationParameters
    num_random_vectors: int = 1
    random_seed: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SimulationConfig":
        for key in ("lattice", "holstein", "solver", "simulation"):
            if key not in data:
                raise ValueError(f"输入文件缺少 [{key}] 段")

        lat = data["lattice"]
        extents = list(lat["L"]) + [1] * (3 - len(lat["L"]))
        lattice = LatticeShape(int(extents[0]), int(extents[1]), int(extents[2]), int(lat.get("norbits", 1)))

        hol = data["holstein"]
        hoppings = [
            (float(t["val"]), int(t["orbit"][0]), int(t["orbit"][1]), [int(d) for d in t["dL"]])
            for t in hol.get("t", [])
        ]

        sol = dict(data["solver"])
        solver = SolverConfig(
            type=str(sol.get("type", "cg")),
            tol=float(sol.get("tol", 1e-8)),
            maxiter=int(sol.get("maxiter", 10000)),
            restart=int(sol.get("restart", 20)),
            preconditioner=sol.get("preconditioner"),
        )

        sim = data["simulation"]
        params = SimulationParameters(
            burnin=int(sim["burnin"]),
            nsteps=int(sim["nsteps"]),
            meas_freq=int(sim["meas_freq"]),
            num_bins=int(sim["num_bins"]),
        )

        seed = sim.get("random_seed")
        if seed is None:
            seed = int(np.random.SeedSequence().entropy % (2**63))
            logger.info("未指定 random_seed，使用 %d", seed)

        return cls(
            lattice=lattice,
            beta=float(hol["beta"]),
            dtau=float(hol["dtau"]),
            hoppings=hoppings,
            mu=hol.get("mu", 0.0),
            lam=hol.get("lambda", 0.0),
            omega=hol.get("omega", 1.0),
            solver=solver,
            simulation=params,
            num_random_vectors=int(data.get("measurements", {}).get("num_random_vectors", 1)),
            random_seed=int(seed),
        )

    def build_model(self) -> HolsteinModel:
        return HolsteinModel(
            self.lattice,
            self.beta,
            self.dtau,
            hoppings=self.hoppings,
            mu=self.mu,
            lam=self.lam,
            omega=self.omega,
            iterative_solver=self.solver.type,
            tol=self.solver.tol,
            maxiter=self.solver.maxiter,
            restart=self.solver.restart,
        )

    def build_preconditioner(self):
        options = self.solver.preconditioner
        if not options:
            return IdentityPreconditioner()
        options = dict(options)
        return make_preconditioner(options.pop("kind", "chebyshev"), **options)

    def build_estimator(self, model: HolsteinModel, workers: int = 1) -> GreensFunctionEstimator:
        return GreensFunctionEstimator(
            model,
            rng=np.random.default_rng(self.random_seed),
            preconditioner=self.build_preconditioner(),
            num_random_vectors=self.num_random_vectors,
            workers=workers,
        )


def load_config(path: Union[str, Path]) -> SimulationConfig:
    """读取 TOML 输入文件。"""
    with open(path, "rb") as fh:
        data = tomllib.load(fh)
    return SimulationConfig.from_dict(data)
