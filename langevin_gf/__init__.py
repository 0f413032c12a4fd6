"""电声耦合晶格模型（Holstein）的 Langevin/QMC 格林函数随机估计。

模块结构：
- lattice: 晶格形状与时空索引
- models: Holstein 模型费米子矩阵 M / Mᵀ
- phonons: 声子场初始化
- preconditioners: 恒等 / Chebyshev 预条件子
- linear_solvers: 迭代求解 M⁻¹r（scipy.sparse.linalg）
- random_vectors: 随机探测向量
- embedding: 虚时反周期 / 周期嵌入
- convolution: 时间 + 空间 FFT 卷积
- correlators: 关联函数存储与取值
- greens_estimator: 估计器主流程
- measurements: 多次采样平均
- config: TOML 输入文件
"""

from .lattice import LatticeShape, get_index, get_site, get_tau, neighbor_table, site_index
from .models import HolsteinModel, hopping_matrix
from .phonons import init_phonons_half_filled, sample_qho
from .preconditioners import ChebyshevPreconditioner, IdentityPreconditioner, make_preconditioner
from .linear_solvers import SolveResult, ldiv
from .random_vectors import RandomVectorSource
from .embedding import antiperiodic_copy, periodic_product, time_major_view
from .convolution import FFTPlan, SpectralConvolver
from .correlators import CORRELATOR_NAMES, CorrelatorStore
from .greens_estimator import (
    GreensFunctionEstimator,
    measure_g_delta_0,
    measure_g_delta_0_g_0_delta,
    measure_g_delta_0_g_delta_0,
    measure_g_delta_delta_g_00,
)
from .measurements import MeasurementSummary, accumulate_correlators
from .config import SimulationConfig, SimulationParameters, SolverConfig, load_config
