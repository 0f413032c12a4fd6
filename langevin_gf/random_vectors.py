"""随机探测向量源。"""

from __future__ import annotations

import numpy as np


class RandomVectorSource:
    """从外部注入的 Generator 抽取标准正态向量。

    本类不持有也不设定种子；可复现性由调用方传入的 rng 保证。
    """

    def __init__(self, rng: np.random.Generator, length: int):
        if not isinstance(rng, np.random.Generator):
            raise ValueError("rng 必须为 numpy.random.Generator")
        if length <= 0:
            raise ValueError("length 必须为正整数")
        self.rng = rng
        self.length = int(length)

    def draw(self, out: np.ndarray) -> np.ndarray:
        """原地填充 out（float64，长度 N·L），返回 out。"""
        if out.shape != (self.length,) or out.dtype != np.float64:
            raise ValueError("out 必须为长度 N·L 的 float64 数组")
        self.rng.standard_normal(out=out)
        return out
