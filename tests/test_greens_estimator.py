import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from langevin_gf.correlators import CORRELATOR_NAMES
from langevin_gf.embedding import antiperiodic_copy, periodic_product
from langevin_gf.greens_estimator import (
    GreensFunctionEstimator,
    measure_g_delta_0,
    measure_g_delta_0_g_0_delta,
    measure_g_delta_0_g_delta_0,
    measure_g_delta_delta_g_00,
)
from langevin_gf.lattice import LatticeShape, get_index
from langevin_gf.measurements import accumulate_correlators
from langevin_gf.models import HolsteinModel
from langevin_gf.preconditioners import ChebyshevPreconditioner

MEASURES = {
    "g_delta_0": measure_g_delta_0,
    "g_delta_0_g_delta_0": measure_g_delta_0_g_delta_0,
    "g_delta_delta_g_00": measure_g_delta_delta_g_00,
    "g_delta_0_g_0_delta": measure_g_delta_0_g_0_delta,
}


class IdentityModel:
    """M = I 的最小模型。"""

    def __init__(self, lattice: LatticeShape, Ltau: int):
        self.lattice = lattice
        self.Ltau = Ltau
        self.Nsites = lattice.nsites
        self.Ndim = self.Nsites * Ltau
        self.mul_by_M = False
        self.iterative_solver = "cg"
        self.tol = 1e-12
        self.maxiter = 10
        self.restart = 5

    def mul_M(self, out, v):
        out[:] = v
        return out

    def mul_Mt(self, out, v):
        out[:] = v
        return out

    def mul_MtM(self, out, v):
        out[:] = v
        return out


def _two_orbital_model(lattice=None, **kwargs) -> HolsteinModel:
    params = dict(
        beta=1.0,
        dtau=0.25,
        hoppings=[(1.0, 0, 1, [0]), (0.5, 1, 0, [1])],
        mu=0.2,
        lam=0.4,
        tol=1e-12,
        maxiter=1000,
    )
    params.update(kwargs)
    if lattice is None:
        lattice = LatticeShape(2, 1, 1, norb=2)
    model = HolsteinModel(lattice, **params)
    model.x[:] = 0.3 * np.random.default_rng(11).standard_normal(model.Ndim)
    model.update_model()
    return model


def direct_correlation(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    T, n, L1, L2, L3 = a.shape
    out = np.zeros((T, n, n, L1, L2, L3), dtype=complex)
    for dt in range(T):
        for d1 in range(L1):
            for d2 in range(L2):
                for d3 in range(L3):
                    shifted = np.roll(b, shift=(-dt, -d1, -d2, -d3), axis=(0, 2, 3, 4))
                    out[dt, :, :, d1, d2, d3] = np.einsum("tsabc,tuabc->su", a, shifted)
    return out / (T * L1 * L2 * L3)


def test_raw_estimator_for_identity_model_is_self_correlation():
    lattice = LatticeShape(3, 2, 1)
    model = IdentityModel(lattice, Ltau=4)
    est = GreensFunctionEstimator(model, np.random.default_rng(0))
    est.update(model)

    L = model.Ltau
    for i, j, tau2, tau1 in [(0, 0, 0, 0), (2, 5, 3, 1), (4, 1, 0, 3)]:
        n = get_index(tau2, i, L)
        m = get_index(tau1, j, L)
        assert np.isclose(est.estimate(i, j, tau2, tau1, 1), est.r1[n] * est.r1[m], rtol=1e-10)
        assert np.isclose(est.estimate(i, j, tau2, tau1, 2), est.r2[n] * est.r2[m], rtol=1e-10)
    assert np.isclose(est.estimate(1, 1, 2, 2, 1), est.r1[get_index(2, 1, L)] ** 2, rtol=1e-10)


def test_raw_estimator_rejects_invalid_probe_selector():
    model = IdentityModel(LatticeShape(2), Ltau=2)
    est = GreensFunctionEstimator(model, np.random.default_rng(0))
    est.update(model)
    for sigma in (0, 3):
        with pytest.raises(ValueError):
            est.estimate(0, 0, 0, 0, sigma)
    with pytest.raises(ValueError):
        est.estimate(0, 2, 0, 0, 1)


def test_update_matches_direct_summation_for_all_correlators():
    model = _two_orbital_model()
    est = GreensFunctionEstimator(model, np.random.default_rng(1))
    results = est.update(model)
    assert len(results) == 2
    assert all(r.converged for r in results)

    expected = _expected_store(est, model.Ltau)
    for name in CORRELATOR_NAMES:
        assert np.allclose(est.store[name], expected[name], atol=1e-12)


def test_solutions_match_dense_inverse():
    model = _two_orbital_model()
    est = GreensFunctionEstimator(model, np.random.default_rng(2))
    est.update(model)
    G = np.linalg.inv(model.dense_M())
    assert np.allclose(est.M_inv_r1, G @ est.r1, atol=1e-8)
    assert np.allclose(est.M_inv_r2, G @ est.r2, atol=1e-8)


def test_accessors_wrap_cyclically():
    model = _two_orbital_model()
    est = GreensFunctionEstimator(model, np.random.default_rng(3))
    est.update(model)

    L = model.Ltau
    L1 = model.lattice.L1
    for name, measure in MEASURES.items():
        for tau in (-3, 0, 2, L, 2 * L - 1):
            base = measure(est, 1, 0, 0, 0, 1, tau)
            assert base == est.store[name][tau % (2 * L), 1, 0, 1, 0, 0]
            assert measure(est, 1, 0, 0, 0, 1, tau + 2 * L) == base
            assert measure(est, 1, 0, 0, 0, 1, tau - 2 * L) == base
            assert measure(est, 1 + L1, 0, 0, 0, 1, tau) == base
            assert measure(est, 1 - L1, 0, 0, 0, 1, tau) == base


def test_single_particle_correlator_is_antiperiodic_in_time():
    model = _two_orbital_model()
    est = GreensFunctionEstimator(model, np.random.default_rng(4))
    est.update(model)
    L = model.Ltau
    for tau in range(1, L):
        assert np.isclose(measure_g_delta_0(est, 0, 0, 0, 1, 0, -tau), -measure_g_delta_0(est, 0, 0, 0, 1, 0, L - tau))


def test_accessor_rejects_bad_orbitals_and_non_integers():
    model = _two_orbital_model()
    est = GreensFunctionEstimator(model, np.random.default_rng(5))
    est.update(model)
    with pytest.raises(ValueError):
        measure_g_delta_0(est, 0, 0, 0, 2, 0, 0)
    with pytest.raises(ValueError):
        measure_g_delta_0(est, 0, 0, 0, 0, -1, 0)
    with pytest.raises(ValueError):
        measure_g_delta_0(est, 0, 0, 0, 0, 0, 1.5)


def test_update_replaces_previous_contents():
    model = _two_orbital_model()
    est = GreensFunctionEstimator(model, np.random.default_rng(6))
    est.update(model)
    est.update(model)

    # 先消耗掉第一次 update 的两个随机向量，再单独做一次 update
    rng = np.random.default_rng(6)
    rng.standard_normal(model.Ndim)
    rng.standard_normal(model.Ndim)
    fresh = GreensFunctionEstimator(model, rng)
    fresh.update(model)

    for name in CORRELATOR_NAMES:
        assert np.allclose(est.store[name], fresh.store[name], atol=1e-10)


def test_multiple_random_vector_pairs_per_update():
    model = _two_orbital_model()
    est = GreensFunctionEstimator(model, np.random.default_rng(7), num_random_vectors=3)
    results = est.update(model)
    assert len(results) == 6


def test_preconditioner_does_not_change_estimate():
    model = _two_orbital_model()
    M = model.dense_M()
    evals = np.linalg.eigvalsh(M.T @ M)
    pre = ChebyshevPreconditioner(0.9 * evals.min(), 1.1 * evals.max(), order=16)

    plain = GreensFunctionEstimator(model, np.random.default_rng(8))
    precond = GreensFunctionEstimator(model, np.random.default_rng(8), preconditioner=pre)
    plain.update(model)
    precond.update(model)
    for name in CORRELATOR_NAMES:
        assert np.allclose(plain.store[name], precond.store[name], atol=1e-8)


def test_dimension_mismatch_is_rejected():
    model = _two_orbital_model()
    est = GreensFunctionEstimator(model, np.random.default_rng(9))
    other = HolsteinModel(LatticeShape(3, 1, 1, norb=2), beta=1.0, dtau=0.25)
    with pytest.raises(ValueError):
        est.update(other)

    broken = IdentityModel(LatticeShape(2), Ltau=3)
    broken.Ndim += 1
    with pytest.raises(ValueError):
        GreensFunctionEstimator(broken, np.random.default_rng(0))

    est.close()
    with pytest.raises(RuntimeError):
        est.update(model)


def test_close_releases_buffers():
    model = _two_orbital_model()
    with GreensFunctionEstimator(model, np.random.default_rng(9)) as est:
        est.update(model)
    assert est.convolver.closed
    assert est._a is None and est._b is None and est._z is None
    with pytest.raises(RuntimeError):
        est.update(model)


def test_equal_time_estimate_converges_to_free_fermion_value():
    lattice = LatticeShape(4)
    model = HolsteinModel(
        lattice,
        beta=2.0,
        dtau=0.25,
        hoppings=[(1.0, 0, 0, [1])],
        mu=0.3,
        tol=1e-12,
        maxiter=1000,
    )
    G_exact = model.free_equal_time_greens()
    onsite = float(np.trace(G_exact)) / lattice.nsites
    neighbor = float(np.mean([G_exact[(i + 1) % 4, i] for i in range(4)]))

    est = GreensFunctionEstimator(model, np.random.default_rng(10))
    short = accumulate_correlators(est, model, n_updates=25)
    long = accumulate_correlators(est, model, n_updates=400)
    assert long.n_unconverged == 0

    mean = long.mean["g_delta_0"]
    err = long.stderr["g_delta_0"]
    assert abs(mean[0, 0, 0, 0, 0, 0].real - onsite) < 5.0 * err[0, 0, 0, 0, 0, 0] + 1e-3
    assert abs(mean[0, 0, 0, 1, 0, 0].real - neighbor) < 5.0 * err[0, 0, 0, 1, 0, 0] + 1e-3
    assert err[0, 0, 0, 0, 0, 0] < short.stderr["g_delta_0"][0, 0, 0, 0, 0, 0]


def _expected_store(est, L):
    shape = est.convolver.field_shape
    a = np.zeros(shape, dtype=complex)
    b = np.zeros(shape, dtype=complex)
    z = np.zeros(shape, dtype=complex)
    r1, r2, x1, x2 = est.r1, est.r2, est.M_inv_r1, est.M_inv_r2

    expected = {}
    antiperiodic_copy(a, r1, L)
    a += antiperiodic_copy(z, r2, L)
    antiperiodic_copy(b, x1, L)
    b += antiperiodic_copy(z, x2, L)
    expected["g_delta_0"] = direct_correlation(a, b) / 2.0
    pairs = {
        "g_delta_0_g_delta_0": ((r1, r2), (x1, x2)),
        "g_delta_delta_g_00": ((x1, r1), (x2, r2)),
        "g_delta_0_g_0_delta": ((x2, r1), (x1, r2)),
    }
    for name, (pa, pb) in pairs.items():
        periodic_product(a, pa[0], pa[1], L)
        periodic_product(b, pb[0], pb[1], L)
        expected[name] = direct_correlation(a, b)
    return expected


def test_fft_worker_count_does_not_change_three_dimensional_estimate():
    lattice = LatticeShape(2, 3, 2, norb=2)
    hoppings = [(1.0, 0, 1, [0]), (0.5, 1, 0, [1]), (0.3, 0, 0, [0, 1]), (0.2, 1, 1, [0, 0, 1])]
    model = _two_orbital_model(lattice=lattice, hoppings=hoppings)

    serial = GreensFunctionEstimator(model, np.random.default_rng(21), workers=1)
    threaded = GreensFunctionEstimator(model, np.random.default_rng(21), workers=3)
    serial.update(model)
    threaded.update(model)

    assert np.array_equal(serial.r1, threaded.r1)
    for name in CORRELATOR_NAMES:
        assert np.allclose(serial.store[name], threaded.store[name], atol=1e-12)

    expected = _expected_store(serial, model.Ltau)
    for name in CORRELATOR_NAMES:
        assert np.allclose(serial.store[name], expected[name], atol=1e-12)
    serial.close()
    threaded.close()
