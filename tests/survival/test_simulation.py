"""
Simulation checks of the null behaviour of the stratified procedures.

Under no treatment effect the Cox hazard ratio should centre on 1 and the
Wald and log-rank p-values should be close to Uniform(0, 1).
"""

import numpy as np
import pytest
from scipy import stats

from pytrialsurv.survival import CoxConfig, coxph, survdiff

N_SIMS = 200


@pytest.fixture(scope="module")
def null_fits(trial_factory):
    rng = np.random.default_rng(2024)
    log_hr, wald_p, logrank_p = [], [], []
    for _ in range(N_SIMS):
        ds = trial_factory(rng, hr=1.0)
        cox = coxph(ds, CoxConfig())
        log_hr.append(cox.coefficients[0])
        wald_p.append(cox.p_values[0])
        logrank_p.append(survdiff(ds).p_value)
    return np.array(log_hr), np.array(wald_p), np.array(logrank_p)


class TestNullSimulation:

    def test_hazard_ratio_centred_on_one(self, null_fits):
        log_hr, _, _ = null_fits
        assert abs(np.mean(log_hr)) < 0.06
        assert abs(np.mean(np.exp(log_hr)) - 1.0) < 0.08

    def test_wald_p_values_uniform(self, null_fits):
        _, wald_p, _ = null_fits
        assert stats.kstest(wald_p, "uniform").pvalue > 0.01

    def test_logrank_p_values_uniform(self, null_fits):
        _, _, logrank_p = null_fits
        assert stats.kstest(logrank_p, "uniform").pvalue > 0.01

    def test_logrank_size(self, null_fits):
        _, _, logrank_p = null_fits
        assert np.mean(logrank_p < 0.05) < 0.1
