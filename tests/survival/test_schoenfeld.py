"""
Tests for cox_zph(): Schoenfeld residuals and the proportional hazards test.

Closed-form example (see test_coxph): β̂ = -log(2)/2, u = e^β̂ = 1/√2.

    t=1, E1 dies:  x̄ = 2u/(2u + 1) = 2 - √2   r = √2 - 1
    t=2, C1 dies:  x̄ = u/(u + 1)   = √2 - 1   r = 1 - √2

Rank transform g = (1, 2), centred (-1/2, 1/2), Σg̃² = 1/2, d = 2, V = 1/I(β̂):

    s_i = d V r_i,   T = (Σ g̃_i s_i)² / (d V Σg̃²) = 4 V (√2 - 1)²
"""

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal
from scipy import stats

from pytrialsurv.core.exceptions import InsufficientEventsError, ValidationError
from pytrialsurv.survival import (
    Arm,
    CoxConfig,
    SchoenfeldResidual,
    SchoenfeldSolution,
    SurvivalDataset,
    cox_zph,
    coxph,
)
from pytrialsurv.survival._schoenfeld import schoenfeld_test

C, E = Arm.CONTROL, Arm.EXPERIMENTAL

CLOSED_FORM = SurvivalDataset.right_censored([
    ("E1", 1.0, True, E, "s1"),
    ("E2", 3.0, False, E, "s1"),
    ("C1", 2.0, True, C, "s1"),
])

_U = 1 / np.sqrt(2.0)
INFO_HAT = 2 * _U / (2 * _U + 1) ** 2 + _U / (_U + 1) ** 2
RESIDUALS = np.array([np.sqrt(2.0) - 1, 1 - np.sqrt(2.0)])


def _zph(ds, transform="rank", ties="efron"):
    return cox_zph(coxph(ds, CoxConfig(ties=ties)), ds, transform=transform)


class TestSchoenfeldClosedForm:

    def test_residuals(self):
        zph = _zph(CLOSED_FORM)
        assert isinstance(zph, SchoenfeldSolution)
        assert zph.n_events == 2
        assert [r.subject_id for r in zph.residuals] == ["E1", "C1"]
        assert [r.time for r in zph.residuals] == [1.0, 2.0]
        assert_allclose(zph.residual_matrix()[:, 0], RESIDUALS, rtol=1e-5)

    def test_scaled_residuals(self):
        zph = _zph(CLOSED_FORM)
        expected = 2 * RESIDUALS / INFO_HAT - 0.5 * np.log(2.0)
        assert_allclose(zph.scaled_matrix()[:, 0], expected, rtol=1e-5)

    def test_statistic(self):
        zph = _zph(CLOSED_FORM)
        expected = 4 / INFO_HAT * (np.sqrt(2.0) - 1) ** 2
        assert_allclose(zph.chi_square, [expected], rtol=1e-5)
        assert_allclose(zph.p_values, stats.chi2.sf(zph.chi_square, 1))
        assert zph.global_df == 1

    def test_residual_records(self):
        res = _zph(CLOSED_FORM).residuals[0]
        assert isinstance(res, SchoenfeldResidual)
        assert res.stratum_key == "s1"
        assert res.transformed_time == 1.0
        assert len(res.residual) == len(res.scaled) == 1


class TestSchoenfeldProperties:

    @pytest.mark.parametrize("ties", ["efron", "breslow"])
    def test_residuals_sum_to_score(self, rng, trial_factory, ties):
        """At β̂ the residuals sum to the score, which is zero."""
        ds = trial_factory(rng, hr=0.7)
        zph = _zph(ds, ties=ties)
        assert zph.n_events == ds.n_events
        assert_allclose(zph.residual_matrix().sum(axis=0), 0.0, atol=1e-6)

    def test_event_time_order(self, trial_133):
        times = [r.time for r in _zph(trial_133).residuals]
        assert times == sorted(times)

    def test_global_is_sum(self, rng, trial_factory):
        base = trial_factory(rng)
        rows = [(r.subject_id, r.start_time, r.stop_time, r.status, r.group, r.stratum_key)
                for r in base.records]
        ds = SurvivalDataset.from_records(
            rows, covariates={"age": rng.normal(60, 10, base.n_observations)},
        )
        zph = _zph(ds)
        assert zph.covariate_names == ("group", "age")
        assert zph.global_df == 2
        assert_allclose(zph.global_chi_square, np.sum(zph.chi_square))
        assert_allclose(zph.global_p_value, stats.chi2.sf(zph.global_chi_square, 2))

    def test_idempotent(self, trial_133):
        cox = coxph(trial_133, CoxConfig())
        a = cox_zph(cox, trial_133)
        b = cox_zph(cox, trial_133)
        assert a.residuals == b.residuals
        assert_array_equal(a.chi_square, b.chi_square)
        assert a.global_p_value == b.global_p_value

    @pytest.mark.parametrize("transform", ["rank", "identity", "log", "km"])
    def test_transforms(self, trial_133, transform):
        zph = _zph(trial_133, transform=transform)
        assert zph.transform == transform
        assert 0.0 <= zph.global_p_value <= 1.0
        g = [r.transformed_time for r in zph.residuals]
        assert np.all(np.diff(g) >= 0)

    def test_left_truncated(self, rng, trial_factory):
        ds = trial_factory(rng, onset_delay=(0.1, 1.0))
        zph = _zph(ds)
        assert zph.n_events == ds.n_events
        assert np.isfinite(zph.global_chi_square)


class TestSchoenfeldPower:
    """Detects a planted violation and stays quiet under proportional hazards."""

    def test_crossing_hazards_detected(self, rng, trial_factory):
        rejected = 0
        for _ in range(20):
            ds = trial_factory(rng, n_control=150, n_experimental=150,
                               hr=3.0, hr_late=1 / 3, change_time=0.5)
            rejected += _zph(ds).p_values[0] < 0.05
        assert rejected >= 16

    def test_proportional_hazards_not_rejected(self, rng, trial_factory):
        accepted = 0
        for _ in range(20):
            ds = trial_factory(rng, n_control=150, n_experimental=150, hr=1.5)
            accepted += _zph(ds).p_values[0] > 0.05
        assert accepted >= 16


class TestSchoenfeldErrors:

    def test_no_time_variation(self):
        """Both events at the same time: the rank transform is constant."""
        ds = SurvivalDataset.right_censored([
            ("E1", 1.0, True, E, "s"),
            ("C1", 1.0, True, C, "s"),
            ("E2", 2.0, False, E, "s"),
            ("C2", 2.0, False, C, "s"),
        ])
        with pytest.raises(InsufficientEventsError):
            _zph(ds)

    def test_single_event(self):
        X = np.array([[1.0], [0.0]])
        with pytest.raises(InsufficientEventsError) as exc_info:
            schoenfeld_test(
                X, np.zeros(2), np.array([1.0, 2.0]), np.array([1.0, 0.0]),
                np.zeros(2, dtype=np.intp), ("s",), ("a", "b"),
                np.zeros(1), np.eye(1), ("group",),
                ties="efron", transform="rank",
            )
        assert exc_info.value.n_events == 1
        assert exc_info.value.required == 2

    def test_fit_from_other_dataset(self, trial_133):
        cox = coxph(CLOSED_FORM, CoxConfig())
        with pytest.raises(ValidationError, match="does not match"):
            cox_zph(cox, trial_133)

    def test_not_a_cox_solution(self):
        with pytest.raises(ValidationError, match="CoxSolution"):
            cox_zph("fit", CLOSED_FORM)

    def test_bad_transform(self):
        cox = coxph(CLOSED_FORM, CoxConfig())
        with pytest.raises(ValueError, match="transform"):
            cox_zph(cox, CLOSED_FORM, transform="sqrt")


class TestSchoenfeldOutput:

    def test_to_frame(self):
        frame = _zph(CLOSED_FORM).to_frame()
        assert frame["covariate"].tolist() == ["group", "GLOBAL"]
        assert list(frame.columns) == ["covariate", "chi_square", "df", "p_value"]

    def test_summary(self):
        text = _zph(CLOSED_FORM).summary()
        assert "Call: cox_zph(transform='rank')" in text
        assert "GLOBAL" in text

    def test_repr(self):
        assert repr(_zph(CLOSED_FORM)).startswith("SchoenfeldSolution(events=2")
