"""
Synthetic two-arm stratified trials for the survival tests.
"""

import numpy as np
import pytest

from pytrialsurv.survival import Arm, SurvivalDataset


def simulate_trial(
    rng,
    n_control=66,
    n_experimental=67,
    n_strata=4,
    hr=1.0,
    hr_late=None,
    change_time=0.5,
    censor=(1.0, 3.0),
    onset_delay=None,
    shuffle_arms=False,
):
    """Simulate a stratified two-arm trial.

    Control hazard in stratum s is 0.8 + 0.2 s. The experimental arm has
    hazard ratio ``hr`` before ``change_time`` and ``hr_late`` after it
    (``hr`` throughout when ``hr_late`` is None). Censoring is uniform on
    ``censor``. With ``onset_delay=(a, b)`` every subject enters the risk
    set after a Uniform(a, b) delay, i.e. the data are left-truncated.
    """
    n = n_control + n_experimental
    is_exp = np.r_[np.zeros(n_control, bool), np.ones(n_experimental, bool)]
    # Round-robin within each arm so every stratum holds both arms
    strata = np.r_[np.arange(n_control) % n_strata, np.arange(n_experimental) % n_strata]
    if shuffle_arms:
        is_exp = rng.permutation(is_exp)

    base = 0.8 + 0.2 * strata
    early = base * np.where(is_exp, hr, 1.0)
    late = base * np.where(is_exp, hr if hr_late is None else hr_late, 1.0)

    # Piecewise-exponential inversion
    e = rng.exponential(1.0, n)
    t_event = np.where(
        e < early * change_time,
        e / early,
        change_time + (e - early * change_time) / late,
    )
    t_censor = rng.uniform(censor[0], censor[1], n)
    time = np.minimum(t_event, t_censor)
    status = t_event <= t_censor

    if onset_delay is None:
        start = np.zeros(n)
    else:
        start = rng.uniform(onset_delay[0], onset_delay[1], n)

    rows = [
        (f"S{i:04d}", start[i], start[i] + time[i], bool(status[i]),
         Arm.EXPERIMENTAL if is_exp[i] else Arm.CONTROL, (f"site{strata[i]}",))
        for i in range(n)
    ]
    return SurvivalDataset.from_records(rows)


@pytest.fixture(scope="session")
def trial_factory():
    return simulate_trial


@pytest.fixture
def trial_133(rng):
    """133 subjects, 67 experimental / 66 control, over 4 strata."""
    return simulate_trial(rng, n_control=66, n_experimental=67, n_strata=4)
