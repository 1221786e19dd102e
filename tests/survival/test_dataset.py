"""
Tests for SurvivalDataset construction, validation and views.
"""

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_array_equal

from pytrialsurv.core.exceptions import (
    EmptyStratumError,
    InvalidRecordError,
    ValidationError,
)
from pytrialsurv.survival import Arm, RejectedRecord, SurvivalDataset, SurvivalRecord

C, E = Arm.CONTROL, Arm.EXPERIMENTAL


# ── Fixtures ─────────────────────────────────────────────────────────

# Two strata, both arms in each, one delayed entry
ROWS = [
    ("p1", 0.0, 5.0, True, C, "north"),
    ("p2", 0.0, 8.0, False, E, "north"),
    ("p3", 2.0, 6.0, True, E, "south"),
    ("p4", 0.0, 3.0, 1, C, "south"),
    ("p5", 0.0, 9.0, 0, E, "north"),
]


class TestConstruction:

    def test_arrays(self):
        ds = SurvivalDataset.from_records(ROWS)
        assert ds.n_observations == 5
        assert ds.n_events == 3
        assert_array_equal(ds.start, [0, 0, 2, 0, 0])
        assert_array_equal(ds.stop, [5, 8, 6, 3, 9])
        assert_array_equal(ds.event, [1, 0, 1, 1, 0])
        assert_array_equal(ds.arm, [0, 1, 1, 0, 1])

    def test_stratum_codes_in_order_of_appearance(self):
        ds = SurvivalDataset.from_records(ROWS)
        assert ds.stratum_keys == ("north", "south")
        assert_array_equal(ds.strata, [0, 0, 1, 1, 0])
        assert ds.n_strata == 2

    def test_records_are_typed(self):
        ds = SurvivalDataset.from_records(ROWS)
        rec = ds.records[3]
        assert isinstance(rec, SurvivalRecord)
        assert rec.status is True
        assert rec.start_time == 0.0
        assert rec.group is C

    def test_arrays_are_read_only(self):
        ds = SurvivalDataset.from_records(ROWS)
        with pytest.raises(ValueError):
            ds.stop[0] = 100.0

    def test_left_truncation_flag(self):
        assert SurvivalDataset.from_records(ROWS).is_left_truncated
        no_delay = [r[:1] + (0.0,) + r[2:] for r in ROWS]
        assert not SurvivalDataset.from_records(no_delay).is_left_truncated

    def test_tuple_stratum_keys(self):
        rows = [
            ("a", 0.0, 1.0, True, C, ("site1", "<65")),
            ("b", 0.0, 2.0, True, E, ("site1", "<65")),
        ]
        ds = SurvivalDataset.from_records(rows)
        assert ds.stratum_keys == (("site1", "<65"),)

    def test_empty_rows(self):
        with pytest.raises(ValidationError, match="at least one"):
            SurvivalDataset.from_records([])

    def test_metadata(self):
        meta = SurvivalDataset.from_records(ROWS).metadata
        assert meta["n"] == 5
        assert meta["n_events"] == 3
        assert meta["n_censored"] == 2
        assert meta["n_control"] == 2
        assert meta["n_experimental"] == 3
        assert meta["left_truncated"] is True

    def test_repr(self):
        assert "n=5" in repr(SurvivalDataset.from_records(ROWS))


class TestRightCensored:

    def test_inserts_zero_start(self):
        rows = [(r[0], r[2], r[3], r[4], r[5]) for r in ROWS]
        ds = SurvivalDataset.right_censored(rows)
        assert_array_equal(ds.start, np.zeros(5))
        assert_array_equal(ds.stop, [5, 8, 6, 3, 9])
        assert not ds.is_left_truncated


class TestRejection:
    """Invalid rows are reported, never silently dropped."""

    @pytest.mark.parametrize("row, reason", [
        (("x", 0.0, 0.0, True, C, "north"), "must exceed"),
        (("x", 3.0, 2.0, True, C, "north"), "must exceed"),
        (("x", -1.0, 2.0, True, C, "north"), "non-negative"),
        (("x", 0.0, float("nan"), True, C, "north"), "missing stop_time"),
        (("x", 0.0, float("inf"), True, C, "north"), "not finite"),
        (("x", 0.0, "5", True, C, "north"), "not numeric"),
        (("x", 0.0, 5.0, 2, C, "north"), "status"),
        (("x", 0.0, 5.0, None, C, "north"), "missing status"),
        (("x", 0.0, 5.0, True, "control", "north"), "Arm"),
        (("x", 0.0, 5.0, True, C, None), "missing stratum_key"),
        (("x", 0.0, 5.0, True, C, ["a"]), "not hashable"),
        ((["x"], 0.0, 5.0, True, C, "north"), "subject_id is not hashable"),
        ((None, 0.0, 5.0, True, C, "north"), "missing subject_id"),
        (("x", 0.0, 5.0, True, C), "expected 6 fields"),
    ])
    def test_invalid_row_rejected(self, row, reason):
        with pytest.warns(UserWarning, match="1 of 6 records rejected"):
            ds = SurvivalDataset.from_records(ROWS + [row])
        assert ds.n_observations == 5
        assert ds.n_rejected == 1
        rejected = ds.rejected[0]
        assert isinstance(rejected, RejectedRecord)
        assert reason in rejected.reason

    def test_duplicate_subject_id(self):
        with pytest.warns(UserWarning):
            ds = SurvivalDataset.from_records(ROWS + [("p1", 0.0, 4.0, True, C, "north")])
        assert ds.rejected[0].subject_id == "p1"
        assert "duplicate" in ds.rejected[0].reason
        assert ds.records[0].stop_time == 5.0

    def test_tolerance_exceeded(self):
        bad = [("x1", 0.0, -1.0, True, C, "north"), ("x2", 0.0, -1.0, True, E, "north")]
        with pytest.raises(InvalidRecordError) as exc_info:
            SurvivalDataset.from_records(ROWS + bad, max_reject_fraction=0.1)
        assert exc_info.value.subject_ids == ("x1", "x2")
        assert exc_info.value.n_rejected == 2
        assert exc_info.value.n_total == 7

    def test_within_tolerance_warns(self):
        bad = [("x1", 0.0, -1.0, True, C, "north")]
        with pytest.warns(UserWarning):
            ds = SurvivalDataset.from_records(ROWS + bad, max_reject_fraction=0.5)
        assert ds.n_rejected == 1

    def test_all_rejected(self):
        with pytest.raises(InvalidRecordError, match="All 1"):
            SurvivalDataset.from_records([("x", 1.0, 0.5, True, C, "s")])

    def test_bad_tolerance(self):
        with pytest.raises(ValueError, match="max_reject_fraction"):
            SurvivalDataset.from_records(ROWS, max_reject_fraction=1.5)

    def test_clean_input_does_not_warn(self, recwarn):
        SurvivalDataset.from_records(ROWS)
        assert len(recwarn) == 0


class TestCovariates:

    def test_design_matrix(self):
        ds = SurvivalDataset.from_records(ROWS, covariates={"age": [50, 60, 70, 40, 55]})
        assert ds.design_names == ("group", "age")
        X = ds.design_matrix()
        assert X.shape == (5, 2)
        assert_array_equal(X[:, 0], ds.arm)
        assert_array_equal(X[:, 1], [50, 60, 70, 40, 55])

    def test_non_finite_covariate_rejects_row(self):
        with pytest.warns(UserWarning):
            ds = SurvivalDataset.from_records(
                ROWS, covariates={"age": [50, np.nan, 70, 40, 55]},
            )
        assert ds.rejected[0].subject_id == "p2"
        assert "age" in ds.rejected[0].reason
        assert_array_equal(ds.covariates[:, 0], [50, 70, 40, 55])

    def test_wrong_length(self):
        with pytest.raises(ValidationError, match="5 values"):
            SurvivalDataset.from_records(ROWS, covariates={"age": [1, 2]})

    def test_reserved_name(self):
        with pytest.raises(ValidationError, match="reserved"):
            SurvivalDataset.from_records(ROWS, covariates={"group": [1] * 5})


class TestViews:

    def test_risk_set_counting_process(self):
        """start < t <= stop: p3 enters after t=2, p4 leaves at t=3."""
        ds = SurvivalDataset.from_records(ROWS)
        assert ds.at_risk_count(2.0) == 4      # p3 not yet at risk
        assert ds.at_risk_count(2.5) == 5
        assert ds.at_risk_count(3.0) == 5      # p4 at risk at its own exit
        assert ds.at_risk_count(3.5) == 4
        assert ds.risk_set(6.5).subject_ids == ("p2", "p5")

    def test_by_arm(self):
        ds = SurvivalDataset.from_records(ROWS)
        assert ds.by_arm(E).subject_ids == ("p2", "p3", "p5")
        assert ds.arm_count(C) == 2

    def test_group_by_stratum(self):
        groups = SurvivalDataset.from_records(ROWS).group_by_stratum()
        assert list(groups) == ["north", "south"]
        assert groups["south"].subject_ids == ("p3", "p4")

    def test_subset_mask_shape(self):
        with pytest.raises(ValidationError, match="shape"):
            SurvivalDataset.from_records(ROWS).subset(np.ones(3, bool))


class TestStrata:

    def test_both_arms_present(self):
        SurvivalDataset.from_records(ROWS).check_strata()

    def test_empty_stratum(self):
        rows = ROWS + [("p6", 0.0, 4.0, True, C, "east")]
        ds = SurvivalDataset.from_records(rows)
        with pytest.raises(EmptyStratumError) as exc_info:
            ds.check_strata()
        assert exc_info.value.stratum == "east"
        assert exc_info.value.missing_arm is E

    def test_group_by_stratum_validates(self):
        ds = SurvivalDataset.from_records(ROWS + [("p6", 0.0, 4.0, True, C, "east")])
        with pytest.raises(EmptyStratumError):
            ds.group_by_stratum()
        assert len(ds.group_by_stratum(validate=False)) == 3


class TestFromFrame:

    def _frame(self):
        return pd.DataFrame({
            "subject_id": ["p1", "p2", "p3", "p4"],
            "start_time": [0.0, 0.0, 1.0, 0.0],
            "stop_time": [4.0, 6.0, 5.0, 2.0],
            "event_status": [True, False, True, True],
            "group": [C, E, E, C],
            "site": ["A", "A", "B", "B"],
            "age_band": ["<65", "<65", ">=65", ">=65"],
            "score": [1.0, 2.0, 3.0, 4.0],
        })

    def test_basic(self):
        ds = SurvivalDataset.from_frame(
            self._frame(), stratum_columns=["site", "age_band"],
            covariate_columns=["score"],
        )
        assert ds.n_observations == 4
        assert ds.stratum_keys == (("A", "<65"), ("B", ">=65"))
        assert ds.design_names == ("group", "score")
        assert_array_equal(ds.start, [0, 0, 1, 0])

    def test_without_start_column(self):
        df = self._frame().drop(columns="start_time")
        ds = SurvivalDataset.from_frame(df, stratum_columns=["site"])
        assert not ds.is_left_truncated

    def test_missing_values_rejected(self):
        df = self._frame()
        df.loc[1, "stop_time"] = np.nan
        with pytest.warns(UserWarning):
            ds = SurvivalDataset.from_frame(df, stratum_columns=["site"])
        assert ds.rejected[0].subject_id == "p2"

    def test_missing_column(self):
        with pytest.raises(ValidationError, match="missing columns"):
            SurvivalDataset.from_frame(self._frame(), stratum_columns=["region"])

    def test_not_a_frame(self):
        with pytest.raises(ValidationError, match="DataFrame"):
            SurvivalDataset.from_frame({"a": [1]}, stratum_columns=["a"])
