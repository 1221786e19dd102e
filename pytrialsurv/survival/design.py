"""
SurvivalDataset: immutable container for stratified time-to-event data.

Holds one record per subject in counting-process form (start, stop],
together with the treatment arm and the stratum the subject belongs to.
Validates every raw row at construction time; rows that fail are kept
aside as RejectedRecord entries with a reason, never dropped silently.
All downstream code trusts the accepted records.

Pure right censoring is the special case start = 0 for every subject, so
both regimes run through exactly the same code.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Hashable, Iterable, Mapping, Sequence

import numpy as np
from numpy.typing import NDArray

from pytrialsurv.core.exceptions import (
    EmptyStratumError,
    InvalidRecordError,
    ValidationError,
)
from pytrialsurv.core.validation import (
    check_1d,
    check_array,
    check_consistent_length,
)

if TYPE_CHECKING:
    import pandas as pd


class Arm(Enum):
    """Randomised treatment arm."""

    CONTROL = "control"
    EXPERIMENTAL = "experimental"

    @property
    def indicator(self) -> float:
        """Cox covariate value: 1 for the experimental arm, 0 for control."""
        return 1.0 if self is Arm.EXPERIMENTAL else 0.0


ARMS = (Arm.CONTROL, Arm.EXPERIMENTAL)

GROUP_COVARIATE = "group"


@dataclass(frozen=True)
class SurvivalRecord:
    """One subject in counting-process form.

    The subject enters the risk set just after ``start_time`` and leaves it
    at ``stop_time``, by event (``status=True``) or censoring.
    """

    subject_id: Hashable
    start_time: float
    stop_time: float
    status: bool
    group: Arm
    stratum_key: Hashable


@dataclass(frozen=True)
class RejectedRecord:
    """A raw row excluded at ingestion and why."""

    subject_id: Any
    reason: str


@dataclass(frozen=True, eq=False)
class SurvivalDataset:
    """Immutable, validated survival data.

    Construct via :meth:`from_records`, :meth:`right_censored` or
    :meth:`from_frame`, not directly.

    Attributes
    ----------
    records : tuple of SurvivalRecord
        Accepted subjects, in input order.
    rejected : tuple of RejectedRecord
        Rows excluded at ingestion.
    start, stop : NDArray
        (n,) entry and exit times.
    event : NDArray
        (n,) 1.0 for an event, 0.0 for censoring.
    arm : NDArray
        (n,) 1.0 for the experimental arm, 0.0 for control.
    covariates : NDArray
        (n, q) extra numeric covariates, q may be 0.
    covariate_names : tuple of str
        Names of the extra covariates.
    strata : NDArray
        (n,) integer stratum codes indexing ``stratum_keys``.
    stratum_keys : tuple
        Distinct stratum keys in order of first appearance.
    """

    records: tuple[SurvivalRecord, ...]
    rejected: tuple[RejectedRecord, ...]
    start: NDArray
    stop: NDArray
    event: NDArray
    arm: NDArray
    covariates: NDArray
    covariate_names: tuple[str, ...]
    strata: NDArray
    stratum_keys: tuple[Hashable, ...]

    # -- Construction ------------------------------------------------

    @classmethod
    def from_records(
        cls,
        rows: Iterable[Sequence[Any]],
        *,
        covariates: Mapping[str, Sequence[float]] | None = None,
        max_reject_fraction: float | None = None,
    ) -> SurvivalDataset:
        """Validate raw rows and build a dataset.

        Parameters
        ----------
        rows : iterable of sequences
            ``(subject_id, start_time, stop_time, status, group,
            stratum_key)`` per subject. ``group`` must already be an
            :class:`Arm`; ``status`` a bool or 0/1.
        covariates : mapping or None
            Extra numeric covariates, name -> values aligned with ``rows``.
            A non-finite value rejects that row.
        max_reject_fraction : float or None
            None (default) only reports rejected rows. A value in [0, 1]
            raises InvalidRecordError when the rejected fraction exceeds it.

        Returns
        -------
        SurvivalDataset

        Raises
        ------
        ValidationError
            If no rows are given or the covariates are malformed.
        InvalidRecordError
            If the rejected fraction exceeds ``max_reject_fraction`` or no
            row is valid.
        """
        rows = list(rows)
        n_total = len(rows)

        if n_total == 0:
            raise ValidationError("rows must contain at least one record")

        if max_reject_fraction is not None and not (0.0 <= max_reject_fraction <= 1.0):
            raise ValueError(
                f"max_reject_fraction must be in [0, 1], got {max_reject_fraction}"
            )

        names, cov_matrix = _covariate_matrix(covariates, n_total)

        accepted: list[SurvivalRecord] = []
        accepted_rows: list[int] = []
        rejected: list[RejectedRecord] = []
        seen_ids: set = set()

        for i, row in enumerate(rows):
            record, reason = _validate_row(row)
            if record is not None and record.subject_id in seen_ids:
                record, reason = None, "duplicate subject_id"
            if record is not None and names and not np.all(np.isfinite(cov_matrix[i])):
                bad = [nm for nm, v in zip(names, cov_matrix[i]) if not np.isfinite(v)]
                record, reason = None, f"non-finite covariate(s): {', '.join(bad)}"

            if record is None:
                rejected.append(RejectedRecord(_row_subject_id(row), reason))
                continue

            seen_ids.add(record.subject_id)
            accepted.append(record)
            accepted_rows.append(i)

        n_rejected = len(rejected)
        if n_rejected > 0:
            rejected_ids = [r.subject_id for r in rejected]
            if not accepted:
                raise InvalidRecordError(
                    f"All {n_total} records were rejected",
                    subject_ids=rejected_ids,
                    n_rejected=n_rejected,
                    n_total=n_total,
                    tolerance=max_reject_fraction,
                )
            fraction = n_rejected / n_total
            if max_reject_fraction is not None and fraction > max_reject_fraction:
                raise InvalidRecordError(
                    f"{n_rejected} of {n_total} records rejected "
                    f"({fraction:.1%} > tolerance {max_reject_fraction:.1%}): "
                    f"subject ids {rejected_ids}",
                    subject_ids=rejected_ids,
                    n_rejected=n_rejected,
                    n_total=n_total,
                    tolerance=max_reject_fraction,
                )
            warnings.warn(
                f"{n_rejected} of {n_total} records rejected at ingestion; "
                f"see SurvivalDataset.rejected",
                stacklevel=2,
            )

        return cls._build(
            tuple(accepted),
            tuple(rejected),
            cov_matrix[accepted_rows],
            names,
        )

    @classmethod
    def right_censored(
        cls,
        rows: Iterable[Sequence[Any]],
        *,
        covariates: Mapping[str, Sequence[float]] | None = None,
        max_reject_fraction: float | None = None,
    ) -> SurvivalDataset:
        """Build a dataset without delayed entry.

        Rows are ``(subject_id, stop_time, status, group, stratum_key)``;
        every subject enters at time 0.
        """
        padded = []
        for row in rows:
            row = tuple(row)
            padded.append(row[:1] + (0.0,) + row[1:] if row else row)
        return cls.from_records(
            padded,
            covariates=covariates,
            max_reject_fraction=max_reject_fraction,
        )

    @classmethod
    def from_frame(
        cls,
        df: pd.DataFrame,
        *,
        stratum_columns: Sequence[str],
        subject_column: str = "subject_id",
        group_column: str = "group",
        start_column: str | None = "start_time",
        stop_column: str = "stop_time",
        event_column: str = "event_status",
        covariate_columns: Sequence[str] = (),
        max_reject_fraction: float | None = None,
    ) -> SurvivalDataset:
        """Build a dataset from a pandas DataFrame.

        The stratum key of each row is the tuple of its ``stratum_columns``
        values. When ``start_column`` is None or absent from the frame every
        subject enters at time 0.
        """
        import pandas as pd

        if not isinstance(df, pd.DataFrame):
            raise ValidationError(
                f"df must be a pandas DataFrame, got {type(df).__name__}"
            )

        if len(stratum_columns) == 0:
            raise ValidationError("stratum_columns must name at least one column")

        required = [subject_column, group_column, stop_column, event_column,
                    *stratum_columns, *covariate_columns]
        missing = [c for c in required if c not in df.columns]
        if missing:
            raise ValidationError(f"df is missing columns: {missing}")

        n = len(df)
        if start_column is not None and start_column in df.columns:
            starts = _frame_values(df[start_column])
        else:
            starts = [0.0] * n

        keys = list(zip(*(_frame_values(df[c]) for c in stratum_columns)))
        rows = zip(
            _frame_values(df[subject_column]),
            starts,
            _frame_values(df[stop_column]),
            _frame_values(df[event_column]),
            _frame_values(df[group_column]),
            keys,
        )
        covariates = {c: df[c].to_numpy(dtype=np.float64, na_value=np.nan)
                      for c in covariate_columns}

        return cls.from_records(
            rows,
            covariates=covariates or None,
            max_reject_fraction=max_reject_fraction,
        )

    @classmethod
    def _build(
        cls,
        records: tuple[SurvivalRecord, ...],
        rejected: tuple[RejectedRecord, ...],
        covariates: NDArray,
        covariate_names: tuple[str, ...],
    ) -> SurvivalDataset:
        n = len(records)
        stratum_keys: list = []
        codes: dict = {}
        strata = np.empty(n, dtype=np.intp)
        for i, rec in enumerate(records):
            if rec.stratum_key not in codes:
                codes[rec.stratum_key] = len(stratum_keys)
                stratum_keys.append(rec.stratum_key)
            strata[i] = codes[rec.stratum_key]

        arrays = {
            "start": np.array([r.start_time for r in records], dtype=np.float64),
            "stop": np.array([r.stop_time for r in records], dtype=np.float64),
            "event": np.array([1.0 if r.status else 0.0 for r in records]),
            "arm": np.array([r.group.indicator for r in records]),
            "covariates": np.asarray(covariates, dtype=np.float64).reshape(
                n, len(covariate_names)
            ).copy(),
            "strata": strata,
        }
        for arr in arrays.values():
            arr.setflags(write=False)

        return cls(
            records=records,
            rejected=rejected,
            covariate_names=covariate_names,
            stratum_keys=tuple(stratum_keys),
            **arrays,
        )

    # -- Counts ------------------------------------------------------

    @property
    def n_observations(self) -> int:
        """Number of accepted subjects."""
        return len(self.records)

    @property
    def n_rejected(self) -> int:
        return len(self.rejected)

    @property
    def n_events(self) -> int:
        """Number of observed events."""
        return int(np.sum(self.event))

    @property
    def n_strata(self) -> int:
        return len(self.stratum_keys)

    @property
    def is_left_truncated(self) -> bool:
        """True if any subject enters after time 0."""
        return bool(np.any(self.start > 0))

    @property
    def subject_ids(self) -> tuple[Hashable, ...]:
        return tuple(r.subject_id for r in self.records)

    @property
    def design_names(self) -> tuple[str, ...]:
        """Names of the Cox design matrix columns."""
        return (GROUP_COVARIATE,) + self.covariate_names

    def design_matrix(self) -> NDArray:
        """(n, p) Cox design matrix: arm indicator then extra covariates."""
        return np.column_stack([self.arm, self.covariates])

    def arm_count(self, arm: Arm) -> int:
        return int(np.sum(self.arm == arm.indicator))

    @property
    def metadata(self) -> dict[str, Any]:
        return {
            "n": self.n_observations,
            "n_events": self.n_events,
            "n_censored": self.n_observations - self.n_events,
            "n_rejected": self.n_rejected,
            "n_strata": self.n_strata,
            "n_control": self.arm_count(Arm.CONTROL),
            "n_experimental": self.arm_count(Arm.EXPERIMENTAL),
            "left_truncated": self.is_left_truncated,
        }

    # -- Views -------------------------------------------------------

    def at_risk_mask(self, t: float) -> NDArray:
        """Boolean mask of subjects with start < t <= stop."""
        return (self.start < t) & (t <= self.stop)

    def risk_set(self, t: float) -> SurvivalDataset:
        """Subjects at risk at time t (counting-process definition)."""
        return self.subset(self.at_risk_mask(t))

    def at_risk_count(self, t: float) -> int:
        return int(np.sum(self.at_risk_mask(t)))

    def subset(self, mask: NDArray) -> SurvivalDataset:
        """Sub-collection selected by a boolean mask.

        The result carries no rejected rows; those belong to the parent.
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (self.n_observations,):
            raise ValidationError(
                f"mask must have shape ({self.n_observations},), got {mask.shape}"
            )
        idx = np.flatnonzero(mask)
        return SurvivalDataset._build(
            tuple(self.records[i] for i in idx),
            (),
            self.covariates[idx],
            self.covariate_names,
        )

    def by_arm(self, arm: Arm) -> SurvivalDataset:
        return self.subset(self.arm == arm.indicator)

    def group_by_stratum(self, *, validate: bool = True) -> dict[Hashable, SurvivalDataset]:
        """Map each stratum key to its sub-collection.

        Parameters
        ----------
        validate : bool
            If True (default), require both arms in every stratum.

        Raises
        ------
        EmptyStratumError
            If ``validate`` and some stratum lacks an arm.
        """
        if validate:
            self.check_strata()
        return {
            key: self.subset(self.strata == code)
            for code, key in enumerate(self.stratum_keys)
        }

    def check_strata(self) -> None:
        """Verify every stratum contains at least one subject of each arm.

        Raises
        ------
        EmptyStratumError
            Naming the first offending stratum and the missing arm.
        """
        for code, key in enumerate(self.stratum_keys):
            in_stratum = self.strata == code
            for arm in ARMS:
                if not np.any(self.arm[in_stratum] == arm.indicator):
                    raise EmptyStratumError(
                        f"Stratum {key!r} has no subjects in arm "
                        f"'{arm.value}'; stratified comparison cannot run",
                        stratum=key,
                        missing_arm=arm,
                    )

    def __repr__(self) -> str:
        return (
            f"SurvivalDataset(n={self.n_observations}, events={self.n_events}, "
            f"strata={self.n_strata}, rejected={self.n_rejected})"
        )


# -- Row validation --------------------------------------------------


_ROW_FIELDS = 6


def _row_subject_id(row: Any) -> Any:
    try:
        return row[0]
    except (TypeError, IndexError, KeyError):
        return None


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    try:
        return isinstance(value, float) and math.isnan(value)
    except TypeError:
        return False


def _as_time(value: Any, name: str) -> tuple[float | None, str | None]:
    if _is_missing(value):
        return None, f"missing {name}"
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, float, np.number)):
        return None, f"{name} is not numeric: {value!r}"
    value = float(value)
    if not math.isfinite(value):
        return None, f"{name} is not finite: {value!r}"
    return value, None


def _as_status(value: Any) -> tuple[bool | None, str | None]:
    if _is_missing(value):
        return None, "missing status"
    if isinstance(value, (bool, np.bool_)):
        return bool(value), None
    if isinstance(value, (int, float, np.number)) and value in (0, 1):
        return bool(value), None
    return None, f"status must be boolean or 0/1, got {value!r}"


def _validate_row(row: Any) -> tuple[SurvivalRecord | None, str | None]:
    """Return (record, None) for a valid row, else (None, reason)."""
    try:
        fields = tuple(row)
    except TypeError:
        return None, f"row is not a sequence: {row!r}"

    if len(fields) != _ROW_FIELDS:
        return None, f"expected {_ROW_FIELDS} fields, got {len(fields)}"

    subject_id, start, stop, status, group, stratum_key = fields

    if _is_missing(subject_id):
        return None, "missing subject_id"
    try:
        hash(subject_id)
    except TypeError:
        return None, f"subject_id is not hashable: {subject_id!r}"

    start, reason = _as_time(start, "start_time")
    if reason:
        return None, reason
    stop, reason = _as_time(stop, "stop_time")
    if reason:
        return None, reason
    if start < 0:
        return None, f"start_time must be non-negative, got {start}"
    if not stop > start:
        return None, f"stop_time ({stop}) must exceed start_time ({start})"

    status, reason = _as_status(status)
    if reason:
        return None, reason

    if not isinstance(group, Arm):
        return None, f"group must be an Arm member, got {group!r}"

    if _is_missing(stratum_key):
        return None, "missing stratum_key"
    try:
        hash(stratum_key)
    except TypeError:
        return None, f"stratum_key is not hashable: {stratum_key!r}"

    return SurvivalRecord(
        subject_id=subject_id,
        start_time=start,
        stop_time=stop,
        status=status,
        group=group,
        stratum_key=stratum_key,
    ), None


def _covariate_matrix(
    covariates: Mapping[str, Sequence[float]] | None,
    n: int,
) -> tuple[tuple[str, ...], NDArray]:
    if not covariates:
        return (), np.zeros((n, 0), dtype=np.float64)

    names = tuple(covariates)
    if GROUP_COVARIATE in names:
        raise ValidationError(
            f"covariate name '{GROUP_COVARIATE}' is reserved for the arm indicator"
        )

    columns = []
    for name in names:
        col = check_array(covariates[name], f"covariates['{name}']")
        check_1d(col, f"covariates['{name}']")
        columns.append(col)

    labels = tuple(f"covariates['{nm}']" for nm in names)
    check_consistent_length(*columns, names=labels)
    if columns[0].shape[0] != n:
        raise ValidationError(
            f"covariates must have {n} values to match rows, "
            f"got {columns[0].shape[0]}"
        )
    return names, np.column_stack(columns)


def _frame_values(series: Any) -> list:
    """Column values as Python objects with pandas missing values as None."""
    return [None if _frame_missing(v) else v for v in series.tolist()]


def _frame_missing(value: Any) -> bool:
    import pandas as pd

    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False
