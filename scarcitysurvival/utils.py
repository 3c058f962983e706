"""
Utility functions for preparing water scarcity survival data.

This module converts a per-country, per-year panel of water-use indicators
into the counting-process (start-stop) representation used by the
hierarchical survival model, and assembles the indexed arrays the model
consumes.

The pipeline is:

1. `derive_survival_outcomes` - time to first "High" scarcity year, or
   right-censoring at the last observed year, per country.
2. `split_intervals` - one half-open risk interval per observed year, clipped
   to the country's survival time, with the event flag on the terminal
   interval only.
3. `assign_regions` - hierarchical grouping key (see `regions`).
4. `assemble_model_inputs` - dense 1-based ids, standardized covariates and
   the `ModelInputs` hand-off contract.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from .exceptions import (
    DataContractViolation,
    DegenerateCovariate,
    EmptyGroup,
    IndexMismatch,
    NumericSingularity,
)
from .regions import Region, assign_regions, region_counts

logger = logging.getLogger(__name__)

# Raw CSV headers of the global water consumption dataset
COLUMN_RENAMES = {
    "Country": "country",
    "Year": "year",
    "Total Water Consumption (Billion Cubic Meters)": "total_consumption",
    "Per Capita Water Use (Liters per Day)": "per_capita_use",
    "Water Scarcity Level": "scarcity_level",
    "Agricultural Water Use (%)": "agri_use_pct",
    "Industrial Water Use (%)": "industrial_use_pct",
    "Household Water Use (%)": "household_use_pct",
    "Rainfall Impact (Annual Precipitation in mm)": "rainfall_mm",
    "Groundwater Depletion Rate (%)": "groundwater_depletion_pct",
}

SCARCITY_LEVELS = ("Low", "Moderate", "High")
EVENT_LEVEL = "High"
DEFAULT_COVARIATES = ("agri_use_pct", "rainfall_mm", "groundwater_depletion_pct")

OUTCOME_COLUMNS = (
    "country",
    "start_year",
    "last_observation_year",
    "event_year",
    "time",
    "event_status",
)
_INTERVAL_HEAD = ("country", "t_start", "t_stop", "interval_event_status")
_INTERVAL_TAIL = ("year", "overall_time", "overall_event_status", "region")


# =============================================================================
# Panel loading and validation
# =============================================================================


def load_panel(path: str | Path) -> pd.DataFrame:
    """
    Load the raw yearly panel from CSV.

    Headers are renamed with `COLUMN_RENAMES`, the scarcity level becomes an
    ordered categorical (Low < Moderate < High) and rows are sorted by
    country then year.

    Parameters
    ----------
    path : str or Path
        Path to the CSV file.

    Returns
    -------
    pd.DataFrame
        The panel, one row per (country, year).

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    DataContractViolation
        If required columns are missing or a scarcity level is unknown.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Panel file not found: {path}")

    panel = pd.read_csv(path).rename(columns=COLUMN_RENAMES)
    _check_columns(panel, ["country", "year", "scarcity_level"], what="panel")

    panel["scarcity_level"] = _as_scarcity_level(panel["scarcity_level"])
    panel = panel.sort_values(["country", "year"], kind="mergesort")

    logger.info(
        "Loaded panel %s: %d rows, %d countries",
        path.name,
        len(panel),
        panel["country"].nunique(),
    )
    return panel.reset_index(drop=True)


def validate_panel(
    panel: pd.DataFrame,
    covariates: Sequence[str] = DEFAULT_COVARIATES,
) -> None:
    """
    Check a panel before any survival quantity is derived from it.

    Parameters
    ----------
    panel : pd.DataFrame
        Yearly panel with country, year, scarcity_level and covariates.
    covariates : sequence of str, optional
        Covariate columns that must be present, numeric and complete.

    Raises
    ------
    EmptyGroup
        If the panel has no rows.
    DataContractViolation
        If a column is missing, a covariate is non-numeric or has missing
        values, or a scarcity level is unknown.
    """
    if len(panel) == 0:
        raise EmptyGroup("Panel contains no rows")

    _check_columns(panel, ["country", "year", "scarcity_level", *covariates], what="panel")
    _check_countries(panel)
    _as_scarcity_level(panel["scarcity_level"])
    _check_covariates(panel, covariates)


def _check_countries(df: pd.DataFrame, country_col: str = "country") -> None:
    # groupby drops NaN keys, so unnamed rows would disappear silently
    n_missing = int(df[country_col].isna().sum())
    if n_missing:
        raise DataContractViolation(
            f"{n_missing} row(s) have a missing {country_col} name"
        )


def _check_columns(df: pd.DataFrame, columns: Sequence[str], what: str = "data") -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise DataContractViolation(f"Columns {missing} not found in {what}")


def _check_covariates(df: pd.DataFrame, covariates: Sequence[str]) -> None:
    non_numeric = [c for c in covariates if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise DataContractViolation(f"Covariates must be numeric: {non_numeric}")

    n_missing = df[list(covariates)].isna().sum()
    n_missing = n_missing[n_missing > 0]
    if len(n_missing) > 0:
        raise DataContractViolation(
            f"Missing covariate values: {n_missing.to_dict()}. "
            "Impute or drop them before preprocessing."
        )


def _as_scarcity_level(values: pd.Series, country: str | None = None) -> pd.Categorical:
    """Cast to the ordered scarcity categorical, rejecting unknown or missing levels."""
    where = f" for country '{country}'" if country is not None else ""
    if pd.isna(values).any():
        raise DataContractViolation(f"Missing scarcity level{where}")

    unknown = set(pd.unique(values)) - set(SCARCITY_LEVELS)
    if unknown:
        raise DataContractViolation(
            f"Unknown scarcity level(s) {sorted(map(str, unknown))}{where}. "
            f"Expected one of {list(SCARCITY_LEVELS)}"
        )
    return pd.Categorical(values, categories=SCARCITY_LEVELS, ordered=True)


def _check_years(country: Any, years: pd.Series) -> np.ndarray:
    """Return the years as int64, requiring consecutive ascending values."""
    if years.isna().any():
        raise DataContractViolation(f"Country '{country}' has missing year values")

    try:
        values = years.to_numpy(dtype=np.float64)
    except (TypeError, ValueError):
        raise DataContractViolation(f"Country '{country}' has non-numeric years") from None
    if not np.all(values == np.floor(values)):
        raise DataContractViolation(f"Country '{country}' has non-integer years")
    values = values.astype(np.int64)

    steps = np.diff(values)
    if (steps == 0).any():
        dup = sorted(set(values[1:][steps == 0].tolist()))
        raise DataContractViolation(f"Country '{country}' has duplicated years {dup}")
    if (steps < 0).any():
        raise DataContractViolation(
            f"Country '{country}' years are not in ascending order. "
            "Sort the panel by country and year first."
        )
    if (steps > 1).any():
        gaps = [
            (int(a), int(b)) for a, b, s in zip(values[:-1], values[1:], steps) if s > 1
        ]
        raise DataContractViolation(f"Country '{country}' has missing years between {gaps}")

    return values


# =============================================================================
# Survival outcomes
# =============================================================================


def derive_survival_outcome(
    rows: pd.DataFrame,
    country: str | None = None,
) -> dict[str, Any]:
    """
    Derive time-to-event and censoring status for one country.

    The event is the first year the scarcity level is "High". Countries that
    never reach it are right-censored at their last observed year.

    Parameters
    ----------
    rows : pd.DataFrame
        The country's yearly rows, sorted by ascending year.
    country : str, optional
        Country name. Defaults to the value of the first row.

    Returns
    -------
    dict
        Keys: country, start_year, last_observation_year, event_year (None
        when censored), time, event_status.

    Raises
    ------
    EmptyGroup
        If `rows` is empty.
    DataContractViolation
        If years are missing, duplicated, unordered or non-consecutive, or a
        scarcity level is unknown.

    Notes
    -----
    A negative survival time is clamped to 0. A time of 0 with
    ``event_status == 1`` means the event happened in the first observed
    year; with ``event_status == 0`` the country has a single year of data.

    Examples
    --------
    >>> rows = pd.DataFrame({
    ...     "country": "Brazil",
    ...     "year": [2000, 2001, 2002],
    ...     "scarcity_level": ["Low", "High", "High"],
    ... })
    >>> derive_survival_outcome(rows)["time"]
    1
    """
    if country is None and len(rows) > 0:
        country = rows["country"].iloc[0]
    if len(rows) == 0:
        raise EmptyGroup(f"Country '{country}' has no observed rows")

    years = _check_years(country, rows["year"])
    levels = np.asarray(_as_scarcity_level(rows["scarcity_level"], country))

    start_year = int(years.min())
    last_observation_year = int(years.max())

    high_years = years[levels == EVENT_LEVEL]
    event_year = int(high_years.min()) if len(high_years) > 0 else None

    event_status = int(event_year is not None and event_year <= last_observation_year)
    event_time_point = event_year if event_status else last_observation_year
    time = max(0, event_time_point - start_year)

    return {
        "country": country,
        "start_year": start_year,
        "last_observation_year": last_observation_year,
        "event_year": event_year,
        "time": time,
        "event_status": event_status,
    }


def derive_survival_outcomes(
    panel: pd.DataFrame,
    country_col: str = "country",
) -> pd.DataFrame:
    """
    Derive one survival outcome row per country.

    Parameters
    ----------
    panel : pd.DataFrame
        Yearly panel sorted by year within each country.
    country_col : str, optional
        Name of the country column. Default is "country".

    Returns
    -------
    pd.DataFrame
        Columns `OUTCOME_COLUMNS`, countries in order of first appearance.
        ``event_year`` is a nullable integer column.
    """
    if len(panel) == 0:
        raise EmptyGroup("Panel contains no rows")
    _check_countries(panel, country_col)

    # observed=False keeps unused categories so countries without rows fail
    records = [
        derive_survival_outcome(rows, country)
        for country, rows in panel.groupby(country_col, sort=False, observed=False)
    ]

    outcomes = pd.DataFrame.from_records(records, columns=list(OUTCOME_COLUMNS))
    outcomes["event_year"] = outcomes["event_year"].astype("Int64")

    summary = summarize_outcomes(outcomes)
    logger.info(
        "Derived outcomes for %d countries: %d events, censoring rate %.1f%%",
        summary["n_countries"],
        summary["n_events"],
        100 * summary["censoring_rate"],
    )
    return outcomes


def summarize_outcomes(outcomes: pd.DataFrame) -> dict[str, float]:
    """Country count, event count and censoring rate of an outcome table."""
    n_countries = len(outcomes)
    n_events = int(outcomes["event_status"].sum())
    censoring_rate = 1.0 - n_events / n_countries if n_countries else float("nan")
    return {
        "n_countries": n_countries,
        "n_events": n_events,
        "censoring_rate": censoring_rate,
    }


# =============================================================================
# Counting-process intervals
# =============================================================================


def split_country_intervals(
    rows: pd.DataFrame,
    outcome: Mapping[str, Any],
    covariates: Sequence[str] = DEFAULT_COVARIATES,
) -> pd.DataFrame:
    """
    Expand one country's yearly rows into start-stop risk intervals.

    Each row of year ``y`` becomes the interval
    ``[y - start_year, y - start_year + 1)``. Intervals starting at or after
    the survival time are discarded (the country has left the risk set), the
    last retained interval is clipped to end at the survival time, and
    zero-width intervals are dropped.

    Parameters
    ----------
    rows : pd.DataFrame
        The country's yearly rows, sorted by ascending year.
    outcome : Mapping
        The country's survival outcome (see `derive_survival_outcome`).
    covariates : sequence of str, optional
        Covariate columns to carry onto each interval.

    Returns
    -------
    pd.DataFrame
        Columns: country, t_start, t_stop, interval_event_status, the
        covariates, year, overall_time, overall_event_status.
    """
    start_year = outcome["start_year"]
    overall_time = float(outcome["time"])
    event_status = int(outcome["event_status"])

    elapsed = rows["year"].to_numpy(dtype=np.float64) - start_year
    t_start = elapsed
    t_stop = np.minimum(elapsed + 1.0, overall_time)

    keep = (t_start < overall_time) & (t_start < t_stop)
    flag = (t_stop == overall_time) & (event_status == 1)

    kept = rows.loc[keep]
    intervals = pd.DataFrame(
        {
            "country": outcome["country"],
            "t_start": t_start[keep],
            "t_stop": t_stop[keep],
            "interval_event_status": flag[keep].astype(np.int64),
        }
    )
    for col in covariates:
        intervals[col] = kept[col].to_numpy(dtype=np.float64)
    intervals["year"] = kept["year"].to_numpy(dtype=np.int64)
    intervals["overall_time"] = overall_time
    intervals["overall_event_status"] = event_status

    return intervals


def split_intervals(
    panel: pd.DataFrame,
    outcomes: pd.DataFrame,
    covariates: Sequence[str] = DEFAULT_COVARIATES,
) -> pd.DataFrame:
    """
    Build the counting-process dataset for every country.

    Parameters
    ----------
    panel : pd.DataFrame
        Yearly panel sorted by year within each country.
    outcomes : pd.DataFrame
        Output of `derive_survival_outcomes`.
    covariates : sequence of str, optional
        Covariate columns to carry onto each interval.

    Returns
    -------
    pd.DataFrame
        One row per country-interval. Countries appear in panel order,
        intervals in year order.

    Raises
    ------
    DataContractViolation
        If a country has no outcome row, or covariates are missing.
    """
    covariates = list(covariates)
    _check_columns(panel, ["country", "year", *covariates], what="panel")
    _check_countries(panel)
    _check_covariates(panel, covariates)

    outcome_by_country = {rec["country"]: rec for rec in outcomes.to_dict("records")}

    frames = []
    for country, rows in panel.groupby("country", sort=False, observed=True):
        if country not in outcome_by_country:
            raise DataContractViolation(f"No survival outcome for country '{country}'")
        _check_years(country, rows["year"])
        frame = split_country_intervals(rows, outcome_by_country[country], covariates)
        logger.debug(
            "%s: %d years -> %d intervals, event=%d",
            country,
            len(rows),
            len(frame),
            outcome_by_country[country]["event_status"],
        )
        frames.append(frame)
    if not frames:
        raise EmptyGroup("Panel contains no rows")

    intervals = pd.concat(frames, ignore_index=True)

    n_without = int((outcomes["time"] <= 0).sum())
    if n_without:
        logger.info(
            "%d country(ies) have zero follow-up time and contribute no intervals",
            n_without,
        )
    logger.info(
        "Split %d panel rows into %d intervals (%d flagged events)",
        len(panel),
        len(intervals),
        int(intervals["interval_event_status"].sum()),
    )
    return intervals


def validate_intervals(intervals: pd.DataFrame) -> None:
    """
    Check the counting-process invariants of an interval dataset.

    For each country the intervals must tile ``[0, overall_time)`` without
    gaps or overlaps, in row order, and exactly the terminal interval is
    flagged when (and only when) the overall event status is 1.

    Raises
    ------
    DataContractViolation
        On the first country that breaks an invariant.
    """
    _check_columns(
        intervals,
        [*_INTERVAL_HEAD, "overall_time", "overall_event_status"],
        what="intervals",
    )

    for country, g in intervals.groupby("country", sort=False, observed=True):
        t_start = g["t_start"].to_numpy(dtype=np.float64)
        t_stop = g["t_stop"].to_numpy(dtype=np.float64)
        flags = g["interval_event_status"].to_numpy()

        if g["overall_time"].nunique() != 1 or g["overall_event_status"].nunique() != 1:
            raise DataContractViolation(
                f"Country '{country}' has inconsistent overall time or status"
            )
        overall_time = float(g["overall_time"].iloc[0])
        overall_status = int(g["overall_event_status"].iloc[0])

        if (t_start >= t_stop).any():
            raise DataContractViolation(f"Country '{country}' has an interval with start >= stop")
        if t_start[0] != 0.0:
            raise DataContractViolation(
                f"Country '{country}' intervals start at {t_start[0]}, not 0"
            )
        if not np.array_equal(t_start[1:], t_stop[:-1]):
            raise DataContractViolation(f"Country '{country}' intervals have gaps or overlaps")
        if t_stop[-1] != overall_time:
            raise DataContractViolation(
                f"Country '{country}' intervals end at {t_stop[-1]}, "
                f"not at the survival time {overall_time}"
            )

        expected = np.zeros(len(flags), dtype=np.int64)
        if overall_status == 1:
            expected[-1] = 1
        if not np.array_equal(flags, expected):
            raise DataContractViolation(
                f"Country '{country}' event flags {flags.tolist()} do not match "
                f"overall event status {overall_status}"
            )


def prepare_survival_data(
    panel: pd.DataFrame,
    covariates: Sequence[str] | None = None,
    mapping: Mapping[str, Region | str] | None = None,
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """
    Run the full preprocessing: outcomes, intervals, invariants, regions.

    Parameters
    ----------
    panel : pd.DataFrame
        Yearly panel (see `load_panel`).
    covariates : sequence of str, optional
        Time-varying covariates. Default is `DEFAULT_COVARIATES`.
    mapping : Mapping, optional
        Country to region mapping. Default is `regions.COUNTRY_REGIONS`.

    Returns
    -------
    tuple[pd.DataFrame, pd.DataFrame]
        ``(intervals, outcomes)``. Both carry a categorical region column.

    Examples
    --------
    >>> panel = load_panel("data/cleaned_global_water_consumption.csv")
    >>> intervals, outcomes = prepare_survival_data(panel)
    >>> intervals[intervals["country"] == "Brazil"].tail(1)
    """
    covariates = list(DEFAULT_COVARIATES if covariates is None else covariates)

    validate_panel(panel, covariates)
    outcomes = derive_survival_outcomes(panel)
    intervals = split_intervals(panel, outcomes, covariates)
    validate_intervals(intervals)

    intervals = assign_regions(intervals, mapping)
    outcomes = assign_regions(outcomes, mapping)

    logger.info("Intervals per region: %s", region_counts(intervals).to_dict())
    return intervals, outcomes


def save_processed_data(intervals: pd.DataFrame, path: str | Path) -> Path:
    """
    Persist the processed interval dataset as CSV.

    Columns are written in the order: country, t_start, t_stop,
    interval_event_status, covariates, year, overall_time,
    overall_event_status, region.
    """
    _check_columns(intervals, [*_INTERVAL_HEAD, *_INTERVAL_TAIL], what="intervals")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    covariates = _interval_covariates(intervals)
    ordered = list(_INTERVAL_HEAD) + covariates + list(_INTERVAL_TAIL)
    intervals[ordered].to_csv(path, index=False)

    logger.info("Saved %d intervals to %s", len(intervals), path)
    return path


def load_processed_data(path: str | Path) -> pd.DataFrame:
    """
    Load a dataset written by `save_processed_data`.

    Restores integer flags, float times and the sorted region categorical.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Processed data file not found: {path}")

    intervals = pd.read_csv(path)
    _check_columns(intervals, [*_INTERVAL_HEAD, *_INTERVAL_TAIL], what="processed data")

    intervals["country"] = intervals["country"].astype(str)
    for col in ("t_start", "t_stop", "overall_time"):
        intervals[col] = intervals[col].astype(np.float64)
    for col in ("interval_event_status", "year", "overall_event_status"):
        intervals[col] = intervals[col].astype(np.int64)
    intervals["region"] = pd.Categorical(
        intervals["region"], categories=sorted(intervals["region"].unique())
    )
    return intervals


def _interval_covariates(intervals: pd.DataFrame) -> list[str]:
    fixed = set(_INTERVAL_HEAD) | set(_INTERVAL_TAIL)
    return [c for c in intervals.columns if c not in fixed]


# =============================================================================
# Model inputs
# =============================================================================


@dataclass(frozen=True)
class CovariateScaling:
    """
    Standardization constants computed once over all interval rows.

    Attributes
    ----------
    means : pd.Series
        Mean of each covariate.
    stds : pd.Series
        Sample standard deviation (ddof=1) of each covariate.
    """

    means: pd.Series
    stds: pd.Series

    @property
    def covariates(self) -> list[str]:
        return list(self.means.index)

    def transform(self, df: pd.DataFrame) -> np.ndarray:
        """Standardize the covariate columns of `df` into a float matrix."""
        values = df[self.covariates].astype(np.float64)
        return ((values - self.means) / self.stds).to_numpy(dtype=np.float64)


def fit_scaling(intervals: pd.DataFrame, covariates: Sequence[str]) -> CovariateScaling:
    """
    Compute per-covariate mean and standard deviation.

    Raises
    ------
    DataContractViolation
        If a covariate column is missing, non-numeric or incomplete.
    DegenerateCovariate
        If a covariate has zero or undefined variance.
    """
    covariates = list(covariates)
    _check_columns(intervals, covariates, what="intervals")
    _check_covariates(intervals, covariates)

    values = intervals[covariates].astype(np.float64)
    means = values.mean()
    stds = values.std(ddof=1)

    degenerate = [c for c in covariates if not np.isfinite(stds[c]) or stds[c] == 0]
    if degenerate:
        raise DegenerateCovariate(
            f"Covariate(s) {degenerate} have zero variance across "
            f"{len(intervals)} intervals and cannot be standardized"
        )
    return CovariateScaling(means=means, stds=stds)


@dataclass(frozen=True)
class IndexLookup:
    """
    Country and region enumeration shared by every assembly step.

    Ids are 1-based. ``country_region[i]`` is the region of ``countries[i]``.
    """

    countries: tuple[str, ...]
    regions: tuple[str, ...]
    country_region: tuple[str, ...]
    country_index: dict[str, int] = field(init=False, repr=False)
    region_index: dict[str, int] = field(init=False, repr=False)

    def __post_init__(self):
        if len(self.country_region) != len(self.countries):
            raise IndexMismatch("country_region must have one entry per country")
        object.__setattr__(
            self, "country_index", {c: i + 1 for i, c in enumerate(self.countries)}
        )
        object.__setattr__(
            self, "region_index", {r: i + 1 for i, r in enumerate(self.regions)}
        )

    @property
    def region_id(self) -> np.ndarray:
        """Region id of each country (length = number of countries)."""
        missing = sorted({r for r in self.country_region if r not in self.region_index})
        if missing:
            raise IndexMismatch(f"Region(s) {missing} are not enumerated")
        return np.array([self.region_index[r] for r in self.country_region], dtype=np.int64)


def build_index_lookup(
    intervals: pd.DataFrame,
    country_col: str = "country",
    region_col: str = "region",
) -> IndexLookup:
    """
    Enumerate countries and regions once.

    Countries are numbered in order of first appearance, regions in
    categorical order (sorted labels when the column is not categorical).

    Raises
    ------
    DataContractViolation
        If a country is tagged with more than one region.
    """
    _check_columns(intervals, [country_col, region_col], what="intervals")

    countries = tuple(str(c) for c in pd.unique(intervals[country_col]))
    region = intervals[region_col]
    if isinstance(region.dtype, pd.CategoricalDtype):
        regions = tuple(str(r) for r in region.cat.categories)
    else:
        regions = tuple(sorted(str(r) for r in pd.unique(region)))

    pairs = intervals[[country_col, region_col]].astype(str).drop_duplicates()
    conflicting = pairs.loc[pairs[country_col].duplicated(), country_col].tolist()
    if conflicting:
        raise DataContractViolation(
            f"Country(ies) {sorted(set(conflicting))} are assigned to more than one region"
        )
    country_region = dict(zip(pairs[country_col], pairs[region_col]))

    return IndexLookup(
        countries=countries,
        regions=regions,
        country_region=tuple(country_region[c] for c in countries),
    )


@dataclass(frozen=True)
class ModelInputs:
    """
    Indexed arrays handed to the survival model.

    The field names and shapes are the hand-off contract with the sampler.
    Ids are 1-based. Arrays are read-only so that nothing can change them
    while chains are sampling.

    Attributes
    ----------
    N_intervals, N_countries, N_regions, K : int
        Number of intervals, countries, regions and covariates.
    t_start, t_stop : np.ndarray
        Interval bounds, shape (N_intervals,).
    event : np.ndarray
        Interval event flags (0/1), shape (N_intervals,).
    country_id : np.ndarray
        Country id of each interval, values in [1, N_countries].
    region_id : np.ndarray
        Region id of each country, shape (N_countries,), values in
        [1, N_regions].
    X : np.ndarray
        Standardized covariates, shape (N_intervals, K), rows aligned with
        the interval rows.
    countries, regions, covariates : tuple of str
        Labels for ids and columns of X.
    scaling : CovariateScaling, optional
        Constants used to standardize X.
    """

    N_intervals: int
    N_countries: int
    N_regions: int
    K: int
    t_start: np.ndarray
    t_stop: np.ndarray
    event: np.ndarray
    country_id: np.ndarray
    region_id: np.ndarray
    X: np.ndarray
    countries: tuple[str, ...] = ()
    regions: tuple[str, ...] = ()
    covariates: tuple[str, ...] = ()
    scaling: CovariateScaling | None = None

    _ARRAYS = ("t_start", "t_stop", "event", "country_id", "region_id", "X")

    def __post_init__(self):
        for name in self._ARRAYS:
            arr = np.array(getattr(self, name), copy=True)
            arr.flags.writeable = False
            object.__setattr__(self, name, arr)

    @property
    def interval_region_id(self) -> np.ndarray:
        """Region id of each interval (1-based)."""
        return self.region_id[self.country_id - 1]

    def to_dict(self) -> dict[str, Any]:
        """Return the named data contract (counts plus index-aligned arrays)."""
        return {
            "N_intervals": self.N_intervals,
            "N_countries": self.N_countries,
            "N_regions": self.N_regions,
            "K": self.K,
            "t_start": self.t_start,
            "t_stop": self.t_stop,
            "event": self.event,
            "country_id": self.country_id,
            "region_id": self.region_id,
            "X": self.X,
        }


def validate_model_inputs(inputs: ModelInputs) -> None:
    """
    Check shapes and id bounds of a `ModelInputs`.

    Raises
    ------
    DataContractViolation
        If an array has the wrong length or shape.
    IndexMismatch
        If a country or region id is out of bounds.
    NumericSingularity
        If an interval ends at time 0.
    """
    n = inputs.N_intervals
    for name in ("t_start", "t_stop", "event", "country_id"):
        if getattr(inputs, name).shape != (n,):
            raise DataContractViolation(
                f"{name} has shape {getattr(inputs, name).shape}, expected ({n},)"
            )
    if inputs.X.shape != (n, inputs.K):
        raise DataContractViolation(f"X has shape {inputs.X.shape}, expected ({n}, {inputs.K})")
    if inputs.region_id.shape != (inputs.N_countries,):
        raise DataContractViolation(
            f"region_id has {len(inputs.region_id)} entries for {inputs.N_countries} countries"
        )

    bad_country = (inputs.country_id < 1) | (inputs.country_id > inputs.N_countries)
    if bad_country.any():
        raise IndexMismatch(
            f"country_id out of [1, {inputs.N_countries}]: "
            f"{sorted(set(inputs.country_id[bad_country].tolist()))}"
        )
    bad_region = (inputs.region_id < 1) | (inputs.region_id > inputs.N_regions)
    if bad_region.any():
        raise IndexMismatch(
            f"region_id out of [1, {inputs.N_regions}]: "
            f"{sorted(set(inputs.region_id[bad_region].tolist()))}"
        )

    if (inputs.t_stop <= 0).any():
        raise NumericSingularity(
            f"{int((inputs.t_stop <= 0).sum())} interval(s) end at time 0; "
            "log(t_stop) is undefined"
        )
    if not np.isin(inputs.event, (0, 1)).all():
        raise DataContractViolation("event flags must be 0 or 1")


def assemble_model_inputs(
    intervals: pd.DataFrame,
    covariates: Sequence[str] | None = None,
    lookup: IndexLookup | None = None,
    scaling: CovariateScaling | None = None,
) -> ModelInputs:
    """
    Build the indexed, standardized model inputs from an interval dataset.

    Parameters
    ----------
    intervals : pd.DataFrame
        Processed interval rows with a region column.
    covariates : sequence of str, optional
        Covariates forming the columns of X. Default is `DEFAULT_COVARIATES`.
    lookup : IndexLookup, optional
        Country/region enumeration. Built from `intervals` if not given.
    scaling : CovariateScaling, optional
        Standardization constants. Fitted on `intervals` if not given.

    Returns
    -------
    ModelInputs
        Arrays aligned with the row order of `intervals`.

    Raises
    ------
    EmptyGroup
        If there are no intervals.
    IndexMismatch
        If a row references a country or region missing from `lookup`.
    DegenerateCovariate
        If a covariate has zero variance.
    """
    covariates = list(DEFAULT_COVARIATES if covariates is None else covariates)
    _check_columns(
        intervals,
        ["country", "region", "t_start", "t_stop", "interval_event_status", *covariates],
        what="intervals",
    )
    if len(intervals) == 0:
        raise EmptyGroup("No intervals to model")

    lookup = build_index_lookup(intervals) if lookup is None else lookup
    scaling = fit_scaling(intervals, covariates) if scaling is None else scaling

    countries = intervals["country"].astype(str)
    unknown = sorted(set(countries) - set(lookup.country_index))
    if unknown:
        raise IndexMismatch(f"Intervals reference countries not in the lookup: {unknown}")
    country_id = countries.map(lookup.country_index).to_numpy(dtype=np.int64)

    expected_region = np.asarray(lookup.country_region, dtype=object)[country_id - 1]
    wrong = intervals["region"].astype(str).to_numpy(dtype=object) != expected_region
    if wrong.any():
        raise IndexMismatch(
            f"{int(wrong.sum())} interval(s) carry a region different from the lookup, "
            f"e.g. country '{countries[wrong].iloc[0]}'"
        )

    inputs = ModelInputs(
        N_intervals=len(intervals),
        N_countries=len(lookup.countries),
        N_regions=len(lookup.regions),
        K=len(covariates),
        t_start=intervals["t_start"].to_numpy(dtype=np.float64),
        t_stop=intervals["t_stop"].to_numpy(dtype=np.float64),
        event=intervals["interval_event_status"].to_numpy(dtype=np.int64),
        country_id=country_id,
        region_id=lookup.region_id,
        X=scaling.transform(intervals),
        countries=lookup.countries,
        regions=lookup.regions,
        covariates=tuple(covariates),
        scaling=scaling,
    )
    validate_model_inputs(inputs)

    logger.info(
        "Assembled model inputs: %d intervals, %d countries, %d regions, %d covariates",
        inputs.N_intervals,
        inputs.N_countries,
        inputs.N_regions,
        inputs.K,
    )
    return inputs
