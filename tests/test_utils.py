"""Tests for data preparation utilities."""

import numpy as np
import pandas as pd
import pytest

from conftest import make_country_rows
from scarcitysurvival.exceptions import (
    DataContractViolation,
    DegenerateCovariate,
    EmptyGroup,
    IndexMismatch,
    NumericSingularity,
    SurvivalDataError,
    UnmappedCountry,
)
from scarcitysurvival.utils import (
    COLUMN_RENAMES,
    IndexLookup,
    ModelInputs,
    assemble_model_inputs,
    build_index_lookup,
    derive_survival_outcome,
    derive_survival_outcomes,
    fit_scaling,
    load_panel,
    load_processed_data,
    prepare_survival_data,
    save_processed_data,
    split_country_intervals,
    split_intervals,
    summarize_outcomes,
    validate_intervals,
    validate_model_inputs,
    validate_panel,
)


class TestLoadPanel:
    """Tests for load_panel function."""

    def test_renames_and_sorts(self, tmp_path):
        """Raw headers are renamed and rows sorted by country and year."""
        raw = pd.concat([
            make_country_rows("Brazil", 2000, 2002, high_from=2002),
            make_country_rows("Argentina", 2000, 2002),
        ])
        raw = raw.iloc[::-1].rename(columns={v: k for k, v in COLUMN_RENAMES.items()})
        path = tmp_path / "water.csv"
        raw.to_csv(path, index=False)

        panel = load_panel(path)

        assert list(panel["country"].unique()) == ["Argentina", "Brazil"]
        assert panel.loc[panel["country"] == "Brazil", "year"].tolist() == [2000, 2001, 2002]
        assert panel["scarcity_level"].cat.ordered
        assert list(panel["scarcity_level"].cat.categories) == ["Low", "Moderate", "High"]

    def test_missing_file_raises(self, tmp_path):
        """Test that a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_panel(tmp_path / "nope.csv")


class TestValidatePanel:
    """Tests for validate_panel function."""

    def test_valid_panel(self, panel):
        validate_panel(panel)

    def test_missing_covariate_values(self, panel):
        """Missing covariates are rejected rather than dropped."""
        panel.loc[3, "rainfall_mm"] = np.nan

        with pytest.raises(DataContractViolation, match="Missing covariate"):
            validate_panel(panel)

    def test_missing_column(self, panel):
        with pytest.raises(DataContractViolation, match="not found"):
            validate_panel(panel.drop(columns=["agri_use_pct"]))

    def test_unknown_scarcity_level(self, panel):
        panel["scarcity_level"] = panel["scarcity_level"].replace("High", "Extreme")

        with pytest.raises(DataContractViolation, match="Unknown scarcity level"):
            validate_panel(panel)

    def test_missing_country_name(self, panel):
        """Rows without a country are rejected, not dropped by groupby."""
        extra = make_country_rows("Brazil", 2025, 2026)
        extra["country"] = np.nan
        panel = pd.concat([panel, extra], ignore_index=True)

        with pytest.raises(DataContractViolation, match="2 row"):
            validate_panel(panel)
        with pytest.raises(SurvivalDataError):
            prepare_survival_data(panel)
        with pytest.raises(DataContractViolation, match="missing country"):
            derive_survival_outcomes(panel)

    def test_empty_panel(self, panel):
        with pytest.raises(EmptyGroup):
            validate_panel(panel.iloc[:0])


class TestDeriveSurvivalOutcome:
    """Tests for derive_survival_outcome function."""

    def test_brazil_event(self):
        """Brazil reaches High in 2013: time 13, event observed."""
        rows = make_country_rows("Brazil", 2000, 2024, high_from=2013)

        outcome = derive_survival_outcome(rows)

        assert outcome["country"] == "Brazil"
        assert outcome["start_year"] == 2000
        assert outcome["last_observation_year"] == 2024
        assert outcome["event_year"] == 2013
        assert outcome["time"] == 13
        assert outcome["event_status"] == 1

    def test_argentina_censored(self):
        """Argentina never reaches High: censored at 24 years."""
        rows = make_country_rows("Argentina", 2000, 2024)

        outcome = derive_survival_outcome(rows)

        assert outcome["event_year"] is None
        assert outcome["time"] == 24
        assert outcome["event_status"] == 0

    def test_first_high_year_is_the_event(self):
        """Later non-High years do not move the event."""
        rows = make_country_rows("India", 2000, 2010, high_from=2004)
        rows.loc[rows["year"] == 2007, "scarcity_level"] = "Low"

        outcome = derive_survival_outcome(rows)

        assert outcome["event_year"] == 2004
        assert outcome["time"] == 4

    def test_single_year_country(self):
        rows = make_country_rows("Japan", 2010, 2010)

        outcome = derive_survival_outcome(rows)

        assert outcome["time"] == 0
        assert outcome["event_status"] == 0

    def test_event_in_first_year(self):
        rows = make_country_rows("Egypt", 2000, 2005, high_from=2000)

        outcome = derive_survival_outcome(rows)

        assert outcome["time"] == 0
        assert outcome["event_status"] == 1
        assert outcome["event_year"] == 2000

    def test_empty_rows_raise(self):
        rows = make_country_rows("Japan", 2000, 2001).iloc[:0]

        with pytest.raises(EmptyGroup, match="Japan"):
            derive_survival_outcome(rows, country="Japan")

    def test_duplicate_years_raise(self):
        rows = make_country_rows("Japan", 2000, 2003)
        rows.loc[2, "year"] = 2001

        with pytest.raises(DataContractViolation, match="duplicated"):
            derive_survival_outcome(rows)

    def test_unsorted_years_raise(self):
        rows = make_country_rows("Japan", 2000, 2003).iloc[[0, 2, 1, 3]]

        with pytest.raises(DataContractViolation, match="ascending"):
            derive_survival_outcome(rows)

    def test_gap_in_years_raises(self):
        rows = make_country_rows("Japan", 2000, 2005)
        rows = rows[rows["year"] != 2003]

        with pytest.raises(DataContractViolation, match="missing years"):
            derive_survival_outcome(rows)

    def test_non_numeric_year_raises(self):
        rows = make_country_rows("Japan", 2000, 2003)
        rows["year"] = rows["year"].astype(object)
        rows.loc[1, "year"] = "abc"

        with pytest.raises(DataContractViolation, match="Japan.*non-numeric"):
            derive_survival_outcome(rows)

    def test_missing_year_raises(self):
        rows = make_country_rows("Japan", 2000, 2003)
        rows["year"] = rows["year"].astype(float)
        rows.loc[1, "year"] = np.nan

        with pytest.raises(DataContractViolation, match="missing year"):
            derive_survival_outcome(rows)


class TestDeriveSurvivalOutcomes:
    """Tests for derive_survival_outcomes function."""

    def test_one_row_per_country(self, panel):
        outcomes = derive_survival_outcomes(panel)

        assert len(outcomes) == panel["country"].nunique()
        assert outcomes["country"].tolist() == list(pd.unique(panel["country"]))
        assert str(outcomes["event_year"].dtype) == "Int64"

    def test_event_status_matches_event_year(self, panel):
        """event_status is 1 exactly when an event year is observed."""
        outcomes = derive_survival_outcomes(panel)

        has_event = outcomes["event_year"].notna().astype(int)
        assert (outcomes["event_status"] == has_event).all()
        assert (outcomes["time"] >= 0).all()

    def test_unused_category_is_empty_group(self, panel):
        """A categorical country with no rows is reported, not skipped."""
        panel["country"] = pd.Categorical(
            panel["country"], categories=[*pd.unique(panel["country"]), "Canada"]
        )

        with pytest.raises(EmptyGroup, match="Canada"):
            derive_survival_outcomes(panel)

    def test_summarize_outcomes(self, panel):
        summary = summarize_outcomes(derive_survival_outcomes(panel))

        assert summary["n_countries"] == 8
        assert summary["n_events"] == 6
        assert summary["censoring_rate"] == pytest.approx(0.25)


class TestSplitCountryIntervals:
    """Tests for split_country_intervals function."""

    def test_brazil_intervals(self, covariates):
        """13 unit intervals [0,1)...[12,13), only the last one flagged."""
        rows = make_country_rows("Brazil", 2000, 2024, high_from=2013)
        outcome = derive_survival_outcome(rows)

        intervals = split_country_intervals(rows, outcome, covariates)

        assert len(intervals) == 13
        assert intervals["t_start"].tolist() == list(range(13))
        assert intervals["t_stop"].tolist() == list(range(1, 14))
        assert intervals["interval_event_status"].tolist() == [0] * 12 + [1]
        assert intervals["year"].tolist() == list(range(2000, 2013))
        assert (intervals["overall_time"] == 13).all()
        assert (intervals["overall_event_status"] == 1).all()

    def test_argentina_intervals(self, covariates):
        """24 intervals and no flag for a censored country."""
        rows = make_country_rows("Argentina", 2000, 2024)
        outcome = derive_survival_outcome(rows)

        intervals = split_country_intervals(rows, outcome, covariates)

        assert len(intervals) == 24
        assert intervals["t_stop"].iloc[-1] == 24
        assert intervals["interval_event_status"].sum() == 0

    def test_covariates_are_raw_yearly_values(self, covariates):
        rows = make_country_rows("Brazil", 2000, 2024, high_from=2013)
        outcome = derive_survival_outcome(rows)

        intervals = split_country_intervals(rows, outcome, covariates)

        expected = rows.set_index("year").loc[intervals["year"], covariates]
        np.testing.assert_array_equal(intervals[covariates].values, expected.values)

    def test_zero_time_country_has_no_intervals(self, covariates):
        rows = make_country_rows("Egypt", 2000, 2005, high_from=2000)
        outcome = derive_survival_outcome(rows)

        intervals = split_country_intervals(rows, outcome, covariates)

        assert len(intervals) == 0

    def test_stop_is_clipped_to_survival_time(self, covariates):
        """A fractional survival time clips the last interval."""
        rows = make_country_rows("Spain", 2000, 2005)
        outcome = {
            "country": "Spain",
            "start_year": 2000,
            "time": 2.5,
            "event_status": 1,
        }

        intervals = split_country_intervals(rows, outcome, covariates)

        assert intervals["t_start"].tolist() == [0.0, 1.0, 2.0]
        assert intervals["t_stop"].tolist() == [1.0, 2.0, 2.5]
        assert intervals["interval_event_status"].tolist() == [0, 0, 1]


class TestSplitIntervals:
    """Counting-process invariants across all countries."""

    def test_intervals_tile_follow_up(self, panel, covariates):
        """Intervals tile [0, overall_time) with no gaps or overlaps."""
        outcomes = derive_survival_outcomes(panel)
        intervals = split_intervals(panel, outcomes, covariates)

        for country, g in intervals.groupby("country", sort=False):
            time = outcomes.set_index("country").loc[country, "time"]
            assert g["t_start"].iloc[0] == 0
            np.testing.assert_array_equal(g["t_start"].values[1:], g["t_stop"].values[:-1])
            assert g["t_stop"].iloc[-1] == time
            assert (g["t_stop"] - g["t_start"]).sum() == pytest.approx(time)
            assert (g["t_start"] < g["t_stop"]).all()

    def test_one_flag_per_event_country(self, panel, covariates):
        outcomes = derive_survival_outcomes(panel)
        intervals = split_intervals(panel, outcomes, covariates)

        flags = intervals.groupby("country")["interval_event_status"].sum()
        status = outcomes.set_index("country")
        for country, n_flags in flags.items():
            assert n_flags == status.loc[country, "event_status"]

        flagged = intervals[intervals["interval_event_status"] == 1]
        assert (flagged["t_stop"] == flagged["overall_time"]).all()

    def test_countries_keep_panel_order(self, panel, covariates):
        outcomes = derive_survival_outcomes(panel)
        intervals = split_intervals(panel, outcomes, covariates)

        # Egypt has zero follow-up and disappears
        expected = [c for c in pd.unique(panel["country"]) if c != "Egypt"]
        assert list(pd.unique(intervals["country"])) == expected

    def test_missing_outcome_raises(self, panel, covariates):
        outcomes = derive_survival_outcomes(panel)

        with pytest.raises(DataContractViolation, match="No survival outcome"):
            split_intervals(panel, outcomes[outcomes["country"] != "Brazil"], covariates)


class TestValidateIntervals:
    """Tests for validate_intervals function."""

    def test_valid_intervals(self, intervals):
        validate_intervals(intervals)

    def test_gap_detected(self, intervals):
        broken = intervals.drop(index=intervals.index[3])

        with pytest.raises(DataContractViolation, match="gaps or overlaps"):
            validate_intervals(broken)

    def test_wrong_flag_detected(self, intervals):
        broken = intervals.copy()
        censored = broken.index[broken["country"] == "Argentina"]
        broken.loc[censored[-1], "interval_event_status"] = 1

        with pytest.raises(DataContractViolation, match="event flags"):
            validate_intervals(broken)

    def test_short_follow_up_detected(self, intervals):
        broken = intervals.copy()
        brazil = broken.index[broken["country"] == "Brazil"]
        broken = broken.drop(index=brazil[-1])

        with pytest.raises(DataContractViolation):
            validate_intervals(broken)


class TestPrepareSurvivalData:
    """Tests for prepare_survival_data and persistence."""

    def test_output_columns(self, intervals, covariates):
        expected = [
            "country",
            "t_start",
            "t_stop",
            "interval_event_status",
            *covariates,
            "year",
            "overall_time",
            "overall_event_status",
            "region",
        ]
        assert list(intervals.columns) == expected

    def test_region_assignment_is_total(self, intervals, outcomes):
        assert intervals["region"].notna().all()
        assert outcomes["region"].notna().all()
        assert isinstance(intervals["region"].dtype, pd.CategoricalDtype)

    def test_unmapped_country_raises(self, panel):
        extra = make_country_rows("Atlantis", 2000, 2003)

        with pytest.raises(UnmappedCountry, match="Atlantis"):
            prepare_survival_data(pd.concat([panel, extra], ignore_index=True))

    def test_save_and_load(self, intervals, tmp_path):
        path = save_processed_data(intervals, tmp_path / "processed" / "intervals.csv")

        loaded = load_processed_data(path)

        pd.testing.assert_frame_equal(
            loaded.drop(columns="region"),
            intervals.drop(columns="region"),
            check_dtype=False,
        )
        assert list(loaded["region"].cat.categories) == list(intervals["region"].cat.categories)
        assert (loaded["region"].astype(str) == intervals["region"].astype(str)).all()


class TestFitScaling:
    """Tests for covariate standardization."""

    def test_standardized_moments(self, intervals, covariates):
        """Standardized covariates have zero mean and unit variance."""
        scaling = fit_scaling(intervals, covariates)
        X = scaling.transform(intervals)

        np.testing.assert_allclose(X.mean(axis=0), 0.0, atol=1e-10)
        np.testing.assert_allclose(X.std(axis=0, ddof=1), 1.0, rtol=1e-10)

    def test_constants_are_stored(self, intervals, covariates):
        scaling = fit_scaling(intervals, covariates)

        assert scaling.covariates == covariates
        assert scaling.means["rainfall_mm"] == pytest.approx(intervals["rainfall_mm"].mean())

    def test_zero_variance_raises(self, intervals, covariates):
        intervals = intervals.assign(agri_use_pct=50.0)

        with pytest.raises(DegenerateCovariate, match="agri_use_pct"):
            fit_scaling(intervals, covariates)


class TestBuildIndexLookup:
    """Tests for build_index_lookup function."""

    def test_enumeration(self, intervals):
        lookup = build_index_lookup(intervals)

        assert lookup.countries == tuple(pd.unique(intervals["country"]))
        assert lookup.regions == tuple(sorted(lookup.regions))
        assert lookup.country_index[lookup.countries[0]] == 1
        assert len(lookup.region_id) == len(lookup.countries)

    def test_country_in_two_regions_raises(self, intervals):
        intervals = intervals.copy()
        intervals["region"] = intervals["region"].astype(str)
        intervals.loc[intervals.index[0], "region"] = "Europe"

        with pytest.raises(DataContractViolation, match="more than one region"):
            build_index_lookup(intervals)


class TestAssembleModelInputs:
    """Tests for assemble_model_inputs function."""

    def test_counts_and_shapes(self, intervals, covariates):
        inputs = assemble_model_inputs(intervals, covariates)

        assert inputs.N_intervals == len(intervals)
        assert inputs.N_countries == intervals["country"].nunique()
        assert inputs.N_regions == len(intervals["region"].cat.categories)
        assert inputs.K == 3
        assert inputs.X.shape == (inputs.N_intervals, inputs.K)
        assert inputs.region_id.shape == (inputs.N_countries,)

    def test_ids_in_bounds(self, intervals, covariates):
        inputs = assemble_model_inputs(intervals, covariates)

        assert inputs.country_id.min() >= 1
        assert inputs.country_id.max() <= inputs.N_countries
        assert inputs.region_id.min() >= 1
        assert inputs.region_id.max() <= inputs.N_regions

    def test_row_order_preserved(self, intervals, covariates):
        """Row i of X, t_start and event all describe interval row i."""
        inputs = assemble_model_inputs(intervals, covariates)

        np.testing.assert_array_equal(inputs.t_start, intervals["t_start"].values)
        np.testing.assert_array_equal(inputs.event, intervals["interval_event_status"].values)
        expected = (
            (intervals["rainfall_mm"] - intervals["rainfall_mm"].mean())
            / intervals["rainfall_mm"].std()
        )
        np.testing.assert_allclose(inputs.X[:, 1], expected.values)
        countries = np.array(inputs.countries)[inputs.country_id - 1]
        np.testing.assert_array_equal(countries, intervals["country"].values)

    def test_region_of_each_country(self, intervals, covariates):
        inputs = assemble_model_inputs(intervals, covariates)

        regions = np.array(inputs.regions)[inputs.interval_region_id - 1]
        np.testing.assert_array_equal(regions, intervals["region"].astype(str).values)

    def test_arrays_are_read_only(self, intervals, covariates):
        inputs = assemble_model_inputs(intervals, covariates)

        with pytest.raises(ValueError):
            inputs.X[0, 0] = 10.0
        with pytest.raises(ValueError):
            inputs.country_id[0] = 2

    def test_to_dict_contract(self, intervals, covariates):
        data = assemble_model_inputs(intervals, covariates).to_dict()

        assert set(data) == {
            "N_intervals", "N_countries", "N_regions", "K",
            "t_start", "t_stop", "event", "country_id", "region_id", "X",
        }

    def test_unknown_country_in_lookup(self, intervals, covariates):
        lookup = build_index_lookup(intervals[intervals["country"] != "Brazil"])

        with pytest.raises(IndexMismatch, match="Brazil"):
            assemble_model_inputs(intervals, covariates, lookup=lookup)

    def test_region_not_enumerated(self, intervals, covariates):
        lookup = build_index_lookup(intervals)
        lookup = IndexLookup(
            countries=lookup.countries,
            regions=lookup.regions[1:],
            country_region=lookup.country_region,
        )

        with pytest.raises(IndexMismatch):
            assemble_model_inputs(intervals, covariates, lookup=lookup)

    def test_degenerate_covariate(self, intervals, covariates):
        with pytest.raises(DegenerateCovariate):
            assemble_model_inputs(intervals.assign(rainfall_mm=1000.0), covariates)

    def test_no_intervals(self, intervals, covariates):
        with pytest.raises(EmptyGroup):
            assemble_model_inputs(intervals.iloc[:0], covariates)


class TestValidateModelInputs:
    """Tests for validate_model_inputs function."""

    @staticmethod
    def _inputs(**overrides):
        fields = dict(
            N_intervals=3,
            N_countries=2,
            N_regions=1,
            K=1,
            t_start=[0.0, 1.0, 0.0],
            t_stop=[1.0, 2.0, 1.0],
            event=[0, 1, 0],
            country_id=[1, 1, 2],
            region_id=[1, 1],
            X=[[0.5], [-0.5], [0.0]],
        )
        fields.update(overrides)
        return ModelInputs(**fields)

    def test_valid(self):
        validate_model_inputs(self._inputs())

    def test_country_id_out_of_bounds(self):
        with pytest.raises(IndexMismatch, match="country_id"):
            validate_model_inputs(self._inputs(country_id=[1, 3, 2]))

    def test_region_id_out_of_bounds(self):
        with pytest.raises(IndexMismatch, match="region_id"):
            validate_model_inputs(self._inputs(region_id=[1, 2]))

    def test_region_id_length(self):
        with pytest.raises(DataContractViolation, match="region_id"):
            validate_model_inputs(self._inputs(region_id=[1]))

    def test_zero_stop_time(self):
        with pytest.raises(NumericSingularity):
            validate_model_inputs(self._inputs(t_stop=[1.0, 2.0, 0.0]))
