"""
Scarcity Survival - Bayesian time-to-event modelling of water scarcity.

This package turns a per-country, per-year panel of water-use indicators
into counting-process survival data and fits a hierarchical Bayesian
Weibull model, built on PyMC, of how long it takes a country to reach a
"High" water scarcity level. The baseline hazard scale varies by region and
covariates vary over time.

The main estimator class is `BayesianWeibullSurvival`.

Example
-------
>>> from scarcitysurvival import (
...     BayesianWeibullSurvival,
...     load_panel,
...     prepare_survival_data,
... )
>>>
>>> panel = load_panel("data/cleaned_global_water_consumption.csv")
>>> intervals, outcomes = prepare_survival_data(panel)
>>>
>>> model = BayesianWeibullSurvival(draws=1500, tune=1000, chains=4)
>>> model.fit(intervals)
>>>
>>> print(model.get_hazard_ratios())
>>> print(model.posterior_predictive_check())
"""

from importlib.metadata import PackageNotFoundError, version

# Version
try:
    __version__ = version("scarcitysurvival")
except PackageNotFoundError:
    __version__ = "0.1.0"

# Main estimator
from .estimators import BayesianWeibullSurvival, load_fit

# Errors
from .exceptions import (
    ConvergenceWarning,
    DataContractViolation,
    DegenerateCovariate,
    EmptyGroup,
    IndexMismatch,
    NumericSingularity,
    SurvivalDataError,
    UnmappedCountry,
)

# Model building functions
from .models import (
    FitDiagnostics,
    build_survival_model,
    check_convergence,
    compute_cumulative_hazard,
    compute_hazard_ratios,
    compute_log_hazard,
    compute_loo,
    compute_region_scales,
    compute_waic,
    extract_parameter_summary,
    fit_model,
    interval_log_likelihood,
    posterior_predictive_event_counts,
    sample_event_replicates,
    sample_prior_predictive,
    simulate_events,
)

# Region lookup
from .regions import COUNTRY_REGIONS, Region, assign_region, assign_regions

# Utility functions
from .utils import (
    CovariateScaling,
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

__all__ = [
    # Version
    "__version__",
    # Main estimator
    "BayesianWeibullSurvival",
    "load_fit",
    # Errors
    "SurvivalDataError",
    "DataContractViolation",
    "UnmappedCountry",
    "EmptyGroup",
    "DegenerateCovariate",
    "IndexMismatch",
    "NumericSingularity",
    "ConvergenceWarning",
    # Model functions
    "build_survival_model",
    "fit_model",
    "sample_prior_predictive",
    "compute_log_hazard",
    "compute_cumulative_hazard",
    "interval_log_likelihood",
    "simulate_events",
    "sample_event_replicates",
    "FitDiagnostics",
    "check_convergence",
    "compute_hazard_ratios",
    "compute_region_scales",
    "posterior_predictive_event_counts",
    "extract_parameter_summary",
    "compute_waic",
    "compute_loo",
    # Regions
    "Region",
    "COUNTRY_REGIONS",
    "assign_region",
    "assign_regions",
    # Utility functions
    "load_panel",
    "validate_panel",
    "derive_survival_outcome",
    "derive_survival_outcomes",
    "summarize_outcomes",
    "split_country_intervals",
    "split_intervals",
    "validate_intervals",
    "prepare_survival_data",
    "save_processed_data",
    "load_processed_data",
    "CovariateScaling",
    "fit_scaling",
    "IndexLookup",
    "build_index_lookup",
    "ModelInputs",
    "validate_model_inputs",
    "assemble_model_inputs",
]
