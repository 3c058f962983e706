"""
Error kinds raised while preparing survival data and model inputs.

Every error derives from `SurvivalDataError`, itself a `ValueError`, so
callers that already guard against ``ValueError`` keep working.
"""

from __future__ import annotations


class SurvivalDataError(ValueError):
    """Base class for data problems detected before model fitting."""


class DataContractViolation(SurvivalDataError):
    """Input rows break the panel or interval contract.

    Raised for missing, duplicated, non-ascending or non-consecutive years,
    unknown scarcity levels, missing covariates, and broken interval
    invariants.
    """


class UnmappedCountry(DataContractViolation):
    """A country has no entry in the country-to-region mapping."""

    def __init__(self, countries):
        self.countries = sorted(set(countries))
        super().__init__(
            f"No region mapping for {len(self.countries)} country(ies): "
            f"{self.countries}. Extend the mapping before preprocessing."
        )


class EmptyGroup(SurvivalDataError):
    """A country has zero observed rows."""


class DegenerateCovariate(SurvivalDataError):
    """A covariate has zero (or undefined) variance and cannot be standardized."""


class IndexMismatch(SurvivalDataError):
    """An interval references a country or region id that was not enumerated."""


class NumericSingularity(SurvivalDataError):
    """An interval would require evaluating log(0) in the likelihood."""


class ConvergenceWarning(UserWarning):
    """Sampler diagnostics indicate the chains may not have converged."""
