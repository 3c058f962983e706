"""
High-level estimator class for the Bayesian water scarcity survival model.

This module provides a scikit-learn-style estimator that assembles model
inputs from a processed interval dataset, samples the hierarchical Weibull
model, and exposes the quantities used downstream (hazard ratios, region
scales, posterior-predictive event counts, diagnostics).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Sequence

import arviz as az
import pandas as pd
import pymc as pm

from .models import (
    FitDiagnostics,
    add_event_replicates,
    build_survival_model,
    check_convergence,
    compute_hazard_ratios,
    compute_loo,
    compute_region_scales,
    compute_waic,
    extract_parameter_summary,
    fit_model,
    posterior_predictive_event_counts,
    sample_event_replicates,
    sample_prior_predictive,
)
from .utils import DEFAULT_COVARIATES, ModelInputs, assemble_model_inputs

logger = logging.getLogger(__name__)


class BayesianWeibullSurvival:
    """
    Hierarchical Bayesian survival model of the time to "High" water scarcity.

    Each country contributes counting-process intervals with time-varying
    covariates. The hazard follows a Weibull form with a region-specific
    baseline scale:

        log h_i(t) = log(alpha) + (alpha - 1) log(t) + log_lambda[r] + X_i beta
        log_lambda[r] = mu_lambda + sigma_lambda * eta_region[r]

    where:
    - alpha is the Weibull shape, shared by all countries
    - beta are covariate effects on the log-hazard (exp(beta) are hazard
      ratios per standard deviation of the covariate)
    - log_lambda[r] is the log baseline scale of region r, drawn from a
      non-centered hierarchical prior

    Parameters
    ----------
    covariates : sequence of str, optional
        Covariate columns of the interval data. Default is
        ``("agri_use_pct", "rainfall_mm", "groundwater_depletion_pct")``.
    priors : dict, optional
        Prior overrides passed to `models.build_survival_model`.
    draws : int, optional
        Number of posterior samples per chain. Default is 1500.
    tune : int, optional
        Number of warm-up samples per chain. Default is 1000.
    chains : int, optional
        Number of MCMC chains. Default is 4.
    target_accept : float, optional
        Target acceptance probability for NUTS sampler. Default is 0.95.
    random_seed : int, optional
        Random seed for reproducibility. Default is 123.
    cores : int, optional
        Number of chains sampled in parallel. Default lets PyMC decide.
    rhat_threshold : float, optional
        R-hat above which a convergence warning is emitted. Default is 1.01.
    min_ess : float, optional
        Bulk/tail ESS below which a convergence warning is emitted.
        Default is 400.

    Attributes
    ----------
    data_ : pd.DataFrame
        The interval data the model was built from.
    inputs_ : ModelInputs
        Indexed, standardized inputs (read-only arrays).
    model_ : pm.Model
        The PyMC model.
    idata : az.InferenceData
        Posterior samples, log-likelihood and "event_rep" replicates.
    diagnostics_ : FitDiagnostics
        Convergence diagnostics of the last fit.

    Examples
    --------
    >>> from scarcitysurvival import BayesianWeibullSurvival, load_processed_data
    >>> intervals = load_processed_data("data/processed_water_survival_data.csv")
    >>> model = BayesianWeibullSurvival(draws=1000, tune=500)
    >>> model.fit(intervals)
    >>> model.get_hazard_ratios()
    """

    def __init__(
        self,
        covariates: Sequence[str] | None = None,
        priors: dict[str, Any] | None = None,
        draws: int = 1500,
        tune: int = 1000,
        chains: int = 4,
        target_accept: float = 0.95,
        random_seed: int | None = 123,
        cores: int | None = None,
        rhat_threshold: float = 1.01,
        min_ess: float = 400.0,
    ):
        self.covariates = list(DEFAULT_COVARIATES if covariates is None else covariates)
        self.priors = priors
        self.draws = draws
        self.tune = tune
        self.chains = chains
        self.target_accept = target_accept
        self.random_seed = random_seed
        self.cores = cores
        self.rhat_threshold = rhat_threshold
        self.min_ess = min_ess

        # Fitted attributes (set by fit())
        self.data_: pd.DataFrame | None = None
        self.inputs_: ModelInputs | None = None
        self.model_: pm.Model | None = None
        self.idata: az.InferenceData | None = None
        self.prior_idata_: az.InferenceData | None = None
        self.diagnostics_: FitDiagnostics | None = None
        self._is_fitted: bool = False

    def build_model(self, data: pd.DataFrame) -> "BayesianWeibullSurvival":
        """
        Assemble inputs and build the PyMC model without sampling.

        Parameters
        ----------
        data : pd.DataFrame
            Processed interval data with a region column (see
            `utils.prepare_survival_data`).

        Returns
        -------
        self
            The estimator with `inputs_` and `model_` set.
        """
        self.data_ = data.copy()
        self.inputs_ = assemble_model_inputs(self.data_, self.covariates)
        self.model_ = build_survival_model(self.inputs_, priors=self.priors)
        self._is_fitted = False
        return self

    def fit(self, data: pd.DataFrame) -> "BayesianWeibullSurvival":
        """
        Fit the model to a processed interval dataset.

        The inputs are assembled once and stay read-only while the chains
        run. After sampling, interval event replicates are simulated for
        every draw and convergence diagnostics are attached. Poor
        convergence produces warnings, not errors.

        Parameters
        ----------
        data : pd.DataFrame
            Processed interval data with a region column.

        Returns
        -------
        self
            The fitted estimator.
        """
        self.build_model(data)

        logger.info(
            "Sampling %d chains (%d warm-up, %d draws, target_accept=%.2f)",
            self.chains,
            self.tune,
            self.draws,
            self.target_accept,
        )
        self.idata = fit_model(
            self.model_,
            draws=self.draws,
            tune=self.tune,
            chains=self.chains,
            target_accept=self.target_accept,
            random_seed=self.random_seed,
            cores=self.cores,
        )
        logger.info("Sampling finished")

        replicates = sample_event_replicates(
            self.inputs_, self.idata, random_seed=self.random_seed
        )
        add_event_replicates(self.idata, replicates)

        self.diagnostics_ = check_convergence(
            self.idata, rhat_threshold=self.rhat_threshold, min_ess=self.min_ess
        )

        self._is_fitted = True
        return self

    def sample_prior_predictive(
        self,
        data: pd.DataFrame | None = None,
        draws: int = 500,
        random_seed: int | None = None,
    ) -> az.InferenceData:
        """
        Sample from the prior predictive distribution.

        Parameters
        ----------
        data : pd.DataFrame, optional
            Interval data to build the model from. If None, uses the model
            built by a previous `build_model()` or `fit()`.
        draws : int, optional
            Number of prior predictive samples. Default is 500.
        random_seed : int, optional
            Random seed. Defaults to the estimator's seed.

        Returns
        -------
        az.InferenceData
            InferenceData with prior and prior_predictive groups.
        """
        if data is not None:
            self.build_model(data)
        elif self.model_ is None:
            raise ValueError(
                "No data provided and model not yet built. "
                "Either pass data or call build_model() first."
            )

        self.prior_idata_ = sample_prior_predictive(
            self.model_,
            draws=draws,
            random_seed=random_seed if random_seed is not None else self.random_seed,
        )
        return self.prior_idata_

    def get_parameter_summary(
        self,
        var_names: list[str] | None = None,
        filter_vars: str | None = None,
        hdi_prob: float = 0.94,
    ) -> pd.DataFrame:
        """ArviZ summary of alpha, beta, mu_lambda, sigma_lambda and lambda."""
        self._check_is_fitted()
        return extract_parameter_summary(
            self.idata, var_names=var_names, filter_vars=filter_vars, hdi_prob=hdi_prob
        )

    def get_hazard_ratios(self, quantiles: Sequence[float] = (0.025, 0.975)) -> pd.DataFrame:
        """Posterior summary of exp(beta), one row per covariate."""
        self._check_is_fitted()
        return compute_hazard_ratios(self.idata, quantiles=quantiles)

    def get_region_scales(self, quantiles: Sequence[float] = (0.025, 0.975)) -> pd.DataFrame:
        """Posterior summary of the region baseline scales."""
        self._check_is_fitted()
        return compute_region_scales(self.idata, quantiles=quantiles)

    def posterior_predictive_check(self) -> pd.DataFrame:
        """
        Observed versus replicated event counts, in total and per region.

        Returns
        -------
        pd.DataFrame
            See `models.posterior_predictive_event_counts`.
        """
        self._check_is_fitted()
        return posterior_predictive_event_counts(self.idata, self.inputs_)

    def compute_waic(self) -> az.ELPDData:
        self._check_is_fitted()
        return compute_waic(self.idata)

    def compute_loo(self) -> az.ELPDData:
        self._check_is_fitted()
        return compute_loo(self.idata)

    def get_model_dimensions(self) -> dict[str, int]:
        """
        Get the model dimensions.

        Returns
        -------
        dict[str, int]
            N_intervals, N_countries, N_regions, K and, once fitted,
            num_samples (chains times draws).
        """
        if self.inputs_ is None:
            raise ValueError("Model has not been built. Call build_model() or fit() first.")

        dims = {
            "N_intervals": self.inputs_.N_intervals,
            "N_countries": self.inputs_.N_countries,
            "N_regions": self.inputs_.N_regions,
            "K": self.inputs_.K,
        }
        if self._is_fitted:
            posterior = self.idata.posterior
            dims["num_samples"] = posterior.sizes["chain"] * posterior.sizes["draw"]
        return dims

    def save(self, path: str | Path) -> Path:
        """
        Write the fit artifact (posterior, replicates, diagnostics) to NetCDF.

        Returns
        -------
        Path
            The written path.
        """
        self._check_is_fitted()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.idata.to_netcdf(str(path))
        logger.info("Saved fit artifact to %s", path)
        return path

    def _check_is_fitted(self) -> None:
        """Check if the model has been fitted."""
        if not self._is_fitted:
            raise ValueError(
                "Model has not been fitted. Call fit() before using this method."
            )

    def __repr__(self) -> str:
        fitted_str = "fitted" if self._is_fitted else "not fitted"
        return (
            f"BayesianWeibullSurvival(\n"
            f"    covariates={self.covariates},\n"
            f"    draws={self.draws},\n"
            f"    tune={self.tune},\n"
            f"    chains={self.chains},\n"
            f"    target_accept={self.target_accept},\n"
            f"    status={fitted_str}\n"
            f")"
        )


def load_fit(path: str | Path) -> az.InferenceData:
    """Read a fit artifact written by `BayesianWeibullSurvival.save`."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Fit artifact not found: {path}")
    return az.from_netcdf(str(path))
