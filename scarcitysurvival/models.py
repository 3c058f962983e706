"""
Low-level model building functions for the hierarchical survival model.

This module builds the PyMC model of the time to reach "High" water
scarcity, and provides the numpy versions of its likelihood and
posterior-predictive simulation used to check and post-process fits.

Model Structure
---------------
For interval ``i`` of a country in region ``r``:

    log_lambda[r]  = mu_lambda + sigma_lambda * eta_region[r]
    log_hazard[i]  = log_lambda[r] + X[i] @ beta
    H[i]           = exp(log_hazard[i]) * (t_stop[i]**alpha - t_start[i]**alpha)

and the interval log-likelihood is

    event[i] = 1:  log(alpha) + (alpha - 1) * log(t_stop[i]) + log_hazard[i] - H[i]
    event[i] = 0:  -H[i]

a piecewise-exponential approximation of a Weibull hazard with time-varying
covariates. The region effects use a non-centered parameterization
(``eta_region`` is standard normal and shifted/scaled by the
hyperparameters).
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Any, Sequence

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
import pytensor.tensor as pt
import xarray as xr

from .exceptions import ConvergenceWarning
from .utils import ModelInputs

logger = logging.getLogger(__name__)

# Substituted for log(t_stop) when t_stop == 0
LOG_ZERO_GUARD = -1e10

DEFAULT_PRIORS: dict[str, dict[str, float]] = {
    "alpha": {"alpha": 2.0, "beta": 2.0},
    "beta": {"mu": 0.0, "sigma": 1.0},
    "mu_lambda": {"mu": 0.0, "sigma": 5.0},
    "sigma_lambda": {"sigma": 1.0},
}

PARAMETER_NAMES = ["alpha", "beta", "mu_lambda", "sigma_lambda", "lambda"]


# =============================================================================
# PyTensor likelihood
# =============================================================================


def _pt_log_t(t):
    positive = pt.gt(t, 0)
    return pt.switch(positive, pt.log(pt.switch(positive, t, 1.0)), LOG_ZERO_GUARD)


def _pt_power(t, alpha):
    # exp(alpha * log t) keeps the gradient in alpha finite at t = 0
    positive = pt.gt(t, 0)
    return pt.switch(positive, pt.exp(alpha * pt.log(pt.switch(positive, t, 1.0))), 0.0)


def interval_logp(value, log_hazard, alpha, t_start, t_stop):
    """Elementwise log-likelihood of interval event flags (PyTensor)."""
    cum_hazard = pt.exp(log_hazard) * (_pt_power(t_stop, alpha) - _pt_power(t_start, alpha))
    event_logp = pt.log(alpha) + (alpha - 1.0) * _pt_log_t(t_stop) + log_hazard
    return value * event_logp - cum_hazard


def interval_random(log_hazard, alpha, t_start, t_stop, rng=None, size=None):
    """Draw interval event flags given the hazard parameters (numpy)."""
    cum_hazard = compute_cumulative_hazard(log_hazard, alpha, t_start, t_stop)
    return rng.binomial(1, event_probability(cum_hazard), size=size)


# =============================================================================
# Model building
# =============================================================================


def _labels(labels: Sequence[str], n: int, prefix: str) -> list[str]:
    if len(labels) == n:
        return list(labels)
    return [f"{prefix}_{i + 1}" for i in range(n)]


def build_survival_model(
    inputs: ModelInputs,
    priors: dict[str, Any] | None = None,
) -> pm.Model:
    """
    Build the PyMC hierarchical Weibull survival model.

    Parameters
    ----------
    inputs : ModelInputs
        Indexed model inputs (see `utils.assemble_model_inputs`). Ids are
        1-based and converted to 0-based here.
    priors : dict, optional
        Custom prior specifications. Keys can include:
        - "alpha": dict with "alpha" and "beta" of the Gamma prior on the
          Weibull shape (default mean 1, i.e. a constant baseline hazard)
        - "beta": dict with "mu" and "sigma" for covariate effects
        - "mu_lambda": dict with "mu" and "sigma" for the mean region
          log-scale
        - "sigma_lambda": dict with "sigma" of the HalfNormal prior on the
          spread of region log-scales

    Returns
    -------
    pm.Model
        A PyMC model object ready for sampling, with observed variable
        "event" and deterministics "log_lambda" and "lambda" per region.

    Examples
    --------
    >>> from scarcitysurvival.utils import assemble_model_inputs
    >>> inputs = assemble_model_inputs(intervals)
    >>> model = build_survival_model(inputs, priors={"beta": {"sigma": 0.5}})
    """
    priors = priors or {}
    alpha_prior = {**DEFAULT_PRIORS["alpha"], **priors.get("alpha", {})}
    beta_prior = {**DEFAULT_PRIORS["beta"], **priors.get("beta", {})}
    mu_lambda_prior = {**DEFAULT_PRIORS["mu_lambda"], **priors.get("mu_lambda", {})}
    sigma_lambda_prior = {**DEFAULT_PRIORS["sigma_lambda"], **priors.get("sigma_lambda", {})}

    coords = {
        "region": _labels(inputs.regions, inputs.N_regions, "region"),
        "country": _labels(inputs.countries, inputs.N_countries, "country"),
        "covariate": _labels(inputs.covariates, inputs.K, "x"),
        "interval": np.arange(inputs.N_intervals),
    }

    with pm.Model(coords=coords) as model:
        # Data containers
        country_idx = pm.Data("country_idx", inputs.country_id - 1, dims="interval")
        region_idx = pm.Data("region_idx", inputs.region_id - 1, dims="country")
        t_start = pm.Data("t_start", inputs.t_start, dims="interval")
        t_stop = pm.Data("t_stop", inputs.t_stop, dims="interval")
        X = pm.Data("X", inputs.X, dims=("interval", "covariate"))

        # ===== Parameters =====
        alpha = pm.Gamma("alpha", alpha=alpha_prior["alpha"], beta=alpha_prior["beta"])
        beta = pm.Normal(
            "beta", mu=beta_prior["mu"], sigma=beta_prior["sigma"], dims="covariate"
        )
        mu_lambda = pm.Normal(
            "mu_lambda", mu=mu_lambda_prior["mu"], sigma=mu_lambda_prior["sigma"]
        )
        sigma_lambda = pm.HalfNormal("sigma_lambda", sigma=sigma_lambda_prior["sigma"])
        eta_region = pm.Normal("eta_region", mu=0.0, sigma=1.0, dims="region")

        # ===== Transformed Parameters =====
        log_lambda = pm.Deterministic(
            "log_lambda", mu_lambda + sigma_lambda * eta_region, dims="region"
        )
        pm.Deterministic("lambda", pt.exp(log_lambda), dims="region")

        log_hazard = log_lambda[region_idx[country_idx]] + pt.dot(X, beta)

        # ===== Likelihood =====
        pm.CustomDist(
            "event",
            log_hazard,
            alpha,
            t_start,
            t_stop,
            logp=interval_logp,
            random=interval_random,
            observed=inputs.event,
            dims="interval",
            dtype="int64",
        )

    return model


def fit_model(
    model: pm.Model,
    draws: int = 1500,
    tune: int = 1000,
    chains: int = 4,
    target_accept: float = 0.95,
    random_seed: int | None = None,
    cores: int | None = None,
    **kwargs: Any,
) -> az.InferenceData:
    """
    Sample the model with NUTS.

    Parameters
    ----------
    model : pm.Model
        The model to fit.
    draws : int, optional
        Number of posterior samples per chain. Default is 1500.
    tune : int, optional
        Number of warm-up samples per chain. Default is 1000.
    chains : int, optional
        Number of independent chains. Default is 4.
    target_accept : float, optional
        Target acceptance probability for NUTS. Default is 0.95.
    random_seed : int, optional
        Random seed for reproducibility.
    cores : int, optional
        Number of chains to run in parallel. Default lets PyMC decide.
    **kwargs
        Additional arguments passed to `pm.sample`.

    Returns
    -------
    az.InferenceData
        Posterior samples, sample stats, observed data and log-likelihood.
    """
    idata_kwargs = kwargs.pop("idata_kwargs", {})
    if "log_likelihood" not in idata_kwargs:
        idata_kwargs["log_likelihood"] = True

    with model:
        idata = pm.sample(
            draws=draws,
            tune=tune,
            chains=chains,
            cores=cores,
            target_accept=target_accept,
            random_seed=random_seed,
            return_inferencedata=True,
            idata_kwargs=idata_kwargs,
            **kwargs,
        )

    return idata


def sample_prior_predictive(
    model: pm.Model,
    draws: int = 500,
    random_seed: int | None = None,
) -> az.InferenceData:
    """
    Sample parameters and interval event flags from the prior.

    Useful to check that the priors imply plausible event counts before
    fitting.
    """
    with model:
        return pm.sample_prior_predictive(draws=draws, random_seed=random_seed)


# =============================================================================
# Numpy likelihood and posterior-predictive simulation
# =============================================================================


def compute_log_hazard(
    inputs: ModelInputs,
    beta: np.ndarray,
    log_lambda: np.ndarray,
) -> np.ndarray:
    """
    Per-interval log-hazard contribution ``log_lambda[region] + X @ beta``.

    `beta` has shape (..., K) and `log_lambda` shape (..., N_regions); any
    leading sample dimensions are kept, giving (..., N_intervals).
    """
    beta = np.asarray(beta, dtype=np.float64)
    log_lambda = np.asarray(log_lambda, dtype=np.float64)
    region_idx = inputs.interval_region_id - 1
    return log_lambda[..., region_idx] + np.einsum("ik,...k->...i", inputs.X, beta)


def compute_cumulative_hazard(log_hazard, alpha, t_start, t_stop) -> np.ndarray:
    """Cumulative hazard increment ``exp(log_hazard) * (t_stop**alpha - t_start**alpha)``."""
    alpha = np.asarray(alpha, dtype=np.float64)
    return np.exp(log_hazard) * (
        np.power(np.asarray(t_stop, dtype=np.float64), alpha)
        - np.power(np.asarray(t_start, dtype=np.float64), alpha)
    )


def event_probability(cum_hazard) -> np.ndarray:
    """Probability of at least one event in an interval, ``1 - exp(-max(0, H))``."""
    return -np.expm1(-np.maximum(cum_hazard, 0.0))


def interval_log_likelihood(event, log_hazard, alpha, t_start, t_stop) -> np.ndarray:
    """
    Closed-form interval log-likelihood (numpy).

    Uses the same guard as the model: ``log(t_stop)`` is replaced by
    `LOG_ZERO_GUARD` where ``t_stop == 0``.

    Parameters
    ----------
    event : array-like
        Interval event flags (0/1).
    log_hazard : array-like
        Per-interval log-hazard contribution.
    alpha : float or array-like
        Weibull shape, broadcastable against `log_hazard`.
    t_start, t_stop : array-like
        Interval bounds.

    Returns
    -------
    np.ndarray
        Log-likelihood contribution of each interval.
    """
    alpha = np.asarray(alpha, dtype=np.float64)
    t_stop = np.asarray(t_stop, dtype=np.float64)
    log_t_stop = np.where(t_stop > 0, np.log(np.where(t_stop > 0, t_stop, 1.0)), LOG_ZERO_GUARD)

    cum_hazard = compute_cumulative_hazard(log_hazard, alpha, t_start, t_stop)
    event_logp = np.log(alpha) + (alpha - 1.0) * log_t_stop + log_hazard
    return np.where(np.asarray(event) == 1, event_logp - cum_hazard, -cum_hazard)


def log_likelihood(
    inputs: ModelInputs,
    alpha: float,
    beta: np.ndarray,
    log_lambda: np.ndarray,
) -> np.ndarray:
    """Per-interval log-likelihood of `inputs` at one parameter value."""
    log_hazard = compute_log_hazard(inputs, beta, log_lambda)
    return interval_log_likelihood(inputs.event, log_hazard, alpha, inputs.t_start, inputs.t_stop)


def simulate_events(
    inputs: ModelInputs,
    alpha: float,
    beta: np.ndarray,
    log_lambda: np.ndarray,
    rng: np.random.Generator | int | None = None,
) -> np.ndarray:
    """
    Simulate one replicate of the interval event flags.

    For a single parameter draw, each interval has an event with probability
    ``1 - exp(-max(0, H_i))``.

    Parameters
    ----------
    inputs : ModelInputs
        Model inputs.
    alpha : float
        Weibull shape.
    beta : np.ndarray
        Covariate coefficients, shape (K,).
    log_lambda : np.ndarray
        Region log-scales, shape (N_regions,).
    rng : np.random.Generator or int, optional
        Random generator or seed.

    Returns
    -------
    np.ndarray
        Integer 0/1 array of shape (N_intervals,).
    """
    rng = np.random.default_rng(rng)
    log_hazard = compute_log_hazard(inputs, beta, log_lambda)
    cum_hazard = compute_cumulative_hazard(log_hazard, alpha, inputs.t_start, inputs.t_stop)
    return rng.binomial(1, event_probability(cum_hazard))


def sample_event_replicates(
    inputs: ModelInputs,
    idata: az.InferenceData,
    random_seed: int | None = None,
) -> xr.DataArray:
    """
    Simulate interval event flags for every posterior draw.

    Parameters
    ----------
    inputs : ModelInputs
        The inputs the model was fitted on.
    idata : az.InferenceData
        Fit with "alpha", "beta" and "log_lambda" in the posterior.
    random_seed : int, optional
        Random seed for reproducibility.

    Returns
    -------
    xr.DataArray
        "event_rep" with dims (chain, draw, interval).
    """
    posterior = idata.posterior
    alpha = posterior["alpha"].values  # shape: (chains, draws)
    beta = posterior["beta"].values  # shape: (chains, draws, K)
    log_lambda = posterior["log_lambda"].values  # shape: (chains, draws, N_regions)

    log_hazard = compute_log_hazard(inputs, beta, log_lambda)
    cum_hazard = compute_cumulative_hazard(
        log_hazard, alpha[..., np.newaxis], inputs.t_start, inputs.t_stop
    )

    rng = np.random.default_rng(random_seed)
    replicates = rng.binomial(1, event_probability(cum_hazard))

    return xr.DataArray(
        replicates,
        dims=["chain", "draw", "interval"],
        coords={
            "chain": posterior["chain"].values,
            "draw": posterior["draw"].values,
            "interval": np.arange(inputs.N_intervals),
        },
        name="event_rep",
    )


def add_event_replicates(idata: az.InferenceData, replicates: xr.DataArray) -> az.InferenceData:
    """Store replicates as "event_rep" in the posterior_predictive group."""
    if "posterior_predictive" in idata.groups():
        idata.posterior_predictive["event_rep"] = replicates
    else:
        idata.add_groups(posterior_predictive=xr.Dataset({"event_rep": replicates}))
    return idata


# =============================================================================
# Diagnostics
# =============================================================================


@dataclass
class FitDiagnostics:
    """
    Convergence diagnostics attached to a fit.

    Attributes
    ----------
    n_divergences : int
        Number of divergent transitions after warm-up.
    max_rhat : float
        Largest R-hat over the summarized parameters (NaN with one chain).
    min_ess_bulk, min_ess_tail : float
        Smallest bulk and tail effective sample sizes.
    rhat_threshold : float
        R-hat above this value is flagged.
    min_ess : float
        ESS below this value is flagged.
    """

    n_divergences: int
    max_rhat: float
    min_ess_bulk: float
    min_ess_tail: float
    rhat_threshold: float = 1.01
    min_ess: float = 400.0

    def problems(self) -> list[str]:
        """Human-readable list of failed checks."""
        found = []
        if self.n_divergences > 0:
            found.append(f"{self.n_divergences} divergent transitions after tuning")
        if np.isfinite(self.max_rhat) and self.max_rhat > self.rhat_threshold:
            found.append(f"max R-hat {self.max_rhat:.3f} exceeds {self.rhat_threshold}")
        if self.min_ess_bulk < self.min_ess:
            found.append(f"min bulk ESS {self.min_ess_bulk:.0f} below {self.min_ess:.0f}")
        if self.min_ess_tail < self.min_ess:
            found.append(f"min tail ESS {self.min_ess_tail:.0f} below {self.min_ess:.0f}")
        return found

    @property
    def converged(self) -> bool:
        return not self.problems()

    def to_attrs(self) -> dict[str, int | float]:
        """Flat attributes suitable for storing on a NetCDF group."""
        return {
            "n_divergences": int(self.n_divergences),
            "max_rhat": float(self.max_rhat),
            "min_ess_bulk": float(self.min_ess_bulk),
            "min_ess_tail": float(self.min_ess_tail),
            "rhat_threshold": float(self.rhat_threshold),
            "min_ess": float(self.min_ess),
            "converged": int(self.converged),
        }


def compute_diagnostics(
    idata: az.InferenceData,
    var_names: list[str] | None = None,
    rhat_threshold: float = 1.01,
    min_ess: float = 400.0,
) -> FitDiagnostics:
    """Summarize divergences, R-hat and ESS of a fit."""
    var_names = var_names or PARAMETER_NAMES
    summary = az.summary(idata, var_names=var_names, kind="diagnostics")

    n_divergences = 0
    if "sample_stats" in idata.groups() and "diverging" in idata.sample_stats:
        n_divergences = int(idata.sample_stats["diverging"].sum())

    return FitDiagnostics(
        n_divergences=n_divergences,
        max_rhat=float(summary["r_hat"].max()),
        min_ess_bulk=float(summary["ess_bulk"].min()),
        min_ess_tail=float(summary["ess_tail"].min()),
        rhat_threshold=rhat_threshold,
        min_ess=min_ess,
    )


def check_convergence(
    idata: az.InferenceData,
    var_names: list[str] | None = None,
    rhat_threshold: float = 1.01,
    min_ess: float = 400.0,
) -> FitDiagnostics:
    """
    Compute diagnostics, attach them to the fit and warn on problems.

    Non-convergence never raises: the diagnostics are stored as attributes
    of the posterior group and each failed check emits a
    `ConvergenceWarning`.
    """
    diagnostics = compute_diagnostics(idata, var_names, rhat_threshold, min_ess)
    idata.posterior.attrs.update(diagnostics.to_attrs())

    for problem in diagnostics.problems():
        logger.warning("Convergence check failed: %s", problem)
        warnings.warn(f"Sampler diagnostics: {problem}", ConvergenceWarning, stacklevel=2)

    return diagnostics


# =============================================================================
# Reporting quantities
# =============================================================================


def _summarize_draws(
    draws: xr.DataArray,
    dim: str,
    quantiles: Sequence[float] = (0.025, 0.975),
) -> pd.DataFrame:
    flat = draws.stack(sample=["chain", "draw"])
    summary = {
        "mean": flat.mean(dim="sample").values,
        "median": flat.median(dim="sample").values,
    }
    for q in quantiles:
        summary[f"{q * 100:g}%"] = flat.quantile(q, dim="sample").values
    return pd.DataFrame(summary, index=pd.Index(flat[dim].values, name=dim))


def compute_hazard_ratios(
    idata: az.InferenceData,
    quantiles: Sequence[float] = (0.025, 0.975),
) -> pd.DataFrame:
    """
    Posterior summary of hazard ratios ``exp(beta)``.

    A hazard ratio above 1 means a one standard deviation increase of the
    covariate shortens the expected time to "High" scarcity.

    Returns
    -------
    pd.DataFrame
        Indexed by covariate, with mean, median, the requested quantiles and
        "P(HR>1)".
    """
    hazard_ratio = np.exp(idata.posterior["beta"])
    summary = _summarize_draws(hazard_ratio, "covariate", quantiles)
    summary["P(HR>1)"] = (
        (hazard_ratio > 1).stack(sample=["chain", "draw"]).mean(dim="sample").values
    )
    return summary


def compute_region_scales(
    idata: az.InferenceData,
    quantiles: Sequence[float] = (0.025, 0.975),
) -> pd.DataFrame:
    """Posterior summary of region baseline scales ``exp(log_lambda)``."""
    return _summarize_draws(np.exp(idata.posterior["log_lambda"]), "region", quantiles)


def posterior_predictive_event_counts(
    idata: az.InferenceData,
    inputs: ModelInputs,
    quantiles: Sequence[float] = (0.025, 0.975),
) -> pd.DataFrame:
    """
    Compare observed and replicated event counts, in total and by region.

    Returns
    -------
    pd.DataFrame
        One row for "Total" and one per region with the observed count, the
        mean and quantiles of replicated counts, and the posterior
        predictive p-value ``P(rep >= observed)``.
    """
    if "posterior_predictive" not in idata.groups() or "event_rep" not in idata.posterior_predictive:
        raise ValueError("InferenceData must contain posterior_predictive 'event_rep'")

    replicates = idata.posterior_predictive["event_rep"].values
    replicates = replicates.reshape(-1, inputs.N_intervals)

    groups = {"Total": np.ones(inputs.N_intervals, dtype=bool)}
    region_of_interval = inputs.interval_region_id
    for i, region in enumerate(_labels(inputs.regions, inputs.N_regions, "region")):
        groups[region] = region_of_interval == i + 1

    rows = []
    for name, mask in groups.items():
        observed = int(inputs.event[mask].sum())
        counts = replicates[:, mask].sum(axis=1)
        row = {"group": name, "observed": observed, "mean": counts.mean()}
        for q in quantiles:
            row[f"{q * 100:g}%"] = np.quantile(counts, q)
        row["p_value"] = float((counts >= observed).mean())
        rows.append(row)

    return pd.DataFrame(rows).set_index("group")


def extract_parameter_summary(
    idata: az.InferenceData,
    var_names: list[str] | None = None,
    filter_vars: str | None = None,
    hdi_prob: float = 0.94,
) -> pd.DataFrame:
    """
    Extract summary statistics for model parameters.

    Parameters
    ----------
    idata : az.InferenceData
        InferenceData object with posterior samples.
    var_names : list[str], optional
        Parameter names to include. Default is `PARAMETER_NAMES`.
    hdi_prob : float, optional
        Probability mass for HDI. Default is 0.94.

    Returns
    -------
    pd.DataFrame
        Summary statistics for parameters.
    """
    var_names = var_names or PARAMETER_NAMES
    return az.summary(idata, var_names=var_names, filter_vars=filter_vars, hdi_prob=hdi_prob)


def compute_waic(idata: az.InferenceData) -> az.ELPDData:
    """WAIC from the pointwise interval log-likelihood."""
    return az.waic(idata)


def compute_loo(idata: az.InferenceData) -> az.ELPDData:
    """PSIS-LOO from the pointwise interval log-likelihood."""
    return az.loo(idata)
