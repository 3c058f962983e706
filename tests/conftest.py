"""Pytest configuration and shared fixtures."""

import numpy as np
import pandas as pd
import pytest

from scarcitysurvival.utils import DEFAULT_COVARIATES, prepare_survival_data


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="Run slow tests (MCMC fitting)",
    )


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "slow: mark test as slow (MCMC fitting)")


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is provided."""
    if config.getoption("--run-slow"):
        return

    skip_slow = pytest.mark.skip(reason="need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def make_country_rows(country, start, end, high_from=None, seed=0):
    """Yearly rows for one country; "High" from `high_from` onwards."""
    rng = np.random.default_rng(seed)
    years = np.arange(start, end + 1)
    levels = []
    for year in years:
        if high_from is not None and year >= high_from:
            levels.append("High")
        elif high_from is not None and year >= high_from - 2:
            levels.append("Moderate")
        else:
            levels.append("Low")

    return pd.DataFrame({
        "country": country,
        "year": years,
        "scarcity_level": levels,
        "agri_use_pct": rng.uniform(20, 80, len(years)).round(2),
        "rainfall_mm": rng.uniform(300, 2500, len(years)).round(1),
        "groundwater_depletion_pct": rng.uniform(0.5, 5.0, len(years)).round(2),
    })


@pytest.fixture
def panel():
    """A small panel covering events, censoring and edge cases."""
    frames = [
        make_country_rows("Argentina", 2000, 2024, high_from=None, seed=1),
        make_country_rows("Brazil", 2000, 2024, high_from=2013, seed=2),
        make_country_rows("India", 2000, 2024, high_from=2005, seed=3),
        make_country_rows("Germany", 2000, 2024, high_from=None, seed=4),
        make_country_rows("Spain", 2000, 2024, high_from=2020, seed=5),
        make_country_rows("Egypt", 2000, 2024, high_from=2000, seed=6),
        make_country_rows("Nigeria", 2000, 2024, high_from=2010, seed=7),
        make_country_rows("Australia", 2000, 2024, high_from=2018, seed=8),
    ]
    return pd.concat(frames, ignore_index=True)


@pytest.fixture
def prepared(panel):
    """(intervals, outcomes) for the sample panel."""
    return prepare_survival_data(panel)


@pytest.fixture
def intervals(prepared):
    return prepared[0]


@pytest.fixture
def outcomes(prepared):
    return prepared[1]


@pytest.fixture
def covariates():
    return list(DEFAULT_COVARIATES)
