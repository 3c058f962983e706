"""
Country to region lookup.

The region is the grouping key of the hierarchical baseline scale. The
mapping is a closed enumeration: a country that is not listed is an error,
never a silent "Unknown" category.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Mapping

import pandas as pd

from .exceptions import UnmappedCountry

logger = logging.getLogger(__name__)


class Region(str, Enum):
    """Regions used to group countries."""

    AFRICA = "Africa"
    AMERICAS = "Americas"
    ASIA = "Asia"
    EUROPE = "Europe"
    OCEANIA = "Oceania"


# North and South America are combined.
COUNTRY_REGIONS: dict[str, Region] = {
    "Argentina": Region.AMERICAS,
    "Brazil": Region.AMERICAS,
    "Mexico": Region.AMERICAS,
    "Canada": Region.AMERICAS,
    "USA": Region.AMERICAS,
    "Australia": Region.OCEANIA,
    "China": Region.ASIA,
    "India": Region.ASIA,
    "Indonesia": Region.ASIA,
    "Japan": Region.ASIA,
    "Saudi Arabia": Region.ASIA,
    "Turkey": Region.ASIA,
    "South Korea": Region.ASIA,
    "France": Region.EUROPE,
    "Germany": Region.EUROPE,
    "Italy": Region.EUROPE,
    "Russia": Region.EUROPE,
    "UK": Region.EUROPE,
    "Spain": Region.EUROPE,
    "Egypt": Region.AFRICA,
    "South Africa": Region.AFRICA,
    "Nigeria": Region.AFRICA,
}


def assign_region(
    country: str,
    mapping: Mapping[str, Region | str] | None = None,
) -> str:
    """
    Look up the region label of a single country.

    Parameters
    ----------
    country : str
        Country name as it appears in the panel.
    mapping : Mapping, optional
        Country to region mapping. Default is `COUNTRY_REGIONS`.

    Returns
    -------
    str
        The region label.

    Raises
    ------
    UnmappedCountry
        If the country is not in the mapping.
    """
    mapping = COUNTRY_REGIONS if mapping is None else mapping
    try:
        region = mapping[country]
    except KeyError:
        raise UnmappedCountry([country]) from None
    return region.value if isinstance(region, Region) else str(region)


def assign_regions(
    df: pd.DataFrame,
    mapping: Mapping[str, Region | str] | None = None,
    country_col: str = "country",
    region_col: str = "region",
) -> pd.DataFrame:
    """
    Add a categorical region column to a country-keyed DataFrame.

    Categories are the regions present in the data, sorted alphabetically, so
    their order (and therefore the region ids built from them) does not
    depend on row order.

    Parameters
    ----------
    df : pd.DataFrame
        Data with a country column.
    mapping : Mapping, optional
        Country to region mapping. Default is `COUNTRY_REGIONS`.
    country_col : str, optional
        Name of the country column. Default is "country".
    region_col : str, optional
        Name of the region column to add. Default is "region".

    Returns
    -------
    pd.DataFrame
        Copy of `df` with the region column.

    Raises
    ------
    UnmappedCountry
        Listing every country without a mapping.
    """
    mapping = COUNTRY_REGIONS if mapping is None else mapping
    countries = pd.unique(df[country_col])

    unmapped = [c for c in countries if c not in mapping]
    if unmapped:
        raise UnmappedCountry(unmapped)

    lookup = {c: assign_region(c, mapping) for c in countries}
    labels = df[country_col].map(lookup)

    out = df.copy()
    out[region_col] = pd.Categorical(labels, categories=sorted(set(lookup.values())))

    logger.info(
        "Assigned %d countries to %d regions",
        len(lookup),
        len(out[region_col].cat.categories),
    )
    return out


def region_counts(df: pd.DataFrame, region_col: str = "region") -> pd.Series:
    """Number of rows per region, in category order."""
    return df[region_col].value_counts(sort=False)
