"""Geographic reference data: countries, continents and geo regions."""

from __future__ import annotations

import functools
import json
import logging
from dataclasses import dataclass
from importlib import resources
from typing import Iterable, Mapping, Optional

from netbench.config import CONTINENTS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoTable:
    """Region code -> location tokens (``"state,country"`` or ``"country"``)."""

    regions: Mapping[str, tuple[str, ...]]
    countries: Mapping[str, str]

    def locations(self, region: str) -> tuple[str, ...]:
        return self.regions.get(region, ())


def _read_json(name: str) -> dict:
    text = resources.files("netbench.data").joinpath(name).read_text(encoding="utf-8")
    return json.loads(text)


def parse_regions(raw: Mapping[str, str]) -> dict[str, tuple[str, ...]]:
    """Split the pipe-delimited token lists of a geo region table."""
    return {
        region.lower(): tuple(token.strip() for token in tokens.split("|") if token.strip())
        for region, tokens in raw.items()
    }


@functools.lru_cache(maxsize=1)
def load_geo_table() -> GeoTable:
    """Load the bundled geo table once per process."""
    regions = parse_regions(_read_json("geo_regions.json"))
    countries = {code.upper(): name for code, name in _read_json("iso3166.json").items()}
    logger.debug("Loaded %d geo regions and %d countries", len(regions), len(countries))
    return GeoTable(regions=regions, countries=countries)


class GeoResolver:
    """Country -> continent and country/state -> geo region lookups."""

    def __init__(self, table: Optional[GeoTable] = None, geo_regions: Iterable[str] = ()):
        self.table = table or load_geo_table()
        self.geo_regions = tuple(geo_regions) or tuple(self.table.regions)

    def is_country(self, code: Optional[str]) -> bool:
        return bool(code) and code.upper() in self.table.countries

    def continent(self, country: Optional[str]) -> Optional[str]:
        if not country:
            return None
        for continent in CONTINENTS:
            if country in self.table.locations(continent):
                logger.debug("Country %s is in continent %s", country, continent)
                return continent
        return None

    def geo_region(self, country: Optional[str], state: Optional[str] = None) -> Optional[str]:
        """First enabled region listing ``state,country``, else the bare country."""
        if not country:
            return None
        candidates = [f"{state},{country}"] if state else []
        candidates.append(country)
        for token in candidates:
            for region, locations in self.table.regions.items():
                if region in self.geo_regions and token in locations:
                    logger.debug("Got geo region %s for %s", region, token)
                    return region
        return None

    def known_region(self, region: str) -> bool:
        return region.lower() in self.table.regions
