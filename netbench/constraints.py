"""Locality and ownership ("same-*") rules for test endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from netbench.geo import GeoResolver
from netbench.models import RunConfiguration

logger = logging.getLogger(__name__)

# Service types without a stable physical location
_UNLOCATED_SERVICE_TYPES = ("cdn", "dns")


class ConstraintValidator:
    """Decides whether an endpoint satisfies the same-* rules of a run.

    Checks run in a fixed order (continent, country, state, geo region,
    provider, service, region) and stop at the first mismatch.
    """

    def __init__(self, config: RunConfiguration, geo: GeoResolver):
        self.config = config
        self.geo = geo

    def _enabled(self, constraint: Optional[str], name: str, flag: bool) -> bool:
        if constraint is None:
            return flag
        return constraint == name

    def validate(self, index: int, constraint: Optional[str] = None) -> bool:
        """Return True when endpoint *index* passes the requested checks.

        With *constraint* unset the global ``same_*`` flags select the checks;
        otherwise only the named dimension (and what it implies) is checked.
        """
        cfg = self.config
        endpoint = cfg.endpoint(index)
        vantage = cfg.vantage
        located = endpoint.service_type not in _UNLOCATED_SERVICE_TYPES

        check_continent = located and self._enabled(constraint, "continent", cfg.same_continent_only)
        check_country = located and self._enabled(constraint, "country", cfg.same_country_only)
        check_state = self._enabled(constraint, "state", cfg.same_state_only)
        check_geo_region = located and self._enabled(constraint, "geo_region", cfg.same_geo_region)
        check_provider = self._enabled(constraint, "provider", cfg.same_provider_only)
        check_service = self._enabled(constraint, "service", cfg.same_service_only)
        check_region = self._enabled(constraint, "region", cfg.same_region_only)

        country, state = endpoint.country, endpoint.state
        node_country, node_state = vantage.country, vantage.state

        if check_continent and self.geo.continent(country) != self.geo.continent(node_country):
            logger.info(
                "Same continent constraint does not match for %s: country %s vs %s",
                endpoint.public, country, node_country,
            )
            return False
        if (check_country or check_state) and country != node_country:
            logger.info(
                "Same country constraint does not match for %s: %s vs %s",
                endpoint.public, country, node_country,
            )
            return False
        if check_state and state != node_state:
            logger.info(
                "Same state constraint does not match for %s: %s vs %s",
                endpoint.public, state, node_state,
            )
            return False
        if check_geo_region and self.geo.geo_region(country, state) != self.geo.geo_region(node_country, node_state):
            logger.info(
                "Same geo region constraint does not match for %s: %s vs %s",
                endpoint.public, endpoint.location, vantage.location,
            )
            return False
        if (
            (check_provider or check_service or check_region)
            and endpoint.provider != vantage.provider
            and endpoint.provider_id != vantage.provider_id
        ):
            logger.info(
                "Same provider constraint does not match for %s: %s [%s] vs %s [%s]",
                endpoint.public, endpoint.provider, endpoint.provider_id,
                vantage.provider, vantage.provider_id,
            )
            return False
        if (
            (check_service or check_region)
            and endpoint.service != vantage.compute_service
            and endpoint.service_id != vantage.compute_service_id
        ):
            logger.info(
                "Same service constraint does not match for %s: %s [%s] vs %s [%s]",
                endpoint.public, endpoint.service, endpoint.service_id,
                vantage.compute_service, vantage.compute_service_id,
            )
            return False
        if check_region and endpoint.region != vantage.region:
            logger.info(
                "Same region constraint does not match for %s: %s vs %s",
                endpoint.public, endpoint.region, vantage.region,
            )
            return False
        return True


def use_private_network(config: RunConfiguration, index: int) -> bool:
    """True when endpoint *index* is the vantage compute service in the same region."""
    endpoint = config.endpoint(index)
    vantage = config.vantage
    if not endpoint.service_id or not vantage.compute_service_id:
        return False
    if endpoint.service_id != vantage.compute_service_id:
        return False
    if not endpoint.region and not vantage.region:
        return True
    return bool(endpoint.region) and endpoint.region == vantage.region
