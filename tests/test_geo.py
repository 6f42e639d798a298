"""Tests for the geo reference tables."""

from __future__ import annotations

from netbench.geo import GeoResolver, GeoTable, load_geo_table, parse_regions


class TestGeoTable:
    def test_bundled_table_loads_once(self):
        assert load_geo_table() is load_geo_table()

    def test_parse_regions_splits_tokens(self):
        regions = parse_regions({"Test_Region": "CA,US| DE |"})
        assert regions == {"test_region": ("CA,US", "DE")}


class TestGeoResolver:
    def test_is_country(self):
        geo = GeoResolver()
        assert geo.is_country("de")
        assert geo.is_country("US")
        assert not geo.is_country("QQ")
        assert not geo.is_country(None)

    def test_continent(self):
        geo = GeoResolver()
        assert geo.continent("DE") == "eu"
        assert geo.continent("MX") == "america_north"
        assert geo.continent(None) is None

    def test_state_takes_precedence_over_country(self):
        geo = GeoResolver()
        assert geo.geo_region("US", "CA") == "us_west"
        assert geo.geo_region("US", "NY") == "us_east"

    def test_bare_country(self):
        geo = GeoResolver()
        assert geo.geo_region("DE") == "eu_central"

    def test_only_enabled_regions_match(self):
        geo = GeoResolver(geo_regions=("us_west",))
        assert geo.geo_region("DE") is None
        assert geo.geo_region("US", "OR") == "us_west"

    def test_custom_table(self):
        table = GeoTable(regions={"north": ("NO", "SE")}, countries={"NO": "Norway", "SE": "Sweden"})
        geo = GeoResolver(table=table)
        assert geo.geo_region("SE") == "north"
        assert geo.known_region("NORTH")
        assert not geo.known_region("south")
