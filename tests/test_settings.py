"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from ride_dispatch.ride import PaymentMethod, VehicleCategory
from ride_dispatch.settings import (
    APISettings,
    DatabaseSettings,
    FareSettings,
    MatchingSettings,
    RedisSettings,
    RoutingSettings,
    Settings,
)


@pytest.mark.unit
class TestSettingsDefaults:
    def test_defaults_load_with_api_key(self):
        settings = Settings()
        assert settings.api.key == "test-api-key"
        assert settings.redis.enabled is False
        assert settings.matching.search_timeout_seconds == 300
        assert settings.fares.capture_payment_methods == {PaymentMethod.UPI, PaymentMethod.CARD}

    def test_every_category_is_priced(self):
        fares = FareSettings()
        assert set(fares.category_rates) == set(VehicleCategory)
        assert set(fares.fallback_fares) == set(VehicleCategory)


@pytest.mark.unit
class TestSettingsFromEnvironment:
    def test_group_prefixes(self, monkeypatch):
        monkeypatch.setenv("MATCHING_SEARCH_TIMEOUT_SECONDS", "120")
        monkeypatch.setenv("OSRM_BASE_URL", "http://osrm:5000/")
        monkeypatch.setenv("STORE_OPERATION_TIMEOUT_SECONDS", "2.5")

        settings = Settings()

        assert settings.matching.search_timeout_seconds == 120
        assert settings.routing.base_url == "http://osrm:5000"
        assert settings.store.operation_timeout_seconds == 2.5

    def test_missing_api_key_fails(self, monkeypatch):
        monkeypatch.delenv("API_KEY", raising=False)
        with pytest.raises(ValidationError, match="API_KEY"):
            APISettings()


@pytest.mark.unit
class TestSettingsValidation:
    def test_redis_password_required_when_enabled(self):
        with pytest.raises(ValidationError, match="REDIS_PASSWORD"):
            RedisSettings(enabled=True, password="")

    def test_redis_password_optional_when_disabled(self):
        assert RedisSettings(enabled=False).password == ""

    def test_rejects_unknown_database_scheme(self):
        with pytest.raises(ValidationError):
            DatabaseSettings(url="mysql://localhost/rides")

    def test_rejects_non_http_routing_url(self):
        with pytest.raises(ValidationError):
            RoutingSettings(base_url="osrm:5000")

    def test_search_timeout_has_floor(self):
        with pytest.raises(ValidationError):
            MatchingSettings(search_timeout_seconds=5)

    def test_fares_must_cover_every_category(self):
        with pytest.raises(ValidationError, match="PINK"):
            FareSettings(
                category_rates={
                    c: r for c, r in FareSettings().category_rates.items() if c != VehicleCategory.PINK
                }
            )
