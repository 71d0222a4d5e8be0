"""
Tests for configuration loading and validation.
"""

from dataclasses import replace

import pytest

from integrations.solana.tokens import SOL, USDC, USDT, DEFAULT_CATALOG
from skimmer.core.config import (
    EnvironmentConfig,
    PayoutDestination,
    check_startup_requirements,
    load_config,
)
from skimmer.core.errors import ConfigurationInvalid
from tests.conftest import make_settings


VALID_ENV = {
    "WALLET_PRIVATE_KEY": "test-key",
    "BLOCKONOMICS_API_KEY": "bk-test",
    "PAYOUT_DESTINATIONS": "user=bc1quser:0.8,reserve=bc1qreserve:0.2",
}


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty environment and an empty .env file so nothing leaks in."""
    for var in EnvironmentConfig.ALL_VARIABLES:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    env_file = tmp_path / ".env"
    env_file.write_text("")
    return str(env_file)


@pytest.fixture
def valid_env(clean_env, monkeypatch):
    for key, value in VALID_ENV.items():
        monkeypatch.setenv(key, value)
    return clean_env


class TestEnvironmentConfig:

    def test_defaults(self, valid_env):
        settings = load_config(valid_env).to_settings()

        assert settings.evaluation_interval == 30
        assert settings.replenish_interval == 300
        assert settings.trade_amount == 0.1
        assert settings.min_profit_usd == 0.20
        assert settings.slippage_bps == 100
        assert [t.symbol for t in settings.catalog] == DEFAULT_CATALOG
        assert settings.stable_units == frozenset({USDC.mint, USDT.mint})
        assert settings.drop_sub_fee_remainder is True
        assert settings.payout_history_path == "data/payout_history.json"
        assert settings.reserve_token == SOL

    def test_payout_destinations_parsed(self, valid_env):
        destinations = load_config(valid_env).get_payout_destinations()

        assert destinations == [
            PayoutDestination("user", "bc1quser", 0.8),
            PayoutDestination("reserve", "bc1qreserve", 0.2),
        ]

    def test_malformed_destination(self, valid_env, monkeypatch):
        monkeypatch.setenv("PAYOUT_DESTINATIONS", "user-bc1quser")
        with pytest.raises(ConfigurationInvalid):
            load_config(valid_env).get_payout_destinations()

    def test_catalog_accepts_symbols_and_mints(self, valid_env, monkeypatch):
        monkeypatch.setenv("OUTPUT_CATALOG", f"usdc, {USDT.mint}")
        catalog = load_config(valid_env).get_output_catalog()
        assert catalog == [USDC, USDT]

    def test_unknown_catalog_token(self, valid_env, monkeypatch):
        monkeypatch.setenv("OUTPUT_CATALOG", "USDC,NOPE")
        with pytest.raises(ConfigurationInvalid, match="NOPE"):
            load_config(valid_env).get_output_catalog()

    def test_confirmation_timeout_clamped(self, valid_env, monkeypatch):
        monkeypatch.setenv("CONFIRMATION_TIMEOUT", "5")
        assert load_config(valid_env).get_confirmation_timeout() == 10
        monkeypatch.setenv("CONFIRMATION_TIMEOUT", "999")
        assert load_config(valid_env).get_confirmation_timeout() == 300

    def test_bad_interval_falls_back_to_default(self, valid_env, monkeypatch):
        monkeypatch.setenv("EVALUATION_INTERVAL", "soon")
        assert load_config(valid_env).get_evaluation_interval() == 30

    def test_bad_money_value_is_fatal(self, valid_env, monkeypatch):
        monkeypatch.setenv("MIN_PROFIT_USD", "a lot")
        with pytest.raises(ConfigurationInvalid):
            load_config(valid_env).to_settings()

    @pytest.mark.parametrize("raw,expected", [("false", False), ("0", False), ("TRUE", True), ("yes", True)])
    def test_drop_sub_fee_remainder_flag(self, valid_env, monkeypatch, raw, expected):
        monkeypatch.setenv("DROP_SUB_FEE_REMAINDER", raw)
        assert load_config(valid_env).is_drop_sub_fee_remainder() is expected

    def test_auto_start_off_by_default(self, valid_env):
        assert load_config(valid_env).is_auto_start() is False

    def test_missing_required_tolerated_unless_require_all(self, clean_env):
        load_config(clean_env)
        with pytest.raises(ConfigurationInvalid, match="WALLET_PRIVATE_KEY"):
            load_config(clean_env, require_all=True)

    def test_get_required(self, clean_env):
        with pytest.raises(ConfigurationInvalid):
            load_config(clean_env).get_required("BLOCKONOMICS_API_KEY")

    def test_env_file_values_loaded(self, clean_env, monkeypatch, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("TRADE_AMOUNT=0.25\n")
        monkeypatch.delenv("TRADE_AMOUNT", raising=False)

        config = EnvironmentConfig(str(env_file))

        assert config.get("TRADE_AMOUNT") == "0.25"
        monkeypatch.delenv("TRADE_AMOUNT", raising=False)


class TestSettingsValidation:

    def test_valid_settings(self):
        make_settings().validate()

    @pytest.mark.parametrize("overrides,message", [
        ({"catalog": ()}, "catalog is empty"),
        ({"catalog": (USDC, SOL)}, "reserve unit"),
        ({"payout_destinations": ()}, "no payout destinations"),
        ({"payout_destinations": (PayoutDestination("a", "x", 0.5), PayoutDestination("b", "y", 0.4))}, "sum to"),
        ({"payout_destinations": (PayoutDestination("a", "x", 1.5), PayoutDestination("b", "y", -0.5))}, "negative"),
        ({"payout_destinations": (PayoutDestination("a", "x", 0.5), PayoutDestination("a", "y", 0.5))}, "unique"),
        ({"profit_distribution_share": 1.2}, "PROFIT_DISTRIBUTION_SHARE"),
        ({"reserve_threshold": -1.0}, "RESERVE_THRESHOLD"),
        ({"trade_amount": 0.0}, "TRADE_AMOUNT"),
        ({"evaluation_interval": 0}, "intervals"),
        ({"private_key": ""}, "WALLET_PRIVATE_KEY"),
    ])
    def test_invalid_settings(self, overrides, message):
        settings = make_settings(**overrides)
        with pytest.raises(ConfigurationInvalid, match=message):
            settings.validate()

    def test_shares_within_tolerance(self):
        settings = make_settings(payout_destinations=(
            PayoutDestination("a", "x", 1 / 3),
            PayoutDestination("b", "y", 1 / 3),
            PayoutDestination("c", "z", 1 / 3),
        ))
        settings.validate()


class TestStartupRequirements:

    def test_exits_on_invalid_configuration(self, clean_env):
        with pytest.raises(SystemExit) as exc_info:
            check_startup_requirements(clean_env)
        assert exc_info.value.code == 1

    def test_returns_settings_and_creates_directories(self, valid_env, monkeypatch, tmp_path):
        monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
        monkeypatch.setenv("PAYOUT_HISTORY_PATH", str(tmp_path / "data" / "history.json"))

        settings = check_startup_requirements(valid_env)

        assert settings.payout_destinations[0].destination_id == "user"
        assert (tmp_path / "logs").is_dir()
        assert (tmp_path / "data").is_dir()
