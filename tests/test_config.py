"""
Tests for config.py
"""
import json
import pytest

from mevarb.config import (
    DEFAULT_DEX_PROGRAMS,
    AppConfig,
    ArbitrageConfig,
    ConfigError,
    MEVConfig,
    NotificationConfig,
    build_config,
    load_config,
)


class TestDefaults:
    """Built-in defaults."""

    def test_arbitrage_defaults(self):
        config = ArbitrageConfig()
        assert config.tokens == ['SOL', 'USDC', 'USDT', 'wBTC']
        assert config.base_tokens == ['USDC', 'USDT', 'SOL']
        assert config.venues == ['raydium', 'orca', 'jupiter']
        assert config.min_spread_pct == 0.3
        assert config.fee_pct == 0.2
        assert config.max_opportunities == 5
        assert config.price_max_age_seconds == 10.0
        assert config.refresh_interval_seconds == 5.0
        assert config.scan_interval_seconds == 10.0
        assert config.max_consecutive_failures == 10

    def test_mev_defaults(self):
        config = MEVConfig()
        assert config.bundle_ttl_seconds == 30.0
        assert config.sweep_interval_seconds == 5.0
        assert config.large_trade_min_bytes == 16
        assert config.dex_programs == DEFAULT_DEX_PROGRAMS

    def test_notifications_enabled(self):
        assert NotificationConfig().enabled is False
        assert NotificationConfig(telegram_bot_token="t").enabled is False
        assert NotificationConfig(telegram_bot_token="t", telegram_chat_id="c").enabled is True
        assert NotificationConfig(discord_webhook_url="https://d").enabled is True


class TestValidation:
    """Validation in __post_init__ and AppConfig.validate."""

    def test_unknown_venue(self):
        with pytest.raises(ConfigError, match="Unknown venue"):
            ArbitrageConfig(venues=['raydium', 'serum'])

    def test_empty_venues(self):
        with pytest.raises(ConfigError):
            ArbitrageConfig(venues=[])

    @pytest.mark.parametrize("field", ['refresh_interval_seconds', 'scan_interval_seconds', 'trade_size'])
    def test_non_positive_values(self, field):
        with pytest.raises(ConfigError, match=field):
            ArbitrageConfig(**{field: 0})

    def test_mev_ttl_must_be_positive(self):
        with pytest.raises(ConfigError):
            MEVConfig(bundle_ttl_seconds=0)

    def test_unknown_mode(self):
        with pytest.raises(ConfigError, match="Unknown mode"):
            AppConfig(mode='yolo').validate()

    def test_unknown_token_in_universe(self):
        config = AppConfig(arbitrage=ArbitrageConfig(tokens=['BONK']))
        with pytest.raises(ConfigError, match="BONK"):
            config.validate()

    def test_token_lookup(self):
        config = AppConfig()
        assert config.token('USDC').decimals == 6
        with pytest.raises(ConfigError):
            config.token('BONK')


class TestBuildConfig:
    """Layering of defaults, config.json and environment."""

    def test_empty_sources_give_devnet_scan(self):
        config = build_config({}, {})
        assert config.network == 'devnet'
        assert config.mode == 'scan'
        assert config.rpc_url == 'https://api.devnet.solana.com'
        assert config.strategies == ['arbitrage', 'mev']

    def test_mainnet_endpoints(self):
        config = build_config({'network': 'mainnet'}, {})
        assert config.rpc_url == 'https://api.mainnet-beta.solana.com'
        assert 'jito' in config.jito_url

    def test_env_overrides_json(self):
        data = {'mode': 'simulate', 'arbitrage': {'min_spread_pct': 0.5}}
        env = {'MODE': 'live', 'MIN_SPREAD_PCT': '0.8', 'RPC_URL': 'https://rpc.example'}
        config = build_config(data, env)
        assert config.mode == 'live'
        assert config.arbitrage.min_spread_pct == 0.8
        assert config.rpc_url == 'https://rpc.example'

    def test_network_profile_supplies_profit_and_size(self):
        data = {
            'network': 'mainnet',
            'networks': {'mainnet': {'min_profit_pct': 0.5, 'trade_size': 0.25}},
        }
        config = build_config(data, {})
        assert config.arbitrage.min_profit_pct == 0.5
        assert config.arbitrage.trade_size == 0.25

    def test_explicit_arbitrage_value_beats_profile(self):
        data = {
            'networks': {'devnet': {'min_profit_pct': 0.5}},
            'arbitrage': {'min_profit_pct': 0.9},
        }
        assert build_config(data, {}).arbitrage.min_profit_pct == 0.9

    def test_invalid_env_number(self):
        with pytest.raises(ConfigError, match="MIN_SPREAD_PCT"):
            build_config({}, {'MIN_SPREAD_PCT': 'lots'})

    def test_unknown_key_is_ignored(self, caplog):
        with caplog.at_level('WARNING', logger='mevarb.config'):
            config = build_config({'arbitrage': {'max_cycles': 5}}, {})
        assert "arbitrage.max_cycles" in caplog.text
        assert config.arbitrage.max_opportunities == 5

    def test_strategies_from_env(self):
        assert build_config({}, {'STRATEGIES': 'mev'}).strategies == ['mev']

    def test_mev_disabled_drops_strategy(self):
        config = build_config({'mev': {'enabled': False}}, {})
        assert config.strategies == ['arbitrage']

    def test_custom_token(self):
        data = {'tokens': {'BONK': {'mint': 'DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263', 'decimals': 5}}}
        assert build_config(data, {}).token('BONK').decimals == 5

    def test_bad_token_entry(self):
        with pytest.raises(ConfigError):
            build_config({'tokens': {'BONK': {'mint': 'x'}}}, {})

    def test_notifications_from_env(self):
        config = build_config({}, {'TELEGRAM_BOT_TOKEN': 't', 'TELEGRAM_CHAT_ID': 'c'})
        assert config.notifications.enabled is True


class TestLoadConfig:
    """Reading config.json and .env from disk."""

    def test_load_from_directory(self, tmp_path):
        (tmp_path / 'config.json').write_text(json.dumps({'network': 'mainnet', 'mode': 'simulate'}))
        config = load_config(tmp_path, env={})
        assert config.network == 'mainnet'
        assert config.mode == 'simulate'

    def test_missing_files_use_defaults(self, tmp_path):
        config = load_config(tmp_path, env={})
        assert config.network == 'devnet'

    def test_invalid_json(self, tmp_path):
        (tmp_path / 'config.json').write_text("{not json")
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_config(tmp_path, env={})

    def test_fallback_rpc_from_env(self, tmp_path):
        config = load_config(tmp_path, env={'RPC_URL_FALLBACK': 'https://backup.example'})
        assert config.fallback_rpc_url == 'https://backup.example'
