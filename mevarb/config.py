"""
Configuration for the arbitrage engine.

Values are layered: built-in defaults, then config.json, then environment
variables (a .env file is loaded first). Environment always wins.
"""
import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import dotenv

logger = logging.getLogger(__name__)

VALID_MODES = ('scan', 'simulate', 'live')
VALID_NETWORKS = ('devnet', 'mainnet')
VALID_STRATEGIES = ('arbitrage', 'mev')


class ConfigError(ValueError):
    """Raised when configuration values are missing or inconsistent."""


@dataclass(frozen=True)
class TokenInfo:
    """Token known to the engine."""
    symbol: str
    mint: str
    decimals: int


DEFAULT_TOKENS: Dict[str, TokenInfo] = {
    'SOL': TokenInfo('SOL', 'So11111111111111111111111111111111111111112', 9),
    'USDC': TokenInfo('USDC', 'EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v', 6),
    'USDT': TokenInfo('USDT', 'Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB', 6),
    'wBTC': TokenInfo('wBTC', '3NZ9JMVBmGAqocybic2c7LQCJScmgsAZ6vQqTDzcqmJh', 8),
}

# Venue name -> Jupiter `dexes` label (None = let the aggregator route freely)
VENUE_DEX_LABELS: Dict[str, Optional[str]] = {
    'raydium': 'Raydium',
    'orca': 'Whirlpool',
    'jupiter': None,
}

# Exchange program id -> venue name
DEFAULT_DEX_PROGRAMS: Dict[str, str] = {
    '675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8': 'raydium',  # Raydium AMM v4
    'CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK': 'raydium',  # Raydium CLMM
    '9W959DqEETiGZocYWCQPaJ6sBmUzgfxXfqGeTEdp3aQP': 'orca',     # Orca swap v2
    'whirLbMiicVdio4qvUfM5KAg6Ct8VwpYzGff3uctyCc': 'orca',      # Orca Whirlpool
}

NETWORK_ENDPOINTS: Dict[str, Dict[str, str]] = {
    'devnet': {
        'rpc_url': 'https://api.devnet.solana.com',
        'stream_url': 'wss://api.devnet.solana.com',
        'jito_url': 'https://devnet.jito.rpc.extrnode.com',
    },
    'mainnet': {
        'rpc_url': 'https://api.mainnet-beta.solana.com',
        'stream_url': 'wss://api.mainnet-beta.solana.com',
        'jito_url': 'https://mainnet.block-engine.jito.wtf/api/v1/bundles',
    },
}


@dataclass
class NetworkProfile:
    """Per-network profit threshold and trade size.

    Kept separate per network even when the values happen to match.
    """
    min_profit_pct: float = 0.3
    trade_size: float = 0.1  # in units of the traded token


@dataclass
class ArbitrageConfig:
    """Cross-venue arbitrage settings. Percentages are in percent, not bps."""
    tokens: List[str] = field(default_factory=lambda: ['SOL', 'USDC', 'USDT', 'wBTC'])
    base_tokens: List[str] = field(default_factory=lambda: ['USDC', 'USDT', 'SOL'])
    venues: List[str] = field(default_factory=lambda: ['raydium', 'orca', 'jupiter'])
    min_spread_pct: float = 0.3
    fee_pct: float = 0.2
    min_profit_pct: float = 0.3
    trade_size: float = 0.1
    max_opportunities: int = 5
    price_max_age_seconds: float = 10.0
    refresh_interval_seconds: float = 5.0
    scan_interval_seconds: float = 10.0
    max_consecutive_failures: int = 10
    quote_timeout_seconds: float = 5.0
    swap_timeout_seconds: float = 30.0
    significant_change_pct: float = 1.0

    def __post_init__(self):
        """Validate arbitrage settings."""
        if not self.venues:
            raise ConfigError("arbitrage.venues must not be empty")
        for venue in self.venues:
            if venue not in VENUE_DEX_LABELS:
                raise ConfigError(f"Unknown venue '{venue}' (known: {', '.join(VENUE_DEX_LABELS)})")
        for name in ('price_max_age_seconds', 'refresh_interval_seconds', 'scan_interval_seconds',
                     'quote_timeout_seconds', 'swap_timeout_seconds', 'trade_size'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"arbitrage.{name} must be positive")
        if self.max_opportunities < 1:
            raise ConfigError("arbitrage.max_opportunities must be at least 1")
        if self.max_consecutive_failures < 0:
            raise ConfigError("arbitrage.max_consecutive_failures must not be negative")


@dataclass
class MEVConfig:
    """Transaction-stream detection and bundle lifecycle settings."""
    enabled: bool = True
    bundle_ttl_seconds: float = 30.0
    sweep_interval_seconds: float = 5.0
    large_trade_min_bytes: int = 16
    relay_timeout_seconds: float = 10.0
    shutdown_grace_seconds: float = 5.0
    history_size: int = 256
    dex_programs: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_DEX_PROGRAMS))

    def __post_init__(self):
        """Validate bundle settings."""
        for name in ('bundle_ttl_seconds', 'sweep_interval_seconds', 'relay_timeout_seconds'):
            if getattr(self, name) <= 0:
                raise ConfigError(f"mev.{name} must be positive")
        if self.shutdown_grace_seconds < 0:
            raise ConfigError("mev.shutdown_grace_seconds must not be negative")
        if not self.dex_programs:
            raise ConfigError("mev.dex_programs must not be empty")


@dataclass
class NotificationConfig:
    """Outbound notification targets. Empty values disable a channel."""
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    discord_webhook_url: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool((self.telegram_bot_token and self.telegram_chat_id) or self.discord_webhook_url)


@dataclass
class AppConfig:
    """Top-level configuration consumed by main()."""
    network: str = 'devnet'
    mode: str = 'scan'
    rpc_url: str = NETWORK_ENDPOINTS['devnet']['rpc_url']
    fallback_rpc_url: Optional[str] = None
    stream_url: str = NETWORK_ENDPOINTS['devnet']['stream_url']
    jito_url: str = NETWORK_ENDPOINTS['devnet']['jito_url']
    jupiter_api_url: Optional[str] = None
    jupiter_api_key: Optional[str] = None
    wallet_private_key: Optional[str] = None
    strategies: List[str] = field(default_factory=lambda: list(VALID_STRATEGIES))
    arbitrage: ArbitrageConfig = field(default_factory=ArbitrageConfig)
    mev: MEVConfig = field(default_factory=MEVConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    network_profiles: Dict[str, NetworkProfile] = field(
        default_factory=lambda: {name: NetworkProfile() for name in VALID_NETWORKS}
    )
    tokens: Dict[str, TokenInfo] = field(default_factory=lambda: dict(DEFAULT_TOKENS))

    def validate(self) -> None:
        """Cross-field checks that need the whole config."""
        if self.mode not in VALID_MODES:
            raise ConfigError(f"Unknown mode '{self.mode}'. Use: {', '.join(VALID_MODES)}")
        if self.network not in VALID_NETWORKS:
            raise ConfigError(f"Unknown network '{self.network}'. Use: {', '.join(VALID_NETWORKS)}")
        for strategy in self.strategies:
            if strategy not in VALID_STRATEGIES:
                raise ConfigError(f"Unknown strategy '{strategy}'")
        for symbol in list(self.arbitrage.tokens) + list(self.arbitrage.base_tokens):
            if symbol not in self.tokens:
                raise ConfigError(f"Token '{symbol}' is not in the token registry")

    def token(self, symbol: str) -> TokenInfo:
        """Look up a token by symbol."""
        try:
            return self.tokens[symbol]
        except KeyError:
            raise ConfigError(f"Token '{symbol}' is not in the token registry") from None


def _dataclass_kwargs(cls, data: Mapping[str, Any], section: str) -> Dict[str, Any]:
    """Keep only keys that are fields of `cls`, warning about the rest."""
    known = {f.name for f in fields(cls)}
    kwargs = {}
    for key, value in data.items():
        if key in known:
            kwargs[key] = value
        else:
            logger.warning(f"Ignoring unknown config key '{section}.{key}'")
    return kwargs


def _env_number(env: Mapping[str, str], name: str, cast):
    """Read a numeric env var; None if unset or blank."""
    raw = env.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return cast(raw)
    except ValueError:
        raise ConfigError(f"{name}={raw!r} is not a valid {cast.__name__}") from None


def build_config(data: Mapping[str, Any], env: Mapping[str, str]) -> AppConfig:
    """
    Build an AppConfig from parsed config.json data and environment variables.

    Args:
        data: Parsed config.json contents (may be empty)
        env: Environment mapping (usually os.environ)

    Returns:
        Validated AppConfig

    Raises:
        ConfigError: If any value is invalid
    """
    network = (env.get('NETWORK') or data.get('network') or 'devnet').lower()
    mode = (env.get('MODE') or data.get('mode') or 'scan').lower()
    endpoints = NETWORK_ENDPOINTS.get(network, NETWORK_ENDPOINTS['devnet'])

    tokens = dict(DEFAULT_TOKENS)
    for symbol, info in (data.get('tokens') or {}).items():
        try:
            tokens[symbol] = TokenInfo(symbol, info['mint'], int(info['decimals']))
        except (KeyError, TypeError, ValueError):
            raise ConfigError(f"tokens.{symbol} needs 'mint' and integer 'decimals'") from None

    profiles = {name: NetworkProfile() for name in VALID_NETWORKS}
    for name, values in (data.get('networks') or {}).items():
        profiles[name] = NetworkProfile(**_dataclass_kwargs(NetworkProfile, values, f"networks.{name}"))
    profile = profiles.get(network, NetworkProfile())

    arb_data = _dataclass_kwargs(ArbitrageConfig, data.get('arbitrage') or {}, 'arbitrage')
    arb_data.setdefault('min_profit_pct', profile.min_profit_pct)
    arb_data.setdefault('trade_size', profile.trade_size)
    env_overrides = {
        'min_spread_pct': _env_number(env, 'MIN_SPREAD_PCT', float),
        'min_profit_pct': _env_number(env, 'MIN_PROFIT_PCT', float),
        'trade_size': _env_number(env, 'TRADE_SIZE', float),
        'refresh_interval_seconds': _env_number(env, 'REFRESH_INTERVAL_SECONDS', float),
        'scan_interval_seconds': _env_number(env, 'SCAN_INTERVAL_SECONDS', float),
        'max_consecutive_failures': _env_number(env, 'MAX_CONSECUTIVE_FAILURES', int),
    }
    arb_data.update({k: v for k, v in env_overrides.items() if v is not None})
    arbitrage = ArbitrageConfig(**arb_data)

    mev_data = _dataclass_kwargs(MEVConfig, data.get('mev') or {}, 'mev')
    mev_overrides = {
        'bundle_ttl_seconds': _env_number(env, 'BUNDLE_TTL_SECONDS', float),
        'sweep_interval_seconds': _env_number(env, 'SWEEP_INTERVAL_SECONDS', float),
    }
    mev_data.update({k: v for k, v in mev_overrides.items() if v is not None})
    mev = MEVConfig(**mev_data)

    notify_data = data.get('notifications') or {}
    notifications = NotificationConfig(
        telegram_bot_token=env.get('TELEGRAM_BOT_TOKEN') or notify_data.get('telegram_bot_token'),
        telegram_chat_id=env.get('TELEGRAM_CHAT_ID') or notify_data.get('telegram_chat_id'),
        discord_webhook_url=env.get('DISCORD_WEBHOOK_URL') or notify_data.get('discord_webhook_url'),
    )

    strategies_env = env.get('STRATEGIES')
    if strategies_env:
        strategies = [s.strip() for s in strategies_env.split(',') if s.strip()]
    else:
        strategies = list(data.get('strategies') or VALID_STRATEGIES)
    if 'mev' in strategies and not mev.enabled:
        strategies.remove('mev')

    config = AppConfig(
        network=network,
        mode=mode,
        rpc_url=env.get('RPC_URL') or data.get('rpc_url') or endpoints['rpc_url'],
        fallback_rpc_url=env.get('RPC_URL_FALLBACK') or data.get('fallback_rpc_url'),
        stream_url=env.get('STREAM_URL') or data.get('stream_url') or endpoints['stream_url'],
        jito_url=env.get('JITO_URL') or data.get('jito_url') or endpoints['jito_url'],
        jupiter_api_url=env.get('JUPITER_API_URL') or data.get('jupiter_api_url'),
        jupiter_api_key=env.get('JUPITER_API_KEY'),
        wallet_private_key=env.get('WALLET_PRIVATE_KEY'),
        strategies=strategies,
        arbitrage=arbitrage,
        mev=mev,
        notifications=notifications,
        network_profiles=profiles,
        tokens=tokens,
    )
    config.validate()
    return config


def load_config(base_dir: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load configuration from .env and config.json in base_dir (project root by default)."""
    base_dir = base_dir or Path(__file__).parent.parent

    env_path = base_dir / '.env'
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    else:
        logger.warning(f".env file not found at {env_path}")

    config_path = base_dir / 'config.json'
    if config_path.exists():
        with open(config_path, 'r') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigError(f"config.json is not valid JSON: {e}") from e
    else:
        logger.warning(f"config.json not found at {config_path}")
        data = {}

    return build_config(data, os.environ if env is None else env)
