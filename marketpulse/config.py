"""MarketPulse — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from marketpulse.errors import ConfigurationError


_REQUIRED_VARS = [
    "BYBIT_API_KEY",
    "BYBIT_API_SECRET",
]

_ORDER_TYPES = ("Market", "Limit")
_NEUTRAL_POLICIES = ("skip", "buy")


@dataclass(frozen=True)
class IndicatorConfig:
    """Indicator periods and thresholds consumed by the analyzer."""

    rsi_period: int = 14
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bollinger_period: int = 20
    bollinger_std_dev: float = 2.0
    ema_pairs: tuple[tuple[int, int], ...] = ((9, 21), (21, 50), (50, 200))
    volume_period: int = 20


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    bybit_api_key: str
    bybit_api_secret: str
    bybit_testnet: bool = False
    symbols: tuple[str, ...] = ("BTCUSDT", "ETHUSDT", "SOLUSDT")
    timeframes: tuple[str, ...] = ("15m", "1h", "4h", "1d")
    candle_limit: int = 100
    analysis_window: int = 100
    indicators: IndicatorConfig = field(default_factory=IndicatorConfig)
    alert_threshold: float = 5.0
    activation_threshold: float = 65.0
    monitor_interval_seconds: float = 60.0
    sweep_interval_seconds: float = 60.0
    max_leverage: int = 5
    default_trade_size_usd: float = 50.0
    account_size_usd: float = 1000.0
    max_risk_per_trade_pct: float = 2.0
    take_profit_pct: float = 3.0
    stop_loss_pct: float = 1.5
    order_type: str = "Market"
    auto_trading: bool = True
    neutral_policy: str = "skip"
    signal_cooldown_seconds: float = 3600.0
    max_entry_bandwidth: float = 0.1
    close_backoff_seconds: float = 1.0
    order_pacing_seconds: float = 2.0
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    db_path: str = "data/marketpulse.db"
    log_level: str = "INFO"
    api_port: int = 3000

    @property
    def bybit_base_url(self) -> str:
        """Return the Bybit v5 API base URL for mainnet or testnet."""
        if self.bybit_testnet:
            return "https://api-testnet.bybit.com"
        return "https://api.bybit.com"

    @property
    def monitored_pairs(self) -> list[tuple[str, str]]:
        """Every (instrument, timeframe) combination the monitor visits."""
        return [(s, tf) for s in self.symbols for tf in self.timeframes]


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default: str, cast=float):
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(
            f"Environment variable {name} must be a number, got {raw!r}"
        ) from None


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = os.environ.get(name, default)
    for choice in choices:
        if raw.lower() == choice.lower():
            return choice
    raise ConfigurationError(
        f"Environment variable {name} must be one of {', '.join(choices)}, got {raw!r}"
    )


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ConfigurationError`` with a message naming the missing variable
    when a required variable is absent, or naming the offending variable when
    a value cannot be parsed.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ConfigurationError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    indicators = IndicatorConfig(
        rsi_period=_env_number("RSI_PERIOD", "14", int),
        rsi_overbought=_env_number("RSI_OVERBOUGHT", "70"),
        rsi_oversold=_env_number("RSI_OVERSOLD", "30"),
        macd_fast=_env_number("MACD_FAST_PERIOD", "12", int),
        macd_slow=_env_number("MACD_SLOW_PERIOD", "26", int),
        macd_signal=_env_number("MACD_SIGNAL_PERIOD", "9", int),
        bollinger_period=_env_number("BOLLINGER_PERIOD", "20", int),
        bollinger_std_dev=_env_number("BOLLINGER_STD_DEV", "2"),
        volume_period=_env_number("VOLUME_PERIOD", "20", int),
    )

    return Config(
        bybit_api_key=os.environ["BYBIT_API_KEY"],
        bybit_api_secret=os.environ["BYBIT_API_SECRET"],
        bybit_testnet=_env_bool("BYBIT_TESTNET", False),
        symbols=_env_list("TRADE_SYMBOLS", "BTCUSDT,ETHUSDT,SOLUSDT"),
        timeframes=_env_list("TIMEFRAMES", "15m,1h,4h,1d"),
        candle_limit=_env_number("CANDLE_LIMIT", "100", int),
        analysis_window=_env_number("ANALYSIS_WINDOW", "100", int),
        indicators=indicators,
        alert_threshold=_env_number("ALERT_THRESHOLD", "5"),
        activation_threshold=_env_number("ACTIVATION_THRESHOLD", "65"),
        monitor_interval_seconds=_env_number("MONITOR_INTERVAL_SECONDS", "60"),
        sweep_interval_seconds=_env_number("SWEEP_INTERVAL_SECONDS", "60"),
        max_leverage=_env_number("MAX_LEVERAGE", "5", int),
        default_trade_size_usd=_env_number("DEFAULT_TRADE_SIZE_USD", "50"),
        account_size_usd=_env_number("ACCOUNT_SIZE_USD", "1000"),
        max_risk_per_trade_pct=_env_number("MAX_RISK_PER_TRADE_PCT", "2"),
        take_profit_pct=_env_number("TAKE_PROFIT_PCT", "3"),
        stop_loss_pct=_env_number("STOP_LOSS_PCT", "1.5"),
        order_type=_env_choice("DEFAULT_ORDER_TYPE", "Market", _ORDER_TYPES),
        auto_trading=_env_bool("AUTO_TRADING", True),
        neutral_policy=_env_choice("NEUTRAL_POLICY", "skip", _NEUTRAL_POLICIES),
        signal_cooldown_seconds=_env_number("SIGNAL_COOLDOWN_SECONDS", "3600"),
        max_entry_bandwidth=_env_number("MAX_ENTRY_BANDWIDTH", "0.1"),
        close_backoff_seconds=_env_number("CLOSE_BACKOFF_SECONDS", "1"),
        order_pacing_seconds=_env_number("ORDER_PACING_SECONDS", "2"),
        telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN", ""),
        telegram_chat_id=os.environ.get("TELEGRAM_CHAT_ID", ""),
        db_path=os.environ.get("DB_PATH", "data/marketpulse.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=_env_number("API_PORT", "3000", int),
    )
