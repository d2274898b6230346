"""Runtime defaults and YAML backed settings for the bridge router."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Runtime defaults
# ---------------------------------------------------------------------------
EXCHANGE_DEFAULT = "binance"
BRIDGE_ASSETS_DEFAULT = ("BTC", "ETH", "BNB", "USDT")
UNIT_OF_ACCOUNT_DEFAULT = "USDT"
DISCOUNT_ASSET_DEFAULT = "BNB"
DISCOUNTED_COMMISSION_RATE_DEFAULT = 0.00005
STANDARD_COMMISSION_RATE_DEFAULT = 0.0001
ORDER_BOOK_DEPTH_DEFAULT = 100
WEBSOCKET_TIMEOUT_DEFAULT = 10.0
POLL_INTERVAL_DEFAULT = 2.0
LOG_LEVEL_DEFAULT = "INFO"

DEFAULT_CONFIG_PATH = Path("config") / "exchange_config.yaml"
CONFIG_SECTION_BY_EXCHANGE = {
    "binance": "binance",
    "binanceus": "binance_us",
}


@dataclass
class RouterSettings:
    """Settings shared by the evaluator, live pipeline and settlement."""

    exchange: str = EXCHANGE_DEFAULT
    bridge_assets: List[str] = field(default_factory=lambda: list(BRIDGE_ASSETS_DEFAULT))
    unit_of_account: str = UNIT_OF_ACCOUNT_DEFAULT
    discount_asset: str = DISCOUNT_ASSET_DEFAULT
    discounted_commission_rate: float = DISCOUNTED_COMMISSION_RATE_DEFAULT
    standard_commission_rate: float = STANDARD_COMMISSION_RATE_DEFAULT
    order_book_depth: int = ORDER_BOOK_DEPTH_DEFAULT
    websocket_timeout: Optional[float] = WEBSOCKET_TIMEOUT_DEFAULT
    poll_interval: float = POLL_INTERVAL_DEFAULT
    strict_consistency: bool = False
    make_trades: bool = False

    def __post_init__(self) -> None:
        self.exchange = self.exchange.lower()
        self.bridge_assets = [str(asset).upper() for asset in self.bridge_assets]
        self.unit_of_account = self.unit_of_account.upper()
        self.discount_asset = self.discount_asset.upper()
        if self.order_book_depth <= 0:
            raise ValueError("order_book_depth must be positive")

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "RouterSettings":
        """Build settings from the ``router`` section of a YAML file."""

        config_file = Path(path).expanduser()
        if not config_file.exists():
            logger.debug(f"Config path {config_file} does not exist; using default settings")
            return cls()
        try:
            data = yaml.safe_load(config_file.read_text()) or {}
        except yaml.YAMLError:
            logger.warning(f"Unable to parse router settings from {config_file}; using defaults")
            return cls()

        section = data.get("router", data) if isinstance(data, dict) else {}
        if not isinstance(section, dict):
            return cls()
        known = {key: value for key, value in section.items() if key in cls.__dataclass_fields__}
        return cls(**known)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_credentials_from_config(
    exchange: str,
    config_path: Optional[Union[str, Path]] = None,
) -> Dict[str, str]:
    """Load API credentials for ``exchange`` from a YAML configuration file."""

    config_file = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH
    if not config_file.exists():
        logger.debug(f"Config path {config_file} does not exist; skipping credential load")
        return {}

    try:
        data = yaml.safe_load(config_file.read_text()) or {}
    except yaml.YAMLError:
        logger.warning(f"Unable to parse credentials from {config_file}")
        return {}

    section_name = CONFIG_SECTION_BY_EXCHANGE.get(exchange.lower(), exchange.lower())
    section: Dict[str, Any] = {}
    if isinstance(data, dict):
        for key, candidate in data.items():
            if isinstance(key, str) and key.lower() == section_name.lower():
                section = candidate or {}
                break

    if not isinstance(section, dict) or not section:
        logger.debug(f"No credentials found for {exchange} in {config_file}")
        return {}

    credentials: Dict[str, str] = {}
    for raw_key, raw_value in section.items():
        if raw_value in (None, ""):
            continue
        key = str(raw_key).strip().lower()
        if key in {"apikey", "api_key", "key"} and "apiKey" not in credentials:
            credentials["apiKey"] = str(raw_value)
        elif key in {"secret", "api_secret", "secretkey"} and "secret" not in credentials:
            credentials["secret"] = str(raw_value)

    if credentials:
        logger.debug(f"Loaded credentials for {exchange} from {config_file}: " + ", ".join(
            f"{key}=***" for key in sorted(credentials)
        ))
    return credentials
