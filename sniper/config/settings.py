"""
Configuration management system.

YAML file, then .env / environment overrides, validated into SniperConfig.
"""

import os
import logging
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from ..models.config import BotMode, ConfigurationError, SniperConfig, load_config_from_env


DEFAULT_LOCATIONS = [
    "config.yaml",
    "conf/config.yaml",
    os.path.expanduser("~/.pump-sniper/config.yaml"),
]


def find_config_file(config_file: Optional[str] = None) -> Optional[str]:
    """Return the first existing config file among the explicit path and default locations"""
    for location in [config_file, *DEFAULT_LOCATIONS]:
        if location and os.path.exists(location):
            return location
    return None


def read_config_file(config_path: str) -> Dict[str, Any]:
    """Parse a YAML config file into a dict"""
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")
    return data


def load_config(config_file: Optional[str] = None, use_env: bool = True) -> SniperConfig:
    """
    Load configuration from YAML and environment.

    Args:
        config_file: Path to config file. If None, uses default locations.
        use_env: Apply .env and environment variable overrides

    Returns:
        Validated SniperConfig

    Raises:
        ConfigurationError: unreadable file or invalid values
    """
    logger = logging.getLogger("config")

    if config_file and not os.path.exists(config_file):
        raise ConfigurationError(f"Config file not found: {config_file}")

    config = get_default_config()

    config_path = find_config_file(config_file)
    if config_path:
        config = merge_configs(config, read_config_file(config_path))
        logger.info(f"Loaded configuration from {config_path}")
    else:
        logger.warning("No config file found, using default configuration")

    if use_env:
        load_dotenv()
        config = merge_configs(config, load_config_from_env())

    try:
        return SniperConfig(**config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def save_config(config: Union[SniperConfig, Dict[str, Any]], config_file: str = "config.yaml") -> None:
    """Save configuration to YAML file"""
    data = config.model_dump(mode="json") if isinstance(config, SniperConfig) else config

    os.makedirs(os.path.dirname(config_file) or ".", exist_ok=True)
    with open(config_file, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, indent=2, sort_keys=False)

    logging.getLogger("config").info(f"Configuration saved to {config_file}")


def get_default_config() -> Dict[str, Any]:
    """Get default configuration"""
    return SniperConfig().model_dump(mode="json")


def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """Merge two configuration dictionaries"""
    result = base_config.copy()

    for key, value in override_config.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = merge_configs(result[key], value)
        else:
            result[key] = value

    return result


SAMPLE_HEADER = """# Pump Sniper Configuration
# Copy this file to config.yaml and update with your settings.
# Secrets (API keys, RPC URLs with keys) are better kept in .env:
#   SOLANA_RPC_URL, SOLANA_WS_URL, WALLET_PUBLIC_KEY, HELIUS_API_KEY,
#   BIRDEYE_API_KEY, SOLSCAN_API_KEY, EXECUTION_CLIENT
# Start in paper_trading mode; live mode needs bot.execution_client
# ("package.module:Class") and network.wallet_public_key.

"""


def create_sample_config(filename: str = "config.sample.yaml") -> str:
    """Create a sample configuration file"""
    data = get_default_config()
    # Excluded tokens are long and rarely edited
    data["discovery"].pop("excluded_tokens", None)

    os.makedirs(os.path.dirname(filename) or ".", exist_ok=True)
    with open(filename, "w", encoding="utf-8") as f:
        f.write(SAMPLE_HEADER)
        yaml.safe_dump(data, f, default_flow_style=False, indent=2, sort_keys=False)

    logging.getLogger("config").info(f"Sample configuration created: {filename}")
    return filename


# ========== Configuration Validation ==========

def validate_config(config: Union[str, Dict[str, Any], SniperConfig]) -> Tuple[bool, List[str]]:
    """
    Validate configuration and return validation result.

    Args:
        config: Path to a YAML file, raw dict or SniperConfig

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors: List[str] = []

    if isinstance(config, str):
        try:
            config = read_config_file(config)
        except ConfigurationError as e:
            return False, [str(e)]

    if isinstance(config, dict):
        try:
            config = SniperConfig(**merge_configs(get_default_config(), config))
        except ValidationError as e:
            for error in e.errors():
                location = ".".join(str(part) for part in error["loc"])
                errors.append(f"{location}: {error['msg']}")
            return False, errors

    try:
        check_startup_requirements(config)
    except ConfigurationError as e:
        errors.append(str(e))

    unknown_kinds = set(config.market_data.provider_order) - set(config.market_data.cache_ttl_seconds)
    for kind in sorted(unknown_kinds):
        errors.append(f"market_data.provider_order: unknown data kind '{kind}'")

    return len(errors) == 0, errors


def check_startup_requirements(config: SniperConfig) -> None:
    """
    Startup checks that make the process exit.

    Raises:
        ConfigurationError: missing RPC endpoint, or live mode without
            wallet public key or execution client
    """
    if not config.network.rpc_url:
        raise ConfigurationError("No Solana RPC endpoint configured (SOLANA_RPC_URL)")

    if config.bot.mode == BotMode.LIVE.value:
        if not config.network.wallet_public_key:
            raise ConfigurationError("Live mode requires network.wallet_public_key (WALLET_PUBLIC_KEY)")
        if not config.bot.execution_client:
            raise ConfigurationError(
                "Live mode requires bot.execution_client ('module:Class', EXECUTION_CLIENT)"
            )
