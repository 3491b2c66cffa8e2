"""
Configuration loading for the flash arbitrage engine.

Reads a YAML file, overlays secrets and common overrides from the
environment (optionally populated from a ``.env`` file) and validates the
result into a frozen ``EngineConfig``.
"""

import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError

from .config_schema import EngineConfig
from .exceptions import ConfigurationError

# Environment variable -> config key. The first variable found wins.
ENV_OVERRIDES = {
    "rpc_url": ("RPC_URL", "MAINNET_RPC_URL"),
    "private_key": ("PRIVATE_KEY",),
    "wallet_address": ("WALLET_ADDRESS",),
    "contract_address": ("ARBITRAGE_CONTRACT_ADDRESS", "CONTRACT_ADDRESS"),
    "chain_id": ("CHAIN_ID",),
    "gas_oracle_api_key": ("GAS_ORACLE_API_KEY", "ETHERSCAN_API_KEY"),
    "log_dir": ("LOG_DIR",),
}


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")
    except OSError as e:
        raise ConfigurationError(f"Failed to read config {config_path}: {e}")

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"Configuration root must be a mapping: {config_path}"
        )

    return config_dict


def apply_env_overrides(
    config_dict: Dict[str, Any], environ: Optional[Mapping[str, str]] = None
) -> Dict[str, Any]:
    """Return a copy of ``config_dict`` with environment values applied."""
    environ = os.environ if environ is None else environ
    merged = dict(config_dict)

    for key, names in ENV_OVERRIDES.items():
        for name in names:
            value = environ.get(name)
            if value:
                merged[key] = value
                break

    return merged


def build_config(config_dict: Dict[str, Any]) -> EngineConfig:
    """Validate a raw mapping into an ``EngineConfig``."""
    try:
        return EngineConfig.model_validate(config_dict)
    except PydanticValidationError as e:
        # Inputs are omitted so secrets never reach logs
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors(include_input=False, include_url=False)
        )
        raise ConfigurationError(
            f"Configuration validation failed: {problems}",
            details={"error_count": e.error_count()},
        ) from None


def load_config(
    config_path: Optional[Union[str, Path]] = None,
    env_file: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """
    Load the engine configuration.

    Args:
        config_path: Optional YAML file; without it everything comes from the
            environment and defaults
        env_file: Optional dotenv file loaded before reading the environment
        environ: Environment mapping to read instead of ``os.environ``

    Returns:
        Validated, frozen configuration

    Raises:
        ConfigurationError: If the file cannot be read or validation fails
    """
    if environ is None:
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

    config_dict: Dict[str, Any] = {}
    if config_path is not None:
        config_dict = load_yaml_config(config_path)

    return build_config(apply_env_overrides(config_dict, environ))
