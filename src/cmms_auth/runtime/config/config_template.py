"""Configuration template substitution utilities."""

import os
import re
from pathlib import Path

import yaml
from loguru import logger
from pydantic_core import ValidationError

from src.cmms_auth.runtime.config.config_data import ConfigData
from src.cmms_auth.runtime.settings import EnvironmentVariables


def substitute_env_vars(text: str) -> str:
    """
    Substitute environment variable placeholders in text.

    Supports formats:
    - ${VAR_NAME} - required variable (raises error if missing)
    - ${VAR_NAME:-default} - optional with default value
    - ${VAR_NAME:?error_message} - required with custom error message
    """

    def replacer(match):
        var_expr = match.group(1)

        if ":-" in var_expr:
            var_name, default = var_expr.split(":-", 1)
            return os.getenv(var_name, default)

        elif ":?" in var_expr:
            var_name, error_msg = var_expr.split(":?", 1)
            value = os.getenv(var_name)
            if value is None:
                raise ValueError(f"Required environment variable {var_name}: {error_msg}")
            return value

        else:
            value = os.getenv(var_expr)
            if value is None:
                raise ValueError(f"Required environment variable {var_expr} not set")
            return value

    return re.sub(r"\$\{([^}]+)\}", replacer, text)


def apply_environment_overrides(
    config: ConfigData, env: EnvironmentVariables | None = None
) -> ConfigData:
    """Overlay feature flags, secrets and tenant maps taken from the environment."""
    env = env or EnvironmentVariables()

    if env.environment is not None:
        config.app.environment = env.environment
    if env.jwt_secret:
        config.jwt.secret = env.jwt_secret
    if env.frontend_url:
        config.app.frontend_url = env.frontend_url
    if env.database_url:
        config.database.url = env.database_url
    if env.redis_url:
        config.redis.url = env.redis_url
        config.redis.enabled = True

    if env.enable_oidc is not None:
        config.features.oidc_enabled = env.enable_oidc
    if env.enable_saml is not None:
        config.features.saml_enabled = env.enable_saml
    if env.mfa_enforced is not None:
        config.mfa.enforced = env.mfa_enforced
    if env.mfa_optional_for_sso is not None:
        config.mfa.sso_trusted_second_factor = env.mfa_optional_for_sso
    if env.cookie_secure is not None:
        config.security.secure_cookies = env.cookie_secure

    lockout = config.security.lockout
    if env.login_lockout_threshold is not None:
        lockout.threshold = env.login_lockout_threshold
    if env.login_lockout_window_ms is not None:
        lockout.window_ms = env.login_lockout_window_ms
    if env.login_lockout_duration_ms is not None:
        lockout.duration_ms = env.login_lockout_duration_ms

    config.tenancy.domain_map.update(env.domain_map)
    config.tenancy.issuer_map.update(env.issuer_map)
    return config


def load_templated_yaml(file_path: Path) -> ConfigData:
    """
    Load a YAML file with environment variable substitution.

    Args:
        file_path: Path to the YAML file

    Returns:
        Parsed configuration with environment overrides applied

    Raises:
        ValueError: If required environment variables are missing or the file is invalid
        FileNotFoundError: If the YAML file doesn't exist
    """
    with open(file_path) as f:
        content = f.read()

    env_mode = os.getenv("APP_ENVIRONMENT", "development")
    logger.info(f"Loading configuration for environment: {env_mode}")

    # TEST_JWT_SECRET overrides JWT_SECRET when APP_ENVIRONMENT=test, and so on
    prefix = f"{env_mode.upper()}_"
    for var_name, var_value in list(os.environ.items()):
        if var_name.startswith(prefix):
            os.environ[var_name[len(prefix):]] = var_value
            logger.debug(f"Set environment variable {var_name[len(prefix):]} from {var_name}")

    substituted_content = substitute_env_vars(content)

    try:
        loaded = yaml.safe_load(substituted_content)
        if not loaded:
            raise ValueError("Failed to parse YAML")
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML: {e}") from e

    try:
        config = ConfigData(**loaded.get("config", {}))
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from e

    config = apply_environment_overrides(config)

    enabled = {}
    for name, provider in config.oauth.providers.items():
        if provider.enabled and name in config.oauth.supported_providers:
            enabled[name] = provider
        else:
            logger.info(f"Skipping OAuth provider '{name}'")
    config.oauth.providers = enabled

    config.oidc.providers = {
        name: provider
        for name, provider in config.oidc.providers.items()
        if provider.enabled
    }
    if config.features.oidc_enabled and not config.oidc.providers:
        logger.warning("OIDC is enabled but no OIDC providers are configured")

    return config
