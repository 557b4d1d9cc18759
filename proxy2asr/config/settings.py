"""
Centralized configuration settings for proxy2asr.

This module provides singleton access to the package configuration.
"""

from typing import List, Optional

from .env_loader import get_environment_info, load_application_config
from .models import ApplicationConfig, LoggingConfig, SecurityConfig, WebSocketConfig


# Global configuration instance
_config: Optional[ApplicationConfig] = None


def get_config() -> ApplicationConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_application_config()
    return _config


def reload_config() -> ApplicationConfig:
    """Reload configuration from environment variables."""
    global _config
    _config = load_application_config()
    return _config


def set_config(config: Optional[ApplicationConfig]) -> None:
    """Set a custom configuration instance (useful for testing).

    Passing None drops the cached instance so the next access reloads it.
    """
    global _config
    _config = config


def validate_configuration() -> List[str]:
    """Validate the current configuration and return any errors."""
    return get_config().validate()


def print_configuration_summary() -> None:
    """Print a summary of the current configuration."""
    config = get_config()
    env_info = get_environment_info()

    print("=== proxy2asr Configuration Summary ===")
    print(f"Chunk size: {config.websocket.chunk_size} bytes")
    print(f"Open timeout: {config.websocket.open_timeout}")
    print(f"Receive timeout: {config.websocket.receive_timeout}")
    print(f"Ping interval: {config.websocket.ping_interval}")
    print(f"Trust all certificates: {config.security.trust_all_certificates}")
    print(f"Log level: {config.logging.level.value}")
    print(f"Environment variables loaded: {env_info['environment_variables_loaded']}")

    errors = validate_configuration()
    if errors:
        print("\nConfiguration Issues:")
        for error in errors:
            print(f"  - {error}")
    else:
        print("\nConfiguration is valid")


# Convenience aliases for common configurations
def websocket_config() -> WebSocketConfig:
    """Get WebSocket configuration."""
    return get_config().websocket


def security_config() -> SecurityConfig:
    """Get TLS configuration."""
    return get_config().security


def logging_config() -> LoggingConfig:
    """Get logging configuration."""
    return get_config().logging
