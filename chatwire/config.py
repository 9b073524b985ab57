"""
Configuration module for chatwire library.
"""

import os
import logging
import json
from pathlib import Path
from typing import Dict, Any, Optional

from chatwire.constants import USER_AGENT
from chatwire.exceptions import ValidationError

logger = logging.getLogger(__name__)

class Config:
    """
    Configuration handler for the chatwire library.
    Manages library settings and the stored access credential.
    """

    DEFAULT_CONFIG = {
        "log_level": "INFO",
        "auto_reconnect": True,
        "rate_limit_delay": 1.0,  # seconds between logical requests
        "max_retries": 3,
        "retry_delay": 2.0,  # seconds, multiplied by the attempt number
        "request_timeout": 30,  # seconds
        "max_redirects": 5,
        "connect_timeout": 30,  # seconds
        "auth_timeout": 10,  # seconds
        "ack_timeout": 10,  # seconds
        "heartbeat_interval": 30,  # seconds
        "heartbeat_timeout": 10,  # seconds
        "max_reconnect_attempts": 5,
        "reconnect_delay": 1.0,  # seconds, doubled on each attempt
        "user_agent": USER_AGENT,
        "credentials_path": "./credentials.json",
        "debug_protocol": False,
        "debug_http": False
    }

    DURATION_KEYS = (
        "rate_limit_delay",
        "retry_delay",
        "request_timeout",
        "connect_timeout",
        "auth_timeout",
        "ack_timeout",
        "heartbeat_interval",
        "heartbeat_timeout",
        "reconnect_delay",
    )

    COUNT_KEYS = ("max_retries", "max_reconnect_attempts")

    def __init__(self, config_path: Optional[str] = None, **overrides: Any):
        """
        Initialize the configuration.

        Args:
            config_path: Path to a JSON configuration file. If None, uses default config.
            **overrides: Values that take precedence over the file and the defaults.
        """
        self.config = self.DEFAULT_CONFIG.copy()
        self.config_path = config_path

        if config_path and os.path.exists(config_path):
            self._load_config(config_path)

        self.config.update(overrides)
        self.validate()

        # Setup logging based on config
        self._setup_logging()

    def _load_config(self, config_path: str) -> None:
        """
        Load configuration from a file.

        Args:
            config_path: Path to the configuration file.
        """
        try:
            with open(config_path, 'r') as f:
                user_config = json.load(f)
                self.config.update(user_config)
            logger.debug(f"Loaded configuration from {config_path}")
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load config from {config_path}: {str(e)}")

    def _setup_logging(self) -> None:
        """Configure logging based on settings."""
        log_level = getattr(logging, str(self.config.get("log_level", "INFO")).upper(), logging.INFO)

        logging.basicConfig(
            level=log_level,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # Set more verbose logging for debug components if enabled
        if self.config.get("debug_protocol", False):
            logging.getLogger("chatwire.protocol").setLevel(logging.DEBUG)
            logging.getLogger("chatwire.connection").setLevel(logging.DEBUG)

        if self.config.get("debug_http", False):
            logging.getLogger("chatwire.network").setLevel(logging.DEBUG)

    def validate(self) -> None:
        """
        Check timing and retry settings.

        Raises:
            ValidationError: If a duration is negative or a count is below one.
        """
        for key in self.DURATION_KEYS:
            value = self.config.get(key)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
                raise ValidationError(f"Configuration value {key} must be a non-negative number, got {value!r}")

        for key in self.COUNT_KEYS:
            value = self.config.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValidationError(f"Configuration value {key} must be a positive integer, got {value!r}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: The configuration key.
            default: Default value if key is not found.

        Returns:
            The configuration value or default.
        """
        return self.config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value.

        Args:
            key: The configuration key.
            value: The value to set.
        """
        previous = self.config.get(key)
        self.config[key] = value

        if key in self.DURATION_KEYS or key in self.COUNT_KEYS:
            try:
                self.validate()
            except ValidationError:
                self.config[key] = previous
                raise

        # Reload logging if log level changes
        if key == "log_level":
            self._setup_logging()

    def save(self, path: Optional[str] = None) -> None:
        """
        Save the current configuration to a file.

        Args:
            path: Path to save the configuration file. If None, uses config_path.
        """
        save_path = path or self.config_path

        if not save_path:
            logger.warning("No path specified for saving configuration")
            return

        try:
            Path(save_path).parent.mkdir(parents=True, exist_ok=True)

            with open(save_path, 'w') as f:
                json.dump(self.config, f, indent=4)
            logger.debug(f"Saved configuration to {save_path}")
        except OSError as e:
            logger.error(f"Failed to save config to {save_path}: {str(e)}")

    def load_credentials(self) -> Dict[str, str]:
        """
        Load the stored credential from the credentials file.

        Returns:
            Dict containing the access token, user id and device id, or empty.
        """
        credentials_path = self.get("credentials_path")
        credentials = {}

        if credentials_path and os.path.exists(credentials_path):
            try:
                with open(credentials_path, 'r') as f:
                    credentials = json.load(f)
                logger.debug(f"Loaded credentials from {credentials_path}")
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load credentials: {str(e)}")

        return credentials

    def save_credentials(self, credentials: Dict[str, str]) -> None:
        """
        Save the credential to the credentials file.

        Args:
            credentials: Dict containing the credential fields.
        """
        credentials_path = self.get("credentials_path")

        if not credentials_path:
            logger.warning("No path specified for saving credentials")
            return

        try:
            Path(credentials_path).parent.mkdir(parents=True, exist_ok=True)

            with open(credentials_path, 'w') as f:
                json.dump(credentials, f, indent=4)
            logger.debug(f"Saved credentials to {credentials_path}")
        except OSError as e:
            logger.error(f"Failed to save credentials to {credentials_path}: {str(e)}")
