"""
Authentication module for the chatwire library.

Holds the access credential and the device identity the client presents.
Obtaining the credential (login forms, two-factor flows) happens outside this
library; the credential is handed in or loaded from the credentials file.
"""

import time
import logging
from typing import Dict, Any, Optional

from chatwire.config import Config
from chatwire.exceptions import AuthenticationError, ValidationError
from chatwire.utils import generate_client_id, generate_device_id

logger = logging.getLogger(__name__)

class Auth:
    """
    Access credential and device identity.
    """

    def __init__(self, config: Config):
        """
        Initialize the authentication handler.

        Args:
            config: Configuration instance.
        """
        self.config = config
        self.credentials = config.load_credentials() or {}
        self.device_id = self.credentials.get("device_id") or generate_device_id()
        self.client_id = generate_client_id()
        self.access_token: Optional[str] = self.credentials.get("access_token")
        self.user_id: Optional[str] = self.credentials.get("user_id")
        self.expiration: Optional[int] = self.credentials.get("expiration")

    def set_access_token(self, access_token: str, user_id: Optional[str] = None,
                         ttl: Optional[int] = None, persist: bool = False) -> None:
        """
        Install an access credential.

        Args:
            access_token: Bearer token for the platform.
            user_id: ID of the account the token belongs to.
            ttl: Lifetime of the token in seconds, if known.
            persist: Whether to save the credential to the credentials file.

        Raises:
            ValidationError: If the token is empty.
        """
        if not access_token or not isinstance(access_token, str):
            raise ValidationError("Access token must be a non-empty string")

        self.access_token = access_token
        self.user_id = user_id or self.user_id
        self.expiration = int(time.time()) + ttl if ttl else None

        if persist:
            self.credentials = {
                "access_token": self.access_token,
                "user_id": self.user_id,
                "device_id": self.device_id,
                "expiration": self.expiration
            }
            self.config.save_credentials(self.credentials)

        logger.info(f"Access token installed for user {self.user_id or 'unknown'}")

    def is_authenticated(self) -> bool:
        """
        Check if a usable credential is present.

        Returns:
            True if a non-expired token is held, False otherwise.
        """
        if not self.access_token:
            return False

        if self.expiration is not None and self.expiration < int(time.time()):
            logger.warning("Access token has expired")
            return False

        return True

    def require_authenticated(self) -> None:
        if not self.is_authenticated():
            raise AuthenticationError("Not authenticated")

    def get_auth_headers(self) -> Dict[str, str]:
        """
        Get headers that carry the credential.

        Returns:
            Authorization header when a token is held, otherwise empty.
        """
        if not self.access_token:
            return {}

        return {"Authorization": f"Bearer {self.access_token}"}

    def get_identity(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "device_id": self.device_id,
            "client_id": self.client_id
        }

    def logout(self) -> bool:
        """
        Forget the credential locally.

        Returns:
            True if a credential was held.
        """
        had_token = self.access_token is not None
        self.access_token = None
        self.expiration = None

        if had_token:
            logger.info("Logged out")

        return had_token
