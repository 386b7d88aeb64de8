"""
Profile-picture propagation to the identity service.

Delivery failure must abort the triggering ingest, so every problem
surfaces as ProfilePropagationError.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from mediaflow.common.errors import ConfigurationError, RetryableError

logger = logging.getLogger(__name__)


class ProfilePropagationError(RetryableError):
    """The identity service did not accept the new profile picture."""
    pass


class ProfileNotifier(ABC):

    @abstractmethod
    def notify_profile_picture(self, user_id: str, picture_url: str) -> None:
        """
        Tell the identity service about a new profile picture.

        Raises:
            ProfilePropagationError: delivery failed
        """
        pass

    def close(self) -> None:
        pass


class HttpProfileNotifier(ProfileNotifier):
    """PUT {base_url}/users/{user_id}/profile-picture with an API key."""

    def __init__(
        self,
        base_url: Optional[str],
        api_key: str = "",
        timeout: float = 30.0,
        connect_timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout, connect=connect_timeout),
            transport=transport,
        )

    def notify_profile_picture(self, user_id: str, picture_url: str) -> None:
        if not self.base_url:
            raise ConfigurationError("Profile propagation requires profile_service_url")

        url = f"{self.base_url}/users/{user_id}/profile-picture"
        try:
            response = self._client.put(
                url,
                json={"profilePictureUrl": picture_url},
                headers={"x-api-key": self.api_key},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Failed to update profile picture for user {user_id}: {e}")
            raise ProfilePropagationError(
                f"Profile picture update for {user_id} failed: {e}") from e
        logger.info(f"Profile picture updated for user {user_id}")

    def close(self) -> None:
        self._client.close()
