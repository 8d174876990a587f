"""Client for the external chat/communication service."""

from typing import Any, List, Optional, Sequence

import httpx

from core.config import config as settings
from core.logging import get_logger

logger = get_logger(__name__)


class ChatChannelKind:
    SQUAD = "squad"
    COACHING = "coaching"


class ChatService:
    """
    Thin async HTTP client for channel provisioning.

    Every call is a single request; callers treat failures as non-fatal and
    surface them as warnings. When CHAT_SERVICE_URL is not configured the
    client is a no-op.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.CHAT_SERVICE_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.CHAT_SERVICE_API_KEY
        self.timeout = timeout or settings.CHAT_SERVICE_TIMEOUT

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers(),
                json=json,
            )
        response.raise_for_status()
        return response

    async def create_channel(
        self,
        kind: str,
        participant_ids: Sequence[str],
        display_name: str,
        channel_id: Optional[str] = None,
        image_url: Optional[str] = None,
    ) -> Optional[str]:
        """
        Create (or upsert) a chat channel.

        Returns:
            The channel id, or None when the chat service is not configured.

        Raises:
            httpx.HTTPError on transport or non-2xx responses.
        """
        if not self.enabled:
            logger.info(f"Chat service not configured, skipping {kind} channel '{display_name}'")
            return None

        payload = {
            "type": kind,
            "id": channel_id,
            "name": display_name,
            "members": list(participant_ids),
            "image": image_url,
        }
        response = await self._request("POST", "/channels", json=payload)
        created_id = response.json().get("id") or channel_id
        logger.info(f"Created {kind} chat channel {created_id} with {len(payload['members'])} member(s)")
        return created_id

    async def add_participants(self, channel_id: str, participant_ids: List[str]) -> None:
        """Add members to an existing channel."""
        if not self.enabled or not participant_ids:
            return
        await self._request(
            "POST",
            f"/channels/{channel_id}/members",
            json={"members": participant_ids},
        )
        logger.info(f"Added {len(participant_ids)} member(s) to chat channel {channel_id}")
