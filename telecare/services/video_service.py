"""
Daily.co video room provisioning for telemedicine consultations
"""

import logging
import re
import time
from typing import Optional

import httpx

from ..config import DAILY_API_KEY, DAILY_API_URL, DAILY_ROOM_EXPIRY_MINUTES

logger = logging.getLogger(__name__)


class VideoRoomError(Exception):
    """Room could not be provisioned"""


def sanitize_room_name(name: str) -> str:
    """Daily room names only accept lowercase letters, digits and hyphens"""
    return re.sub(r"[^a-zA-Z0-9-]", "-", name).lower()


class VideoRoomService:
    def __init__(
        self,
        api_key: Optional[str] = DAILY_API_KEY,
        base_url: str = DAILY_API_URL,
        expiry_minutes: int = DAILY_ROOM_EXPIRY_MINUTES,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.expiry_minutes = expiry_minutes
        self.transport = transport

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=30.0,
            transport=self.transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    async def create_room(self, name: str) -> str:
        """
        Create (or reuse) a room and return its join URL.

        Raises VideoRoomError when the provider is unconfigured or rejects the call.
        """
        if not self.api_key:
            raise VideoRoomError("DAILY_API_KEY not configured")

        room_name = sanitize_room_name(name)
        if room_name != name:
            logger.debug(f"Room name sanitized: {name!r} -> {room_name!r}")

        try:
            async with self._client() as http_client:
                existing = await http_client.get(f"/rooms/{room_name}")
                if existing.status_code == 200:
                    logger.info(f"✅ Video room {room_name} already exists")
                    return existing.json()["url"]

                response = await http_client.post(
                    "/rooms",
                    json={
                        "name": room_name,
                        "privacy": "public",
                        "properties": {
                            "enable_chat": True,
                            "enable_screenshare": True,
                            "enable_knocking": False,
                            "enable_prejoin_ui": False,
                            "exp": int(time.time()) + self.expiry_minutes * 60,
                        },
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ Video provider unreachable while creating {room_name}: {e}")
            raise VideoRoomError(str(e)) from e

        if response.status_code >= 400:
            logger.error(f"❌ Video room {room_name} creation failed: {response.status_code} {response.text}")
            raise VideoRoomError(f"Room creation failed with HTTP {response.status_code}")

        url = response.json()["url"]
        logger.info(f"✅ Video room created: {url}")
        return url


video_service = VideoRoomService()


def get_video_service() -> VideoRoomService:
    """Dependency injection for the video room provisioner"""
    return video_service
