"""
Doxologos Payments - Zoom Client
Criação de reuniões agendadas para as sessões confirmadas
"""
import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import httpx
from fastapi import Depends

from app.core.config import Settings, get_settings
from app.core.exceptions import ProviderError

logger = logging.getLogger(__name__)

ZOOM_API_URL = "https://api.zoom.us/v2"
ZOOM_OAUTH_URL = "https://zoom.us/oauth/token"


@dataclass
class Meeting:
    id: str
    join_url: str
    password: Optional[str] = None
    platform: str = "zoom"


class ZoomClient:
    """Token fixo (ZOOM_BEARER_TOKEN) ou Server-to-Server OAuth"""

    def __init__(self, config: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.bearer_token = config.ZOOM_BEARER_TOKEN
        self.account_id = config.ZOOM_ACCOUNT_ID
        self.client_id = config.ZOOM_CLIENT_ID
        self.client_secret = config.ZOOM_CLIENT_SECRET
        self.user_id = config.ZOOM_USER_ID or "me"
        self.timezone = config.ZOOM_TIMEZONE
        self._http_client = http_client

    def is_configured(self) -> bool:
        return bool(self.bearer_token or (self.account_id and self.client_id and self.client_secret))

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.post(url, **kwargs)
        async with httpx.AsyncClient(timeout=15.0) as client:
            return await client.post(url, **kwargs)

    async def _access_token(self) -> str:
        if self.bearer_token:
            return self.bearer_token

        credentials = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        response = await self._post(
            ZOOM_OAUTH_URL,
            params={"grant_type": "account_credentials", "account_id": self.account_id},
            headers={"Authorization": f"Basic {credentials}"},
        )
        if response.status_code >= 300:
            raise ProviderError("zoom", response.status_code, response.text)
        return response.json()["access_token"]

    async def create_meeting(
        self,
        topic: str,
        start_time: Optional[datetime],
        duration_minutes: int = 50,
        timezone: Optional[str] = None,
    ) -> Optional[Meeting]:
        """
        Cria reunião agendada (type 2) com sala de espera.

        Returns:
            Meeting, ou None quando o Zoom não está configurado
        """
        if not self.is_configured():
            logger.info("Zoom não configurado - reunião não criada")
            return None

        token = await self._access_token()
        payload = {
            "topic": topic,
            "type": 2,
            "start_time": (start_time or datetime.utcnow()).strftime("%Y-%m-%dT%H:%M:%S"),
            "duration": duration_minutes,
            "timezone": timezone or self.timezone,
            "settings": {"join_before_host": False, "waiting_room": True},
        }
        response = await self._post(
            f"{ZOOM_API_URL}/users/{quote(self.user_id)}/meetings",
            json=payload,
            headers={"Authorization": f"Bearer {token}"},
        )
        if response.status_code >= 300:
            raise ProviderError("zoom", response.status_code, response.text)

        data = response.json()
        logger.info(f"Reunião Zoom criada: {data.get('id')}")
        return Meeting(id=str(data.get("id")), join_url=data.get("join_url"), password=data.get("password"))


def get_zoom_client(config: Settings = Depends(get_settings)) -> ZoomClient:
    return ZoomClient(config)
