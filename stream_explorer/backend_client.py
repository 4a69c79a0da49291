"""
Client for the profile, topic and id endpoints of the explorer backend.

Default endpoint: http://localhost:8080 (see config.SERVER_URL)
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from .config import HTTP_TIMEOUT_SECONDS, IDS_PATH, PROFILE_PATH, SERVER_URL, TOPICS_PATH
from .exceptions import BackendError, ProfileError
from .profile import Profile
from .stream_session import SSETransport

log = logging.getLogger("StreamExplorer.BackendClient")


class BackendClient:
    """
    JSON GET/PUT client sharing one aiohttp session with the stream transport.
    The id listing of each topic is fetched once per client lifetime.
    """

    def __init__(self, base_url: str = SERVER_URL, timeout: int = HTTP_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None
        self._ids_cache: Dict[str, List[str]] = {}

    async def start(self):
        if self.session is None:
            # No total timeout on the session: live-tail streams stay open indefinitely.
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.timeout),
            )
            log.info(f"Backend client started for {self.base_url}")

    async def stop(self):
        if self.session:
            await self.session.close()
            self.session = None
            log.info("Backend client session closed")

    def stream_transport(self) -> SSETransport:
        if self.session is None:
            raise BackendError("backend client is not started")
        return SSETransport(self.session, self.base_url)

    async def _request_json(self, method: str, path: str, params: Optional[Dict[str, str]] = None,
                            body: Any = None) -> Any:
        if self.session is None:
            raise BackendError("backend client is not started")
        url = f"{self.base_url}{path}"
        log.debug(f"{method} {url} {params or ''}")
        try:
            async with self.session.request(
                method, url, params=params, json=body,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise BackendError(f"{method} {path} returned status {resp.status}: {text[:200]}")
                if method == 'PUT':
                    return None
                return await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise BackendError(f"{method} {path} timed out") from e
        except aiohttp.ClientError as e:
            raise BackendError(f"{method} {path} failed: {e}") from e
        except ValueError as e:
            raise BackendError(f"{method} {path} returned invalid JSON: {e}") from e

    async def load_profile(self) -> Profile:
        try:
            data = await self._request_json('GET', PROFILE_PATH)
        except BackendError as e:
            raise ProfileError(f"get profile error: {e}") from e
        profile = Profile.from_dict(data)
        log.info(f"Loaded profile: topic={profile.topic} id={profile.series_id} unit={profile.unit.value}")
        return profile

    async def init_profile(self, user: str, topic: str = '', series_id: str = '', attr: str = ''):
        """First-run flow: ask the backend to create a profile for ``user``."""
        if not user.strip():
            raise ProfileError("user is required")
        query = {'user': user.strip()}
        if topic:
            query['topic'] = topic
        if series_id:
            query['id'] = series_id
        if attr:
            query['attr'] = attr
        try:
            await self._request_json('GET', PROFILE_PATH, params=query)
        except BackendError as e:
            raise ProfileError(f"init profile error: {e}") from e
        log.info(f"Initialized profile for user '{user}'")

    async def save_profile(self, profile: Profile):
        try:
            await self._request_json('PUT', PROFILE_PATH, body=profile.to_dict())
        except BackendError as e:
            raise ProfileError(f"save profile error: {e}") from e
        log.debug("Profile saved")

    async def get_topics(self) -> Dict[str, Dict[str, Any]]:
        """topic -> {"id": ..., "host": [...], "attr": [...]}"""
        data = await self._request_json('GET', TOPICS_PATH)
        if not isinstance(data, dict):
            raise BackendError(f"topics must be an object, got {type(data).__name__}")
        return data

    async def get_ids(self, topic: str) -> List[str]:
        if topic in self._ids_cache:
            return self._ids_cache[topic]
        data = await self._request_json('GET', IDS_PATH, params={'topic': topic})
        if not isinstance(data, list):
            raise BackendError(f"ids for {topic} must be a list, got {type(data).__name__}")
        self._ids_cache[topic] = [str(i) for i in data]
        return self._ids_cache[topic]
