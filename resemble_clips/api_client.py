"""Async client for the Resemble clip endpoints."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import aiohttp

from .constants import DOWNLOAD_CHUNK_SIZE, REQUEST_HEADERS, REQUEST_TIMEOUTS
from .exceptions import ApiError


@dataclass
class ClipStatus:
    """Result of a status request."""
    ready: bool
    download_url: str = ""


@dataclass
class RemoteClip:
    """A clip as listed by the service."""
    remote_id: str
    title: str


class ResembleClient:
    """
    Issues the clip operations the request pool depends on.

    Every method either returns a typed value or raises `ApiError`; transport
    errors, unexpected HTTP statuses and malformed bodies are all normalized.
    """

    def __init__(self, api_key: str, project_uuid: str, base_url: str):
        """
        Initializes the client.

        Args:
            api_key: Token sent in the Authorization header.
            project_uuid: Project whose clips are managed.
            base_url: API root, e.g. https://app.resemble.ai/api/v1
        """
        self.api_key = api_key
        self.project_uuid = project_uuid
        self.base_url = base_url.rstrip('/')
        self.logger = logging.getLogger(__name__)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "ResembleClient":
        return self

    async def __aexit__(self, *exc_info):
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connect_timeout, read_timeout = REQUEST_TIMEOUTS
            self._session = aiohttp.ClientSession(
                headers=REQUEST_HEADERS,
                timeout=aiohttp.ClientTimeout(total=None, connect=connect_timeout, sock_read=read_timeout),
            )
        return self._session

    async def close(self):
        """Releases the underlying HTTP session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _clips_url(self, remote_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/projects/{self.project_uuid}/clips"
        return f"{url}/{remote_id}" if remote_id else url

    async def _request_json(self, method: str, url: str, **kwargs) -> Any:
        session = self._get_session()
        headers = {'Authorization': f'Token token={self.api_key}'}
        try:
            async with session.request(method, url, headers=headers, **kwargs) as r:
                if r.status >= 400:
                    text = await r.text()
                    raise ApiError(f"{method} {url} failed: {text[:200]}", status=r.status)
                if r.status == 204:
                    return None
                try:
                    return await r.json(content_type=None)
                except ValueError as e:
                    raise ApiError(f"{method} {url} returned a malformed body: {e}", status=r.status)
        except aiohttp.ClientError as e:
            raise ApiError(f"Network error on {method} {url}: {e}")
        except asyncio.TimeoutError:
            raise ApiError(f"{method} {url} timed out")

    async def create_or_update(self, remote_id: Optional[str], title: str, body: str, voice: str) -> str:
        """
        Creates a new clip, or patches an existing one when `remote_id` is given.

        Returns:
            The remote clip uuid.
        """
        payload = {'data': {'title': title, 'body': body, 'voice': voice}}
        if remote_id:
            self.logger.debug(f"Patching clip {remote_id}")
            await self._request_json('PATCH', self._clips_url(remote_id), json=payload)
            return remote_id

        self.logger.debug(f"Creating clip '{title}'")
        data = await self._request_json('POST', self._clips_url(), json=payload)
        new_id = data.get('id') if isinstance(data, dict) else None
        if not new_id:
            raise ApiError("Create clip response did not contain an id")
        return str(new_id)

    async def get_status(self, remote_id: str) -> ClipStatus:
        """Asks whether the clip audio has been generated."""
        data = await self._request_json('GET', self._clips_url(remote_id))
        if not isinstance(data, dict):
            raise ApiError(f"Unexpected status response type: {type(data).__name__}")
        ready = bool(data.get('finished'))
        link = data.get('link') or ""
        if ready and not link:
            raise ApiError(f"Clip {remote_id} is finished but has no download link")
        return ClipStatus(ready=ready, download_url=link)

    async def download(self, url: str, on_progress: Optional[Callable[[float], None]] = None) -> bytes:
        """
        Downloads the clip audio.

        Args:
            url: The link returned by `get_status`.
            on_progress: Called with a fraction in [0, 1] as chunks arrive, when the size is known.
        """
        session = self._get_session()
        try:
            # The download link is pre-signed; it must not carry the API token.
            async with session.get(url) as r:
                if r.status >= 400:
                    raise ApiError(f"Download of {url} failed", status=r.status)
                total_size = int(r.headers.get('Content-Length', 0))
                chunks: List[bytes] = []
                bytes_downloaded = 0
                async for chunk in r.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                    chunks.append(chunk)
                    bytes_downloaded += len(chunk)
                    if on_progress and total_size > 0:
                        on_progress(min(bytes_downloaded / total_size, 1.0))
        except aiohttp.ClientError as e:
            raise ApiError(f"Network error downloading {url}: {e}")
        except asyncio.TimeoutError:
            raise ApiError(f"Download of {url} timed out")

        if on_progress:
            on_progress(1.0)
        return b"".join(chunks)

    async def delete(self, remote_id: str):
        """Deletes the remote clip."""
        await self._request_json('DELETE', self._clips_url(remote_id))

    async def list_clips(self, page: int = 1) -> List[RemoteClip]:
        """Lists one page of the project's clips."""
        data = await self._request_json('GET', self._clips_url(), params={'page': page})
        items: Any = data.get('items', []) if isinstance(data, dict) else data
        if not isinstance(items, list):
            raise ApiError("Unexpected clip list response")
        clips = []
        for item in items:
            if isinstance(item, dict) and item.get('uuid'):
                clips.append(RemoteClip(remote_id=str(item['uuid']), title=str(item.get('title', ''))))
        return clips
