#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
PlayinMO - Browser Gaming Portal
Copyright (C) 2025 PlayinMO contributors

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.

Image proxy for game artwork hosted on Google Drive

Images are fetched through a local file cache. A cached file is served
while its modification time is younger than max_age_hours; after that a
fresh copy is downloaded, trying each Google Drive URL form in turn.
"""

import logging
import os
import time
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiofiles
import httpx

from site_utils import detect_image_type, image_mimetype

logger = logging.getLogger(__name__)

CACHE_EXTENSION = '.img'


class ImageDownloadError(Exception):
    """Raised when none of the candidate URLs produced an image"""


@dataclass
class CachedImage:
    path: str
    mimetype: str
    from_cache: bool
    stale: bool = False


class ImageProxyService:
    """Download-through cache for mapped game images"""

    def __init__(self, cache_dir: str, mappings: Dict[str, str], max_age_hours: float = 24,
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cache_dir = cache_dir
        self.mappings = dict(mappings)
        self.max_age_hours = max_age_hours
        self.transport = transport

        self.timeout = httpx.Timeout(timeout=timeout, connect=10.0)
        self.limits = httpx.Limits(max_connections=10, max_keepalive_connections=10, keepalive_expiry=30.0)
        self.headers = {
            'accept': 'image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8',
            'user-agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36',
        }

        os.makedirs(cache_dir, exist_ok=True)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            limits=self.limits,
            headers=self.headers,
            follow_redirects=True,
            transport=self.transport
        )

    def cache_path(self, key: str) -> str:
        return os.path.join(self.cache_dir, f"{key}{CACHE_EXTENSION}")

    @staticmethod
    def candidate_urls(file_id: str) -> List[str]:
        """Google Drive URL forms, most direct first"""
        return [
            f"https://drive.google.com/uc?export=download&id={file_id}",
            f"https://drive.google.com/thumbnail?id={file_id}&sz=w300-h300",
            f"https://lh3.googleusercontent.com/d/{file_id}",
        ]

    def is_fresh(self, path: str, now: Optional[float] = None) -> bool:
        """True if the cached file exists and is younger than max_age_hours"""
        if not os.path.exists(path):
            return False
        age_hours = ((now or time.time()) - os.path.getmtime(path)) / 3600
        return age_hours < self.max_age_hours

    async def download_image(self, file_id: str, client: Optional[httpx.AsyncClient] = None) -> bytes:
        """Try each candidate URL in order and return the first real image"""
        if client is None:
            async with self._client() as own_client:
                return await self.download_image(file_id, own_client)

        for url in self.candidate_urls(file_id):
            try:
                logger.debug(f"Trying to download from: {url}")
                response = await client.get(url)
                if response.status_code >= 400:
                    logger.debug(f"{url} answered HTTP {response.status_code}")
                    continue
                data = response.content
                if detect_image_type(data):
                    logger.info(f"Successfully downloaded {len(data)} bytes from {url}")
                    return data
                logger.debug(f"{url} did not return an image ({len(data)} bytes)")
            except httpx.HTTPError as e:
                logger.warning(f"Failed to download from {url}: {e}")

        raise ImageDownloadError(f"Failed to download image {file_id} from all attempted URLs")

    async def _write_cache(self, path: str, data: bytes) -> None:
        # Write next to the target then swap, readers never see a partial file
        tmp_path = f"{path}.{uuid.uuid4().hex}.tmp"
        try:
            async with aiofiles.open(tmp_path, 'wb') as f:
                await f.write(data)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def _cached(self, path: str, stale: bool = False) -> CachedImage:
        with open(path, 'rb') as f:
            head = f.read(512)
        return CachedImage(path=path, mimetype=image_mimetype(detect_image_type(head)),
                           from_cache=True, stale=stale)

    async def get_image(self, key: str) -> CachedImage:
        """
        Resolve an image key to a file on disk, downloading when needed.

        Raises KeyError for an unmapped key and ImageDownloadError when the
        download fails and there is no cached copy at all.
        """
        file_id = self.mappings.get(key)
        if not file_id:
            raise KeyError(key)

        path = self.cache_path(key)
        if self.is_fresh(path):
            return self._cached(path)

        logger.info(f"Downloading fresh copy of {key}...")
        try:
            data = await self.download_image(file_id)
        except ImageDownloadError:
            if os.path.exists(path):
                logger.warning(f"Serving stale cached copy of {key}, download failed")
                return self._cached(path, stale=True)
            raise

        await self._write_cache(path, data)
        return CachedImage(path=path, mimetype=image_mimetype(detect_image_type(data)), from_cache=False)

    async def preload_all_images(self) -> Dict[str, int]:
        """Download every mapped image that is not cached yet"""
        logger.info("Preloading all game images...")
        loaded = 0
        failed = 0

        async with self._client() as client:
            for key, file_id in self.mappings.items():
                path = self.cache_path(key)
                if os.path.exists(path):
                    logger.debug(f"{key} already cached")
                    loaded += 1
                    continue
                try:
                    data = await self.download_image(file_id, client)
                    await self._write_cache(path, data)
                    logger.info(f"Preloaded {key} ({len(data)} bytes)")
                    loaded += 1
                except (ImageDownloadError, OSError) as e:
                    logger.error(f"Failed to preload {key}: {e}")
                    failed += 1

        logger.info(f"Preload complete: {loaded} loaded, {failed} failed")
        return {'loaded': loaded, 'failed': failed}
