import asyncio
import logging
import mimetypes
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from flowvault.config import Settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A storage operation failed for a reason other than an existing object."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


@dataclass
class StoredObject:
    name: str
    full_path: str
    metadata: Optional[Dict[str, Any]] = field(default=None)


def is_duplicate_error(status: Optional[int], message: str = "") -> bool:
    """Whether a failed write means the object already exists."""
    if status == 409:
        return True
    text = (message or "").lower()
    return "already exists" in text or "duplicate" in text


def join_path(folder: str, name: str) -> str:
    folder = (folder or "").strip("/")
    return f"{folder}/{name}" if folder else name


class LocalStorage:
    """Filesystem-backed bucket under ``<root>/<bucket>``."""

    def __init__(self, root: str, bucket: str, public_base_url: str = ""):
        self.bucket = bucket
        self.base = Path(root) / bucket
        self.base.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _path(self, key: str) -> Path:
        path = (self.base / key).resolve()
        if self.base.resolve() not in path.parents:
            raise StorageError(f"Key escapes bucket: {key}")
        return path

    @staticmethod
    def _create(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "xb") as f:
            f.write(data)

    async def put_if_absent(self, key: str, data: bytes, content_type: str) -> bool:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._create, path, data)
        except FileExistsError:
            return False
        except OSError as exc:
            raise StorageError(f"Local write failed for {key}: {exc}") from exc
        return True

    async def read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise StorageError(f"Local read failed for {key}: {exc}") from exc

    async def list(self, folder: str = "", limit: int = 100, offset: int = 0) -> List[StoredObject]:
        directory = self.base / folder.strip("/") if folder else self.base
        if not directory.is_dir():
            return []
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
        objects = []
        for entry in entries[offset:offset + limit]:
            if entry.is_dir():
                objects.append(StoredObject(entry.name + "/", join_path(folder, entry.name + "/")))
                continue
            stat = entry.stat()
            objects.append(StoredObject(
                name=entry.name,
                full_path=join_path(folder, entry.name),
                metadata={
                    "size": stat.st_size,
                    "mimetype": mimetypes.guess_type(entry.name)[0] or "application/octet-stream",
                    "lastModified": datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(),
                },
            ))
        return objects

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{quote(key)}"


class SupabaseStorage:
    """Supabase Storage bucket accessed through its REST API."""

    def __init__(self, url: str, api_key: str, bucket: str, client: Optional[httpx.AsyncClient] = None):
        self.base_url = url.rstrip("/")
        self.bucket = bucket
        self._api_key = api_key
        self._client = client

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "apikey": self._api_key,
            "X-Client-Info": "flowvault",
        }

    def _object_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(key)}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}
        if self._client is not None:
            return await self._client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient(timeout=30) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return " ".join(str(body.get(k, "")) for k in ("error", "message"))
        return str(body)

    @staticmethod
    def _error_status(response: httpx.Response) -> int:
        # Supabase reports conflicts as HTTP 400 with statusCode "409" in the body.
        try:
            body = response.json()
            return int(body.get("statusCode", response.status_code))
        except (ValueError, TypeError, AttributeError):
            return response.status_code

    async def put_if_absent(self, key: str, data: bytes, content_type: str) -> bool:
        try:
            response = await self._request(
                "POST",
                self._object_url(key),
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Upload of {key} failed: {exc}") from exc
        if response.is_success:
            return True
        message = self._error_message(response)
        status = self._error_status(response)
        if is_duplicate_error(status, message):
            return False
        raise StorageError(f"Upload of {key} failed: {response.status_code} {message}", status=status)

    async def read(self, key: str) -> bytes:
        try:
            response = await self._request("GET", self._object_url(key))
        except httpx.HTTPError as exc:
            raise StorageError(f"Download of {key} failed: {exc}") from exc
        if not response.is_success:
            raise StorageError(f"Download of {key} failed: {response.status_code}", status=response.status_code)
        return response.content

    async def list(self, folder: str = "", limit: int = 100, offset: int = 0) -> List[StoredObject]:
        payload = {
            "prefix": folder,
            "limit": limit,
            "offset": offset,
            "sortBy": {"column": "name", "order": "asc"},
        }
        try:
            response = await self._request(
                "POST", f"{self.base_url}/storage/v1/object/list/{self.bucket}", json=payload
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Listing {self.bucket}/{folder} failed: {exc}") from exc
        if not response.is_success:
            raise StorageError(
                f"Listing {self.bucket}/{folder} failed: {response.status_code} {self._error_message(response)}",
                status=response.status_code,
            )
        return [
            StoredObject(
                name=item.get("name", ""),
                full_path=join_path(folder, item.get("name", "")),
                metadata=item.get("metadata"),
            )
            for item in response.json() or []
        ]

    def public_url(self, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(key)}"


def build_storage(config: Settings, bucket: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
    """Supabase when credentials are configured, local filesystem otherwise."""
    bucket = bucket or config.BUCKET_NAME
    if config.supabase_configured:
        key = config.SUPABASE_SERVICE_ROLE_KEY or config.SUPABASE_KEY
        return SupabaseStorage(config.SUPABASE_URL, key, bucket, client=client)
    logger.info("Supabase not configured; using local storage at %s", os.path.abspath(config.STORAGE_DIR))
    return LocalStorage(config.STORAGE_DIR, bucket, config.PUBLIC_BASE_URL)
