import logging
from typing import Dict

import httpx

from chatfunnel import config

logger = logging.getLogger(__name__)


class AttachmentUploader:
    """Stores a blob and returns the public URL it can be fetched from."""

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError


class HttpAttachmentUploader(AttachmentUploader):
    """
    Uploads to an HTTP object store: PUT <STORAGE_URL>/object/<bucket>/<path>,
    served back from <STORAGE_PUBLIC_URL>/<bucket>/<path>.
    """

    def __init__(
        self,
        base_url: str = config.STORAGE_URL,
        public_url: str = config.STORAGE_PUBLIC_URL,
        bucket: str = config.ATTACHMENT_BUCKET,
        api_key: str = config.STORAGE_API_KEY,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.public_url = public_url.rstrip("/")
        self.bucket = bucket
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self, content_type: str) -> Dict[str, str]:
        headers = {"Content-Type": content_type, "x-upsert": "false"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def upload(self, path: str, data: bytes, content_type: str) -> str:
        url = f"{self.base_url}/object/{self.bucket}/{path}"
        logger.info(f"[ATTACHMENT] Uploading {len(data)} bytes to {self.bucket}/{path}")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.put(url, content=data, headers=self._headers(content_type))
            response.raise_for_status()
        public_url = f"{self.public_url}/{self.bucket}/{path}"
        logger.info(f"[ATTACHMENT] Stored at {public_url}")
        return public_url
