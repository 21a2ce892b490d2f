import base64
import binascii
import logging
import mimetypes
from typing import Optional, Tuple

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from genqueue.errors import PersistenceFailed
from genqueue.settings import settings

logger = logging.getLogger(__name__)


def make_s3_client():
    # Force v4 signing + regional endpoint to avoid redirects
    cfg = Config(signature_version="s3v4", region_name=settings.AWS_REGION)
    endpoint = f"https://s3.{settings.AWS_REGION}.amazonaws.com" if settings.AWS_REGION else None
    return boto3.client("s3", region_name=settings.AWS_REGION, endpoint_url=endpoint, config=cfg)


def extension_for(content_type: str) -> str:
    ext = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ".png"
    return ".jpg" if ext in (".jpe", ".jpeg") else ext


class AssetStore:
    """Durable asset store: one S3 object per successful job."""

    def __init__(self, client=None, bucket: Optional[str] = None, public_base_url: Optional[str] = None):
        self._client = client
        self.bucket = bucket or settings.S3_BUCKET
        self.public_base_url = public_base_url if public_base_url is not None else settings.S3_PUBLIC_BASE_URL

    @property
    def client(self):
        if self._client is None:
            self._client = make_s3_client()
        return self._client

    def presign_download(self, key: str, ttl: Optional[int] = None) -> str:
        return self.client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl or settings.S3_URL_TTL_SECONDS,
        )

    def persist(self, content: bytes, content_type: str, key: str) -> str:
        """Upload bytes under `key` and return a URL for them."""
        if not self.bucket:
            raise PersistenceFailed("S3_BUCKET is not configured")
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=content, ContentType=content_type)
            if self.public_base_url:
                url = f"{self.public_base_url.rstrip('/')}/{key}"
            else:
                url = self.presign_download(key)
        except (ClientError, BotoCoreError) as e:
            raise PersistenceFailed(f"S3 upload failed for {key}: {e}")
        logger.info("Persisted %d bytes to s3://%s/%s", len(content), self.bucket, key)
        return url


def decode_inline(data_url: str) -> Tuple[bytes, str]:
    """Decode a `data:<mime>;base64,...` result into (bytes, content_type)."""
    header, _, data = data_url.partition(",")
    if not header.startswith("data:") or not data:
        raise PersistenceFailed("Malformed inline result")
    content_type = header[5:].split(";")[0] or "image/png"
    try:
        return base64.b64decode(data, validate=True), content_type
    except (binascii.Error, ValueError) as e:
        raise PersistenceFailed(f"Malformed inline result: {e}")


def fetch_remote(url: str, session=None, timeout: float = 60.0) -> Tuple[bytes, str]:
    """
    Download a provider result URL. These are advertised as expiring within
    minutes, so callers fetch once, right away.
    """
    http = session or requests
    try:
        r = http.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise PersistenceFailed(f"Failed to download image: {e}")
    if not r.ok:
        raise PersistenceFailed(f"Failed to download image: {r.status_code}")
    if not r.content:
        raise PersistenceFailed("Failed to download image: empty body")
    content_type = r.headers.get("content-type") or "image/png"
    return r.content, content_type.split(";")[0].strip()
