"""
Image uploads to Cloudinary over its REST API.

Only the returned secure URLs are stored on categories and products.
"""
import hashlib
import time
from typing import List

import requests
from fastapi import HTTPException, UploadFile, status

import config
from logger import get_logger

_logger = get_logger(__name__)

API_BASE = "https://api.cloudinary.com"


class StorageError(RuntimeError):
    pass


class CloudStorage:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, timeout: float = config.STORAGE_TIMEOUT):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.timeout = timeout

    @property
    def upload_url(self) -> str:
        return f"{API_BASE}/v1_1/{self.cloud_name}/image/upload"

    def _signature(self, timestamp: int) -> str:
        return hashlib.sha1(f"timestamp={timestamp}{self.api_secret}".encode()).hexdigest()

    def is_available(self) -> bool:
        try:
            res = requests.get(API_BASE, timeout=self.timeout)
        except requests.RequestException as e:
            _logger.warning(f"Cloudinary health probe failed: {e}")
            return False
        return res.status_code < 500

    def upload(self, file: UploadFile) -> str:
        if not (self.cloud_name and self.api_key and self.api_secret):
            raise StorageError("Cloudinary credentials are not configured")
        timestamp = int(time.time())
        data = {
            "timestamp": timestamp,
            "api_key": self.api_key,
            "signature": self._signature(timestamp),
        }
        try:
            file.file.seek(0)
            res = requests.post(
                self.upload_url,
                data=data,
                files={"file": (file.filename or "upload", file.file, file.content_type)},
                timeout=self.timeout,
            )
            res.raise_for_status()
            url = res.json().get("secure_url")
        except (requests.RequestException, ValueError) as e:
            raise StorageError(f"Upload of {file.filename} failed: {e}")
        finally:
            file.file.close()
        if not url:
            raise StorageError("Cloudinary returned no secure_url")
        return url


def get_storage() -> CloudStorage:
    return CloudStorage(
        config.CLOUDINARY_CLOUD_NAME,
        config.CLOUDINARY_API_KEY,
        config.CLOUDINARY_API_SECRET,
    )


def upload_images(storage: CloudStorage, files: List[UploadFile]) -> List[str]:
    """Probe storage then upload every file; maps failures to 503/502."""
    _logger.debug("Checking cloudinary availability...")
    if not storage.is_available():
        _logger.warning("Cloudinary service unavailable. Try again later.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Image storage unavailable. Try again later.")
    urls = []
    for file in files:
        try:
            urls.append(storage.upload(file))
        except StorageError as e:
            _logger.warning(f"Image upload failed: {e}")
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Image upload failed")
    _logger.info(f"Uploaded {len(urls)} image(s) to cloudinary")
    return urls
