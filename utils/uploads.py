from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Mapping, Optional

from botocore.exceptions import BotoCoreError, ClientError
from werkzeug.utils import secure_filename

from utils.responses import internal_error

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"

RESOURCE_EXTENSIONS = {
    "application/pdf": "pdf",
    "application/msword": "doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.ms-powerpoint": "ppt",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "video/mp4": "mp4",
    "video/avi": "avi",
    "text/plain": "txt",
}
SCHEDULE_EXTENSIONS = {
    "application/pdf": "pdf",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}


@dataclass(frozen=True)
class UploadedFile:
    name: str
    content_type: str
    body: bytes

    @property
    def size(self) -> int:
        return len(self.body)


def form_id(form, name: str) -> Optional[int]:
    """Positive integer from a form field, or None when missing or malformed."""
    try:
        value = int(form.get(name) or 0)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def read_upload(file) -> Optional[UploadedFile]:
    """Read a multipart ``FileStorage`` into memory. A part without a filename counts as missing."""
    if file is None or not file.filename:
        return None
    content_type = (file.mimetype or "").strip().lower() or DEFAULT_CONTENT_TYPE
    return UploadedFile(
        name=secure_filename(file.filename) or "upload",
        content_type=content_type,
        body=file.read(),
    )


def extension_for(content_type: str, table: Mapping[str, str], default: Optional[str] = None) -> Optional[str]:
    return table.get((content_type or "").lower(), default)


def slug_title(title: str) -> str:
    """``"Unit 3: Algebra"`` -> ``"Unit_3__Algebra"``"""
    return re.sub(r"[^a-zA-Z0-9]", "_", title)


def store_object(storage, bucket: str, key: str, upload: UploadedFile) -> None:
    try:
        storage.upload(bucket, key, upload.body, upload.content_type)
    except (BotoCoreError, ClientError) as exc:
        logger.error("Upload to s3://%s/%s failed: %s", bucket, key, exc)
        raise internal_error("Failed to upload file")
