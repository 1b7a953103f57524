"""Resolve image content parts into Dify file descriptors."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol, Union

from ..errors import InvalidInlineData

logger = logging.getLogger(__name__)


DATA_URL_PATTERN = re.compile(r"^data:(.+);base64,(.+)$", re.DOTALL)

MIME_ALIASES = {"image/jpg": "image/jpeg"}


class FileUploader(Protocol):
    async def upload_file(
        self,
        data: bytes,
        *,
        mime_type: str,
        filename: str,
        user: str,
    ) -> str:
        ...


@dataclass(frozen=True)
class RemoteUrl:
    url: str

    def to_file(self) -> dict[str, Any]:
        return {"type": "image", "transfer_method": "remote_url", "url": self.url}


@dataclass(frozen=True)
class UploadedRef:
    id: str

    def to_file(self) -> dict[str, Any]:
        return {
            "type": "image",
            "transfer_method": "local_file",
            "upload_file_id": self.id,
        }


Attachment = Union[RemoteUrl, UploadedRef]


@dataclass(frozen=True)
class InlineImage:
    mime_type: str
    data: bytes

    @property
    def filename(self) -> str:
        return f"image.{self.mime_type.split('/', 1)[-1]}"


def parse_data_url(value: str) -> InlineImage:
    """Decode a ``data:<mime>;base64,<payload>`` URL."""

    match = DATA_URL_PATTERN.match(value.strip())
    if match is None:
        raise InvalidInlineData("Invalid base64 data")

    mime_type = match.group(1).strip().lower()
    mime_type = MIME_ALIASES.get(mime_type, mime_type)
    cleaned = re.sub(r"\s+", "", match.group(2))
    try:
        data = base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidInlineData("Invalid base64 data") from exc
    if not data:
        raise InvalidInlineData("Inline image payload was empty")
    return InlineImage(mime_type=mime_type, data=data)


def is_data_url(value: str) -> bool:
    return value.lstrip().lower().startswith("data:")


class AttachmentResolver:
    """Turn image references into ``Attachment`` values.

    Remote URLs pass through untouched. Inline data URLs are uploaded through
    ``uploader`` and referenced by the returned file id.
    """

    def __init__(self, uploader: FileUploader):
        self._uploader = uploader

    async def resolve(self, url: str, *, user: str) -> Attachment:
        if not is_data_url(url):
            return RemoteUrl(url)

        image = parse_data_url(url)
        file_id = await self._uploader.upload_file(
            image.data,
            mime_type=image.mime_type,
            filename=image.filename,
            user=user,
        )
        return UploadedRef(file_id)


__all__ = [
    "Attachment",
    "AttachmentResolver",
    "FileUploader",
    "InlineImage",
    "RemoteUrl",
    "UploadedRef",
    "is_data_url",
    "parse_data_url",
]
