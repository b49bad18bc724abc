# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.

import base64
import binascii
import re
from typing import Optional, Union

from framesense_pipeline.exceptions import ValidationError

# Leading bytes of the image encodings the pipeline accepts
IMAGE_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff", "jpeg"),
    (b"GIF87a", "gif"),
    (b"GIF89a", "gif"),
    (b"BM", "bmp"),
)
MIME_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "bmp": "image/bmp",
}
_DATA_URL = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,(?P<payload>.*)$", re.DOTALL)


def detect_image_format(data: bytes) -> Optional[str]:
    """Returns the image format from its magic bytes, or None when unrecognized."""
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    for signature, fmt in IMAGE_SIGNATURES:
        if data.startswith(signature):
            return fmt
    return None


def decode_image(image: Union[bytes, bytearray, str, None]) -> Optional[bytes]:
    """
    Normalizes an incoming image to raw bytes.

    Accepts raw bytes or a `data:image/...;base64,` URL. Anything else, and any
    payload whose encoding is not a recognized image format, raises ValidationError.
    """
    if image is None:
        return None
    if isinstance(image, (bytes, bytearray)):
        data = bytes(image)
    elif isinstance(image, str):
        match = _DATA_URL.match(image.strip())
        if not match:
            raise ValidationError("Image must be raw bytes or a base64 data URL (data:image/<type>;base64,...)")
        try:
            data = base64.b64decode(match.group("payload"), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValidationError(f"Image data URL is not valid base64: {e}") from e
    else:
        raise ValidationError(f"Unsupported image type: {type(image).__name__}")

    if not data:
        raise ValidationError("Image is empty")
    if detect_image_format(data) is None:
        raise ValidationError("Unrecognized image format; supported formats are PNG, JPEG, GIF, WEBP and BMP")
    return data


def to_data_url(data: bytes) -> str:
    fmt = detect_image_format(data) or "png"
    return f"data:{MIME_TYPES[fmt]};base64,{base64.b64encode(data).decode('ascii')}"
