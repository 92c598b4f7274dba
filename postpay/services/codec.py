"""
Byte Codec - converts in-memory files to a transportable string and back.

Encoded form is a base64 data URL (``data:<type>;base64,<payload>``).
Decoding also accepts a bare base64 payload, which gets the default
content type. An empty content type is stored as the default one, so it
comes back as the default.
"""
import base64
import binascii
import logging
from typing import Tuple

from ..errors import MalformedPayload

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
_DATA_PREFIX = "data:"
_BASE64_MARKER = ";base64"


class ByteCodec:
    """Lossless bytes <-> string codec preserving content type."""

    def __init__(self, default_content_type: str = DEFAULT_CONTENT_TYPE):
        self._default_content_type = default_content_type

    @property
    def default_content_type(self) -> str:
        return self._default_content_type

    def encode(self, raw: bytes, content_type: str) -> str:
        if not isinstance(raw, (bytes, bytearray, memoryview)):
            raise TypeError(f"expected bytes, got {type(raw).__name__}")
        content_type = content_type or self._default_content_type
        payload = base64.b64encode(bytes(raw)).decode("ascii")
        return f"{_DATA_PREFIX}{content_type}{_BASE64_MARKER},{payload}"

    def decode(self, encoded: str) -> Tuple[bytes, str]:
        """
        Decode a data URL or bare base64 payload.

        Raises:
            MalformedPayload: if the string is not valid base64 or the
                data URL header is broken. Nothing is returned on failure.
        """
        if not isinstance(encoded, str):
            raise MalformedPayload(f"expected str payload, got {type(encoded).__name__}")

        content_type = self._default_content_type
        payload = encoded
        if encoded.startswith(_DATA_PREFIX):
            if "," not in encoded:
                raise MalformedPayload("data URL has no ',' separator")
            # base64 never contains ',' so the last marker ends the header
            meta, sep, payload = encoded[len(_DATA_PREFIX):].rpartition(_BASE64_MARKER + ",")
            if not sep:
                raise MalformedPayload("data URL is not base64 encoded")
            content_type = meta or self._default_content_type

        # b64decode either returns the full buffer or raises
        compact = "".join(payload.split())
        try:
            raw = base64.b64decode(compact, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise MalformedPayload(f"invalid base64 payload: {exc}") from exc

        return raw, content_type

    @staticmethod
    def encoded_size(raw_size: int, content_type: str) -> int:
        """Length of the encoded string for a buffer of raw_size bytes."""
        header = len(_DATA_PREFIX) + len(content_type) + len(_BASE64_MARKER) + 1
        return header + 4 * ((raw_size + 2) // 3)
