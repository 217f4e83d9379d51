"""
Data URI helpers.

Every media payload that crosses the gateway boundary is a self-describing
data URI: ``data:<mime>;base64,<payload>``. MIME parameters such as
``;codecs=opus`` are preserved but otherwise ignored.
"""

import base64
import binascii
import re
from dataclasses import dataclass

_DATA_URI_RE = re.compile(
    r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)(?P<params>(?:;[^;,]+)*?);base64,(?P<data>.*)$",
    re.DOTALL,
)


@dataclass(frozen=True)
class DataUri:
    """A parsed data URI (payload still base64 encoded)."""
    mime_type: str
    base64_data: str
    params: str = ""

    def decode(self) -> bytes:
        try:
            return base64.b64decode(self.base64_data, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Invalid base64 payload in data URI: {e}") from e

    def __str__(self) -> str:
        return f"data:{self.mime_type}{self.params};base64,{self.base64_data}"


def to_data_uri(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as a data URI."""
    encoded = base64.b64encode(data).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def parse_data_uri(uri: str) -> DataUri:
    """
    Split a data URI into MIME type and base64 payload.

    Raises:
        ValueError: if ``uri`` is not a base64 data URI
    """
    match = _DATA_URI_RE.match(uri or "")
    if not match:
        raise ValueError("Expected a data URI of the form 'data:<mime>;base64,<data>'")
    return DataUri(
        mime_type=match.group("mime").lower(),
        base64_data=match.group("data"),
        params=match.group("params") or "",
    )
