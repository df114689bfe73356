"""Client payload decoding.

The browser SDK posts the same records in several encodings: raw JSON, a
base64 blob (multipart/form submissions) or ``data=<base64>`` from
``navigator.sendBeacon``.  ``decode`` folds all of them into a flat list of
records and fails open: a payload it cannot read becomes ``[]`` plus a logged
warning, never an exception.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, List, Optional, Union
from urllib.parse import unquote

from relay.errors import PayloadDecodeError
from relay.models import RawRecord
from relay.utils.logger import logger

__all__ = ["decode", "extract_payload"]

Body = Union[str, bytes, dict, list, None]

_PREVIEW_CHARS = 200


def _b64_json(text: str) -> Any:
    padded = text + "=" * (-len(text) % 4)
    raw = base64.b64decode(padded)
    return json.loads(raw.decode("utf-8"))


def _decode_string(body: str) -> Any:
    body = body.strip()
    if body.startswith(("[", "{")):
        if not body.endswith(("]", "}")):
            raise PayloadDecodeError("unable to parse incoming data (unknown format)")
        try:
            return json.loads(body)
        except ValueError as exc:
            raise PayloadDecodeError("unable to parse incoming data (tried JSON)") from exc

    # multipart / form submissions carry a bare base64 blob
    try:
        return _b64_json(body)
    except (binascii.Error, UnicodeDecodeError, ValueError):
        pass

    # sendBeacon: data=<url-encoded base64>
    tail = body.split("=")[-1]
    if not tail:
        raise PayloadDecodeError("unable to parse incoming data (tried sendBeacon)")
    try:
        return _b64_json(unquote(tail))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise PayloadDecodeError("unable to parse incoming data (tried base64)") from exc


def _flatten(data: Any, out: List[RawRecord]) -> None:
    if isinstance(data, dict):
        out.append(data)
    elif isinstance(data, list):
        for item in data:
            _flatten(item, out)
    else:
        raise PayloadDecodeError(f"unable to parse incoming data (unexpected {type(data).__name__})")


def decode(body: Body) -> List[RawRecord]:
    """Return the records contained in ``body`` (``[]`` when unreadable)."""

    if body is None:
        return []

    try:
        if isinstance(body, bytes):
            body = body.decode("utf-8")
        data = _decode_string(body) if isinstance(body, str) else body
        records: List[RawRecord] = []
        _flatten(data, records)
        return records
    except (PayloadDecodeError, UnicodeDecodeError) as exc:
        preview = body if isinstance(body, (str, bytes)) else repr(body)
        logger.warning(
            "unable to parse incoming data",
            extra={"error": str(exc), "body_preview": preview[:_PREVIEW_CHARS]},
        )
        return []


def _form_field(body: str, field: str) -> Optional[str]:
    # parse_qs would turn "+" into " " and corrupt base64 payloads
    prefix = f"{field}="
    for part in body.split("&"):
        if part.startswith(prefix):
            return unquote(part[len(prefix):])
    return None


def extract_payload(body: bytes, content_type: str = "") -> Body:
    """Pull the SDK payload out of a request body before decoding.

    Form posts carry it in the ``data`` field, JSON posts may wrap it as
    ``{"data": ...}``; anything else is handed to ``decode`` as text.
    """

    if not body:
        return None

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        return body

    content_type = (content_type or "").lower()
    if "application/x-www-form-urlencoded" in content_type:
        value = _form_field(text, "data")
        return value if value is not None else text

    if "application/json" in content_type:
        try:
            parsed = json.loads(text)
        except ValueError:
            return text
        if isinstance(parsed, dict) and set(parsed) == {"data"}:
            return parsed["data"]
        return parsed

    return text
