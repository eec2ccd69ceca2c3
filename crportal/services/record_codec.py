"""
Record Codec - JSON encode/decode between stored strings and record models
"""

import base64
import binascii
import json
from datetime import datetime
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from crportal.core.exceptions import RecordDecodeError


RecordT = TypeVar("RecordT", bound=BaseModel)


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision, e.g. 2024-05-01T09:30:00.000Z"""
    return datetime.utcnow().isoformat(timespec="milliseconds") + "Z"


def utc_today() -> str:
    """Current UTC date as YYYY-MM-DD"""
    return datetime.utcnow().date().isoformat()


def encode_record(record: BaseModel) -> str:
    return json.dumps(record.model_dump(by_alias=True, mode="json"))


def decode_record(model: Type[RecordT], raw: Optional[str], key: Optional[str] = None) -> Optional[RecordT]:
    """
    Decode a stored value into model.

    None passes through as None (the key was absent). Anything that is not a
    JSON object of the expected shape raises RecordDecodeError.
    """
    if raw is None:
        return None
    try:
        return model.model_validate_json(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "value"
        raise RecordDecodeError(model.__name__, f"{location}: {first.get('msg')}", key=key) from e


def encode_index(entries: List[str]) -> str:
    return json.dumps(list(entries))


def decode_index(raw: Optional[str], key: Optional[str] = None) -> List[str]:
    """Decode an index list; an absent index is empty"""
    if raw is None:
        return []
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RecordDecodeError("index", str(e), key=key) from e
    if not isinstance(entries, list) or not all(isinstance(entry, str) for entry in entries):
        raise RecordDecodeError("index", "expected a JSON array of strings", key=key)
    return entries


def encode_document_content(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_document_content(content: str, key: Optional[str] = None) -> bytes:
    try:
        return base64.b64decode(content, validate=True)
    except (binascii.Error, ValueError) as e:
        raise RecordDecodeError("document", f"invalid base64 content: {e}", key=key) from e
