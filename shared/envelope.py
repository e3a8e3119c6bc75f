from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Union
import json


class DecodeError(ValueError):
    """Raised when an inbound frame is not a well-formed chat envelope."""
    pass


@dataclass(frozen=True)
class ChatEnvelope:
    """
    Every chat frame on the wire is a UTF-8 JSON text frame:
    {
    "sender":  "STRING",
    "content": "STRING"
    }

    No versioning, message id or timestamp travels on the wire; extra
    fields are tolerated and ignored.
    """
    sender: str
    content: str

    @classmethod
    def from_json(cls, json_str: str) -> 'ChatEnvelope':
        """Parse JSON string into ChatEnvelope, validating structure"""
        try:
            data = json.loads(json_str)
        except (ValueError, RecursionError, TypeError) as e:
            # oversized int literals raise a plain ValueError, deep nesting RecursionError
            raise DecodeError(f"Invalid JSON: {e}") from e

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'ChatEnvelope':
        """Create ChatEnvelope from dictionary, validating required fields"""
        if not isinstance(data, Mapping):
            raise DecodeError(f"Envelope must be a JSON object, got {type(data).__name__}")

        required_fields = {'sender', 'content'}
        missing = required_fields - set(data.keys())
        if missing:
            raise DecodeError(f"Missing required fields: {sorted(missing)}")

        if not isinstance(data['sender'], str):
            raise DecodeError("'sender' must be a string")
        if not isinstance(data['content'], str):
            raise DecodeError("'content' must be a string")

        return cls(sender=data['sender'], content=data['content'])

    def to_dict(self) -> Dict[str, Any]:
        return {'sender': self.sender, 'content': self.content}

    def to_json(self) -> str:
        """Convert ChatEnvelope to a compact JSON text frame"""
        return json.dumps(self.to_dict(), separators=(',', ':'), sort_keys=True, ensure_ascii=False)


def decode_frame(frame: Union[str, bytes]) -> str:
    """Return the text carried by a frame; binary frames must be valid UTF-8."""
    if isinstance(frame, str):
        return frame
    try:
        return bytes(frame).decode('utf-8')
    except UnicodeDecodeError as e:
        raise DecodeError(f"Binary frame is not valid UTF-8: {e}") from e


def create_envelope(sender: str, content: str) -> ChatEnvelope:
    """Helper to build an outbound envelope for the given sender identity"""
    return ChatEnvelope(sender=sender, content=content)
