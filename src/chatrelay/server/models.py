from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, StrictStr, ValidationError, field_validator

from .errors import ConversationValidationError


class ChatMessage(BaseModel):
    role: StrictStr
    name: Optional[StrictStr] = None
    content: StrictStr

    class Config:
        extra = "ignore"

    @field_validator("name", mode="before")
    @classmethod
    def _name_not_null(cls, value: Any) -> Any:
        # omitted is fine, an explicit null is not
        if value is None:
            raise ValueError("name must be a string when present")
        return value

    def to_upstream(self) -> Dict[str, Any]:
        msg: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name is not None:
            msg["name"] = self.name
        return msg


class ConversationRequest(BaseModel):
    messages: List[ChatMessage]

    class Config:
        extra = "ignore"


def parse_conversation(payload: Any) -> ConversationRequest:
    """Validate a decoded JSON body; any shape mismatch becomes one error type."""

    if not isinstance(payload, dict):
        raise ConversationValidationError(
            f"Expected a JSON object, got {type(payload).__name__}"
        )
    try:
        return ConversationRequest(**payload)
    except ValidationError as exc:
        raise ConversationValidationError(str(exc), exc.errors()) from exc
    except TypeError as exc:
        # non-string keys or similar oddities in the decoded body
        raise ConversationValidationError(str(exc)) from exc
