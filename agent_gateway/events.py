"""
Generation events emitted while a run is streamed.

`GenerationEvent` is a closed union discriminated on `type`; consumers can
match on the concrete classes exhaustively.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class TextDelta(_Event):
    type: Literal["text-delta"] = "text-delta"
    text: str


class ToolCallEvent(_Event):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class ToolResultEvent(_Event):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    output: Any = None
    is_error: bool = False


class FinishStep(_Event):
    type: Literal["finish-step"] = "finish-step"
    step: int
    finish_reason: str


class Finish(_Event):
    type: Literal["finish"] = "finish"
    finish_reason: str
    steps: int


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    code: str
    message: str
    details: Optional[Any] = None


GenerationEvent = Annotated[
    Union[TextDelta, ToolCallEvent, ToolResultEvent, FinishStep, Finish, ErrorEvent],
    Field(discriminator="type"),
]
