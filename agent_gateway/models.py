"""
Data models for the agent runtime.

Defines Message, Schedule, AgentConfig, AgentInput, AgentResult and the
HTTP request bodies (ChatBody, ScheduleBody). Do not duplicate these
definitions elsewhere.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Role = Literal["system", "user", "assistant", "tool"]

# Either plain text or a list of typed parts: text, tool-call, tool-result.
Content = Union[str, List[Dict[str, Any]]]


class ClientType(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"


class Message(BaseModel):
    """A single conversational turn. Frozen once created."""

    model_config = ConfigDict(frozen=True, extra="allow")

    role: Role
    content: Content

    def text(self) -> str:
        """Concatenated text of the message, ignoring tool parts."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            str(part.get("text", "")) for part in self.content if part.get("type") == "text"
        )

    def parts(self, part_type: str) -> List[Dict[str, Any]]:
        if isinstance(self.content, str):
            return []
        return [part for part in self.content if part.get("type") == part_type]


class Schedule(BaseModel):
    """External trigger descriptor delivered by the scheduler."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = Field(min_length=1)
    pattern: str = Field(min_length=1)
    max_calls: Optional[int] = None
    command: str = Field(min_length=1)


class AgentConfig(BaseModel):
    """
    Configuration bound when an Agent is created.

    `client_type` is a plain string: unknown values select the fallback
    gateway instead of failing.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    api_key: str
    base_url: str
    model: str
    client_type: str
    locale: Optional[str] = None
    language: Optional[str] = None
    max_steps: int = Field(default=50, ge=1)
    max_context_load_time: int = Field(ge=1)
    platforms: List[str] = Field(default_factory=list)
    current_platform: Optional[str] = None


class AgentInput(BaseModel):
    messages: List[Message] = Field(default_factory=list)
    query: str


class AgentResult(BaseModel):
    messages: List[Message]


class ChatBody(BaseModel):
    """Parsed body of POST /chat and POST /chat/stream."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    api_key: str = Field(min_length=1)
    base_url: str = Field(min_length=1)
    model: str = Field(min_length=1)
    client_type: ClientType
    locale: Optional[str] = None
    language: Optional[str] = None
    max_steps: Optional[int] = Field(default=None, ge=1)
    max_context_load_time: int = Field(ge=1)
    platforms: Optional[List[str]] = None
    current_platform: Optional[str] = None

    messages: List[Message]
    query: str = Field(min_length=1)

    def to_agent_config(self, default_max_steps: int = 50) -> AgentConfig:
        return AgentConfig(
            api_key=self.api_key,
            base_url=self.base_url,
            model=self.model,
            client_type=self.client_type.value,
            locale=self.locale,
            language=self.language,
            max_steps=self.max_steps or default_max_steps,
            max_context_load_time=self.max_context_load_time,
            platforms=self.platforms or [],
            current_platform=self.current_platform,
        )

    def to_agent_input(self) -> AgentInput:
        return AgentInput(messages=self.messages, query=self.query)


class ScheduleBody(ChatBody):
    """Parsed body of POST /chat/schedule."""

    schedule: Schedule
