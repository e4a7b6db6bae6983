import uuid
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

MAX_MESSAGE_CHARS = 200_000


class _CamelModel(BaseModel):
    # Wire format is camelCase for the browser client.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(BaseModel):
    # Empty is legal: routed as a message with no specific demands.
    message: str = Field(..., max_length=MAX_MESSAGE_CHARS)


class PerformanceOut(_CamelModel):
    throughput: str
    time_to_first_token: str
    tokens_per_second: str
    cost: str
    actual_time_to_first_token: str


class LegacyChatResponse(BaseModel):
    message: str


class ChatMessage(_CamelModel):
    """One turn of the client-side conversation."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "assistant"]
    content: str
    model: Optional[str] = None
    reasoning: Optional[str] = None
    performance: Optional[PerformanceOut] = None

    @model_validator(mode="after")
    def _model_and_performance_together(self):
        if self.role == "user" and (self.model is not None or self.performance is not None):
            raise ValueError("user messages carry no model or performance")
        if (self.model is None) != (self.performance is None):
            raise ValueError("assistant messages carry both model and performance, or neither")
        return self


class ChatResponse(_CamelModel):
    model: str
    reasoning: str
    performance: PerformanceOut
    reply: str

    def as_legacy(self) -> LegacyChatResponse:
        return LegacyChatResponse(message=f" Model: {self.model} \n\n\n Reply: {self.reply}")

    def as_message(self) -> ChatMessage:
        return ChatMessage(
            role="assistant",
            content=self.reply,
            model=self.model,
            reasoning=self.reasoning,
            performance=self.performance,
        )


class DebugRouteRequest(BaseModel):
    prompt: str = Field(..., description="Sample prompt to analyze")
