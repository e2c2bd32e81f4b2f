"""Chat request models."""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class ChatMessage(BaseModel):
    """A single conversation turn sent by the chat widget."""

    role: Literal["user", "assistant", "system"] = Field(..., description="Message author role")
    content: str = Field(default="", description="Message text")

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, v):
        return "" if v is None else v

    def to_llm_message(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class ChatRequest(BaseModel):
    """Chat endpoint body. The client sends the full history on every request."""

    messages: Optional[List[ChatMessage]] = Field(
        default=None, description="Ordered conversation history, oldest first"
    )
