"""Persona models used to build the system prompt."""

from typing import List, Optional

from pydantic import BaseModel, Field


class ProfileLink(BaseModel):
    """An external profile (social network, portfolio, ...)."""

    title: str
    url: str
    description: Optional[str] = None


class PersonaProfile(BaseModel):
    """Everything the assistant says about the blog author and how it should behave."""

    author_name: str = Field(..., description="Name of the blog author")
    assistant_intro: str = Field(..., description="Opening line of the system prompt")
    background: List[str] = Field(default_factory=list, description="General knowledge bullets")
    about: Optional[str] = Field(default=None, description="Short author biography")
    links: List[ProfileLink] = Field(default_factory=list)
    guidelines: List[str] = Field(default_factory=list)
    response_style: List[str] = Field(default_factory=list)
    fallback_hint: Optional[str] = Field(
        default=None, description="Appended to the no-match sentence when retrieval is empty"
    )
