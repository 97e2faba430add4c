# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
# FastAPI uses them for:
# 1. Request body validation (automatic 422 errors for invalid data)
# 2. OpenAPI documentation generation (visible at /docs)
#
# CHAT MESSAGE CONTENT:
# Chat clients send `content` either as a plain string or as a list of
# typed parts ({"type": "text", "text": ...}, {"type": "image_url", ...}).
# Parts are a closed, tagged union: TextPart for "text", OtherPart for
# every other type. `resolve_query()` turns the latest user message into
# one plain-string query at the boundary; nothing past the API layer
# branches on content shape.
# =============================================================================

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag


# ---------------------------------------------------------------------------
# Chat content parts
# ---------------------------------------------------------------------------


class TextPart(BaseModel):
    """A text fragment of a multi-part message."""

    type: Literal["text"] = "text"
    text: str


class OtherPart(BaseModel):
    """Any non-text part (images, files, tool output). Ignored for retrieval."""

    type: str

    model_config = ConfigDict(extra="allow")


def _part_tag(value: Any) -> str:
    kind = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return "text" if kind == "text" else "other"


ContentPart = Annotated[
    Union[
        Annotated[TextPart, Tag("text")],
        Annotated[OtherPart, Tag("other")],
    ],
    Discriminator(_part_tag),
]


class ChatMessage(BaseModel):
    """One turn of the conversation."""

    role: Literal["user", "assistant", "system"]
    content: str | list[ContentPart]

    def text(self) -> str:
        """Plain-text view: the string itself, or text parts joined by newlines."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            part.text for part in self.content if isinstance(part, TextPart)
        )


def resolve_query(messages: list[ChatMessage]) -> str:
    """The latest user message as a canonical query string ("" if none)."""
    for message in reversed(messages):
        if message.role == "user":
            return message.text()
    return ""


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class ChatRequest(BaseModel):
    """
    Request body for POST /chat — answer the latest user message from the
    caller's document vault.

    Example:
        {
            "messages": [
                {"role": "user", "content": "What was total revenue in FY2024?"}
            ]
        }
    """

    messages: list[ChatMessage] = Field(
        ...,
        min_length=1,
        description="Conversation so far; the latest user message is the query",
    )
    top_k: int | None = Field(
        default=None,
        ge=1,
        le=100,
        description="Chunks to retrieve as context. Defaults to the configured retrieval_top_k (25).",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "messages": [
                        {"role": "user", "content": "What was total revenue in FY2024?"},
                    ],
                },
                {
                    "messages": [
                        {
                            "role": "user",
                            "content": [
                                {"type": "text", "text": "Summarise the risk factors"},
                            ],
                        },
                    ],
                    "top_k": 10,
                },
            ]
        }
    )


class SearchRequest(BaseModel):
    """Request body for POST /search — ranked chunks plus the context block."""

    query: str = Field(
        ...,
        max_length=2000,
        description="Free-text query. Blank queries return no results.",
        examples=["operating margin 2024"],
    )
    top_k: int | None = Field(
        default=None,
        ge=1,
        le=100,
        description="Results to return. Defaults to the configured citation_top_k (4).",
    )


class DeleteDocumentsRequest(BaseModel):
    """
    Request body for DELETE /documents.

    Either name one file, or set deleteAll to reset the whole vault.
    """

    file_name: str | None = Field(default=None, alias="fileName")
    delete_all: bool = Field(default=False, alias="deleteAll")

    model_config = ConfigDict(populate_by_name=True)
