"""Pydantic models for content retrieval."""
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ContentChunk(BaseModel):
    """A unit of curated reference text (read-only to this service)."""

    id: str = Field(..., description="Unique identifier for the chunk")
    content: str = Field(..., description="Text content of the chunk")
    subject: str = Field(..., description="Subject the chunk belongs to")
    topic: Optional[str] = Field(None, description="Topic within the subject")
    language: str = Field(..., description="Language code of the content")
    similarity: Optional[float] = Field(
        None, ge=0.0, le=1.0, description="Similarity score (semantic search only)"
    )
    metadata: Dict[str, Any] = Field(
        default_factory=dict, description="Remaining metadata stored with the chunk"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "id": "physics_mechanics_chunk_3",
                "content": "Newton's second law states that F = ma...",
                "subject": "Physics",
                "topic": "Mechanics",
                "language": "en",
                "similarity": 0.87,
                "metadata": {"source": "curated"},
            }
        }
    }
