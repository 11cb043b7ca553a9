"""Embedding service for query embeddings and access to the content collection."""

import logging
from typing import List, Optional

import chromadb
from chromadb.config import Settings as ChromaSettings
from openai import OpenAI

from app.config import settings
from app.exceptions import UpstreamCallException

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Service for generating query embeddings over the curated content store."""

    def __init__(
        self,
        openai_client: Optional[OpenAI] = None,
        vector_db_client: Optional[chromadb.ClientAPI] = None,
        collection_name: Optional[str] = None,
    ):
        """
        Initialize embedding service.

        Args:
            openai_client: OpenAI client instance
            vector_db_client: ChromaDB client instance
            collection_name: Content collection name (defaults to settings)
        """
        self.client = openai_client or OpenAI(api_key=settings.openai_api_key)
        self.embedding_model = settings.embedding_model

        # Initialize vector database
        if vector_db_client:
            self.vector_db = vector_db_client
        else:
            settings.vector_db_path.mkdir(parents=True, exist_ok=True)
            self.vector_db = chromadb.PersistentClient(
                path=str(settings.vector_db_path),
                settings=ChromaSettings(anonymized_telemetry=False),
            )

        # Get or create collection; content is ingested outside this service
        self.collection = self.vector_db.get_or_create_collection(
            name=collection_name or settings.content_collection,
            metadata={"embedding_model": self.embedding_model},
        )

    def generate_embedding(self, text: str) -> List[float]:
        """
        Generate embedding vector for text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector as list of floats

        Raises:
            ValueError: If text is empty
            UpstreamCallException: If embedding generation fails
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        try:
            response = self.client.embeddings.create(
                model=self.embedding_model,
                input=text,
            )
            return response.data[0].embedding
        except Exception as e:
            raise UpstreamCallException(
                f"Failed to generate embedding: {str(e)}",
                details={"model": self.embedding_model},
            ) from e
