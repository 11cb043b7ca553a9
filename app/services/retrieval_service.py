"""Retrieval service for curated content chunks."""

import logging
from typing import Dict, List, Optional

from app.exceptions import UpstreamCallException
from app.models.retrieval_models import ContentChunk
from app.services.embedding_service import EmbeddingService

logger = logging.getLogger(__name__)

_RESERVED_METADATA = ("subject", "topic", "language")


class RetrievalService:
    """Service for fetching reference passages for a subject and topic set."""

    def __init__(self, embedding_service: EmbeddingService):
        """
        Initialize retrieval service.

        Args:
            embedding_service: EmbeddingService providing the content collection
                and query embeddings
        """
        self.embedding_service = embedding_service

    def retrieve(
        self,
        subject: str,
        topics: List[str],
        language: str,
        limit: int,
        query: Optional[str] = None,
    ) -> List[ContentChunk]:
        """
        Retrieve content chunks for a subject, optionally narrowed to topics.

        With ``query`` the chunks are ranked by semantic similarity; without it
        they are selected by metadata equality only. An empty ``topics`` list
        means the whole subject.

        Args:
            subject: Subject name
            topics: Topics to restrict to (empty for subject-only)
            language: Content language code
            limit: Maximum number of chunks (1-100)
            query: Optional free-text query for similarity search

        Returns:
            List of ContentChunk objects; empty when nothing matches

        Raises:
            ValueError: If subject is blank or limit is out of range
            UpstreamCallException: If the content store cannot be queried
        """
        if not subject or not subject.strip():
            raise ValueError("Subject cannot be empty")

        if limit < 1 or limit > 100:
            raise ValueError("limit must be between 1 and 100")

        where_clause = self._build_where(subject, topics, language)

        if query and query.strip():
            chunks = self._similarity_search(query, where_clause, limit)
        else:
            chunks = self._filter_search(where_clause, limit)

        logger.info(
            f"Retrieved {len(chunks)} chunks for subject={subject!r} "
            f"topics={topics} language={language} semantic={bool(query)}"
        )
        return chunks

    def _build_where(self, subject: str, topics: List[str], language: str) -> Dict:
        """
        Build a ChromaDB where clause.

        ChromaDB requires using operators ($and, $or) when there are multiple conditions.
        """
        conditions: List[Dict] = [{"subject": subject}, {"language": language}]
        if topics:
            if len(topics) == 1:
                conditions.append({"topic": topics[0]})
            else:
                conditions.append({"topic": {"$in": list(topics)}})
        return {"$and": conditions}

    def _similarity_search(
        self, query: str, where_clause: Dict, limit: int
    ) -> List[ContentChunk]:
        query_embedding = self.embedding_service.generate_embedding(query)
        try:
            results = self.embedding_service.collection.query(
                query_embeddings=[query_embedding],
                n_results=limit,
                where=where_clause,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as e:
            raise UpstreamCallException(
                f"Content search failed: {str(e)}", details={"mode": "similarity"}
            ) from e

        chunks = []
        if results["ids"] and len(results["ids"][0]) > 0:
            for i in range(len(results["ids"][0])):
                # ChromaDB returns distances (lower is better), convert to similarity score
                distance = results["distances"][0][i]
                score = max(0.0, min(1.0, 1.0 - distance))
                chunks.append(
                    self._to_chunk(
                        results["ids"][0][i],
                        results["documents"][0][i],
                        results["metadatas"][0][i],
                        score,
                    )
                )

        chunks.sort(key=lambda chunk: chunk.similarity or 0.0, reverse=True)
        return chunks

    def _filter_search(self, where_clause: Dict, limit: int) -> List[ContentChunk]:
        try:
            results = self.embedding_service.collection.get(
                where=where_clause,
                limit=limit,
                include=["documents", "metadatas"],
            )
        except Exception as e:
            raise UpstreamCallException(
                f"Content lookup failed: {str(e)}", details={"mode": "filter"}
            ) from e

        return [
            self._to_chunk(chunk_id, document, metadata)
            for chunk_id, document, metadata in zip(
                results["ids"] or [],
                results["documents"] or [],
                results["metadatas"] or [],
            )
        ]

    @staticmethod
    def _to_chunk(
        chunk_id: str,
        document: str,
        metadata: Optional[Dict],
        similarity: Optional[float] = None,
    ) -> ContentChunk:
        metadata = metadata or {}
        return ContentChunk(
            id=chunk_id,
            content=document or "",
            subject=metadata.get("subject", ""),
            topic=metadata.get("topic"),
            language=metadata.get("language", ""),
            similarity=similarity,
            metadata={
                key: value
                for key, value in metadata.items()
                if key not in _RESERVED_METADATA
            },
        )
