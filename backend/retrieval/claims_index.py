import os
import json
import asyncio
import logging
from typing import List, Optional

import faiss
import numpy as np
import torch
from sentence_transformers import SentenceTransformer

from agent.schemas import ClaimRecord
from retrieval.base import RetrievalUnavailable

logger = logging.getLogger(__name__)

INDEX_FILE = "claims.faiss"
METADATA_FILE = "claims.json"


class ClaimIndex:
    """
    Local FAISS claim index. Embeddings are L2-normalised and stored in an inner-product
    index, so the search score is cosine similarity; it is clipped to [0, 1].
    """

    def __init__(self, model_name="all-MiniLM-L6-v2", encoder=None):
        if encoder is not None:
            self.model = encoder
        else:
            self.device = "cuda" if torch.cuda.is_available() else "cpu"
            logger.info(f"Claim embedding device: {self.device}")
            try:
                self.model = SentenceTransformer(model_name, device=self.device)
            except Exception as e:
                logger.error(f"Failed to load embedding model ({model_name}): {e}")
                self.model = None

        self.index = None
        self.metadata: list[dict] = []

    def _encode(self, texts: list[str]) -> np.ndarray:
        if self.model is None:
            raise RetrievalUnavailable("Embedding model is not loaded.")
        embeddings = self.model.encode(texts, convert_to_numpy=True, normalize_embeddings=True)
        return np.asarray(embeddings, dtype=np.float32)

    def build(self, claims: list[dict]):
        """claims: [{"claim", "claimType", "nutrient", "scope"}, ...]"""
        self.metadata = [
            {
                "claim": c.get("claim", ""),
                "claimType": c.get("claimType", "general"),
                "nutrient": c.get("nutrient", ""),
                "scope": c.get("scope", ""),
            }
            for c in claims
        ]
        embeddings = self._encode([m["claim"] for m in self.metadata])
        self.index = faiss.IndexFlatIP(embeddings.shape[1])
        self.index.add(embeddings)

    def save(self, directory: str):
        if self.index is None:
            raise RuntimeError("Index not built. Call build() first.")
        os.makedirs(directory, exist_ok=True)
        faiss.write_index(self.index, os.path.join(directory, INDEX_FILE))
        with open(os.path.join(directory, METADATA_FILE), "w", encoding="utf-8") as f:
            json.dump(self.metadata, f, ensure_ascii=False, indent=2)

    @classmethod
    def load(cls, directory: str, model_name="all-MiniLM-L6-v2", encoder=None) -> "ClaimIndex":
        indexer = cls(model_name=model_name, encoder=encoder)
        index_path = os.path.join(directory, INDEX_FILE)
        metadata_path = os.path.join(directory, METADATA_FILE)
        if not (os.path.exists(index_path) and os.path.exists(metadata_path)):
            logger.warning(f"Claim index not found in {directory}; retrieval will be unavailable.")
            return indexer
        try:
            index = faiss.read_index(index_path)
            with open(metadata_path, "r", encoding="utf-8") as f:
                metadata = json.load(f)
            if not isinstance(metadata, list):
                raise ValueError(f"expected a list of claims, got {type(metadata).__name__}")
        except (RuntimeError, OSError, ValueError) as e:
            logger.warning(f"Claim index in {directory} is unreadable ({e!r}); retrieval will be unavailable.")
            return indexer
        indexer.index = index
        indexer.metadata = metadata
        return indexer

    def search(self, text: str, top_k: int = 25) -> List[ClaimRecord]:
        if self.index is None or not self.metadata:
            raise RetrievalUnavailable("Claim index not built or loaded.")

        try:
            q_emb = self._encode([text])
            k = min(top_k, len(self.metadata))
            scores, ids = self.index.search(q_emb, k)
        except RetrievalUnavailable:
            raise
        except Exception as e:
            raise RetrievalUnavailable(f"Claim search failed: {e}") from e

        records = []
        for score, idx in zip(scores[0], ids[0]):
            # FAISS pads with -1 when fewer than k vectors exist
            if idx < 0 or idx >= len(self.metadata):
                continue
            item = self.metadata[idx]
            records.append(ClaimRecord(
                claim_text=item.get("claim", ""),
                claim_type=item.get("claimType", "general"),
                nutrient_or_topic=item.get("nutrient", ""),
                scope=item.get("scope", ""),
                similarity_score=float(min(max(score, 0.0), 1.0)),
            ))
        records.sort(key=lambda r: r.similarity_score, reverse=True)
        return records

    async def query(self, text: str, top_k: int = 25) -> List[ClaimRecord]:
        return await asyncio.to_thread(self.search, text, top_k)


def load_claim_index(directory: str, model_name: Optional[str] = None) -> ClaimIndex:
    return ClaimIndex.load(directory, model_name=model_name or "all-MiniLM-L6-v2")
