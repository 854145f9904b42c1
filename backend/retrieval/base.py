from typing import List, Protocol

from agent.schemas import ClaimRecord


class RetrievalUnavailable(RuntimeError):
    """The claim backend is unreachable or misconfigured."""


class ClaimRetriever(Protocol):
    async def query(self, text: str, top_k: int = 25) -> List[ClaimRecord]:
        """Nearest claim records, sorted by descending similarity score."""
        ...
