"""
Builds the local claim index from a JSON list of claim records.

Usage (from backend/): python -m retrieval.build_index data/claims.json data/claims_index
"""
import sys
import json
import logging

from retrieval.claims_index import ClaimIndex

logger = logging.getLogger(__name__)


def build_claim_index(source_path: str, output_dir: str, model_name: str = "all-MiniLM-L6-v2") -> ClaimIndex:
    with open(source_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    claims = data["claims"] if isinstance(data, dict) else data
    claims = [c for c in claims if c.get("claim")]
    if not claims:
        raise ValueError(f"No claims found in {source_path}")

    indexer = ClaimIndex(model_name=model_name)
    indexer.build(claims)
    indexer.save(output_dir)
    logger.info(f"Indexed {len(claims)} claims into {output_dir}")
    return indexer


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)
    build_claim_index(sys.argv[1], sys.argv[2])
