"""
Shopify Storefront MCP catalog client.
Calls the store's `search_shop_catalog` tool over JSON-RPC.
"""
import json
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15


def build_search_payload(query: str, context: Optional[str] = None) -> dict:
    arguments = {"query": query}
    if context:
        arguments["context"] = context
    return {
        "jsonrpc": "2.0",
        "method": "tools/call",
        "id": 1,
        "params": {"name": "search_shop_catalog", "arguments": arguments},
    }


def extract_products(result: dict) -> list:
    """Products live either in the first text content block (JSON string) or directly under result."""
    body = result.get("result") or {}
    content = body.get("content") or []
    if content and content[0].get("text"):
        try:
            return json.loads(content[0]["text"]).get("products", []) or []
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning(f"[MCP] Failed to parse product content: {e}")
    return body.get("products", []) or []


class ShopifyCatalogClient:
    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._timeout = timeout
        self._transport = transport

    def endpoint(self, shop_domain: str) -> str:
        return f"https://{shop_domain}/api/mcp"

    async def search(self, query: str, shop_domain: str, context: Optional[str] = None) -> dict:
        """
        Returns {"query", "store", "success", "products", "total_results"[, "error"]}.
        Transport and protocol errors are reported in the payload, not raised.
        """
        logger.info(f"[MCP] Searching catalog for '{query}' on store: {shop_domain}")
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    self.endpoint(shop_domain),
                    json=build_search_payload(query, context),
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                result = response.json()
        except httpx.TimeoutException as e:
            return self._failure(query, shop_domain, f"Catalog request timed out: {e}")
        except httpx.HTTPStatusError as e:
            return self._failure(query, shop_domain, f"Catalog request failed: {e.response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            return self._failure(query, shop_domain, f"Catalog request error: {e}")

        if result.get("error"):
            error = result["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            return self._failure(query, shop_domain, f"MCP error: {message}")

        products = extract_products(result)
        logger.info(f"[MCP] Found {len(products)} products for query: {query}")
        return {
            "query": query,
            "store": shop_domain,
            "success": True,
            "products": products,
            "total_results": len(products),
        }

    @staticmethod
    def _failure(query: str, shop_domain: str, error: str) -> dict:
        logger.error(f"[MCP] {error}")
        return {
            "query": query,
            "store": shop_domain,
            "success": False,
            "error": error,
            "products": [],
            "total_results": 0,
        }
