"""Scripted stand-ins for the model, claim retriever and catalog."""
from agent.schemas import ClaimRecord, Message


class FakeModel:
    """
    Replays scripted replies. `replies` feed invoke(); `structured` maps a response
    model class to a value (or a list consumed in order). Exceptions in either are raised.
    """

    def __init__(self, replies=None, structured=None):
        self.replies = list(replies or [])
        self.structured = dict(structured or {})
        self.calls = []
        self.structured_calls = []

    async def invoke(self, messages, tools=None, temperature=None):
        self.calls.append({"messages": list(messages), "tools": tools})
        if not self.replies:
            raise RuntimeError("FakeModel: no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return Message.assistant(reply)
        return reply

    async def invoke_structured(self, messages, response_model):
        self.structured_calls.append({"messages": list(messages), "response_model": response_model})
        if response_model not in self.structured:
            raise RuntimeError(f"FakeModel: no structured reply for {response_model.__name__}")
        value = self.structured[response_model]
        if isinstance(value, list):
            value = value.pop(0)
        if isinstance(value, Exception):
            raise value
        return value


class FakeRetriever:
    """Returns every rule record whose keyword occurs in the query text."""

    def __init__(self, rules=None, error=None):
        self.rules = list(rules or [])
        self.error = error
        self.queries = []

    async def query(self, text, top_k=25):
        self.queries.append(text)
        if self.error:
            raise self.error
        lowered = text.lower()
        hits = [record for keyword, record in self.rules if keyword in lowered]
        hits.sort(key=lambda r: r.similarity_score, reverse=True)
        return hits[:top_k]


class FakeCatalog:
    def __init__(self, products=None, success=True):
        self.products = products if products is not None else []
        self.success = success
        self.searches = []

    async def search(self, query, shop_domain, context=None):
        self.searches.append({"query": query, "shop_domain": shop_domain, "context": context})
        if not self.success:
            return {"query": query, "store": shop_domain, "success": False,
                    "error": "Catalog request failed: 500", "products": [], "total_results": 0}
        return {"query": query, "store": shop_domain, "success": True,
                "products": self.products, "total_results": len(self.products)}


def claim(text, claim_type, score, nutrient="folate"):
    return ClaimRecord(claim_text=text, claim_type=claim_type, nutrient_or_topic=nutrient,
                       scope="EU", similarity_score=score)


PRENATAL_PRODUCT = {
    "id": "gid://shopify/Product/1",
    "title": "Prenatal Multivitamin",
    "description": "Daily multivitamin with 400 mcg folic acid.",
    "product_type": "Vitamins",
    "price_range": {"min": "19.95", "max": "19.95", "currency": "EUR"},
    "variants": [
        {"variant_id": "v1", "title": "60 tablets", "price": "19.95", "currency": "EUR",
         "available": True, "image_url": "https://cdn.example/p.png"},
    ],
}

