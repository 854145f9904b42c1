import asyncio
import json

import pytest

from agent.schemas import Message, SearchQuery
from agent.tools import (
    TOOL_REGISTRY,
    TOOL_SCHEMAS,
    ToolContext,
    execute_tool_call,
    map_product,
    schemas_for,
    serialize_result,
)
from compliance.evaluator import ComplianceEvaluator
from fakes import PRENATAL_PRODUCT, FakeCatalog, FakeModel


def _ctx(**overrides):
    values = {"shop_domain": "test-shop.myshopify.com", "catalog": FakeCatalog([PRENATAL_PRODUCT])}
    values.update(overrides)
    return ToolContext(**values)


def test_every_registered_tool_has_a_schema():
    assert set(TOOL_REGISTRY) == {"product_info", "order_status", "handoff", "validate_claims"}
    assert set(TOOL_REGISTRY) == set(TOOL_SCHEMAS)


def test_schemas_for_skips_unknown_names():
    schemas = schemas_for(["handoff", "does_not_exist"])
    assert [s["function"]["name"] for s in schemas] == ["handoff"]


@pytest.mark.asyncio
async def test_unknown_tool_returns_error():
    result = await execute_tool_call("delete_everything", {}, _ctx())
    assert result == {"error": "Unknown tool 'delete_everything'"}


@pytest.mark.asyncio
async def test_product_info_returns_mapped_product():
    ctx = _ctx()
    result = await execute_tool_call("product_info", {"search_query": "prenatal vitamin"}, ctx)
    assert result["product"]["title"] == "Prenatal Multivitamin"
    assert "id" not in result["product"]
    assert "image_url" not in result["product"]["variants"][0]
    assert ctx.catalog.searches[0]["shop_domain"] == "test-shop.myshopify.com"


@pytest.mark.asyncio
async def test_product_info_without_shop_domain_is_configuration_error():
    result = await execute_tool_call("product_info", {"search_query": "folic acid"}, _ctx(shop_domain=None))
    assert result["error"] == "Configuration error"
    assert "shop_domain" in result["details"]


@pytest.mark.asyncio
async def test_product_info_reports_catalog_failure():
    result = await execute_tool_call("product_info", {"search_query": "x"}, _ctx(catalog=FakeCatalog(success=False)))
    assert result["error"] == "Error fetching product info."


@pytest.mark.asyncio
async def test_product_info_no_results():
    result = await execute_tool_call("product_info", {"search_query": "unicorn dust"}, _ctx(catalog=FakeCatalog([])))
    assert result == {"error": "No products found.", "query": "unicorn dust"}


@pytest.mark.asyncio
async def test_empty_query_is_extracted_from_history():
    model = FakeModel(structured={SearchQuery: SearchQuery(search_query="prenatal folic acid", context="pregnant")})
    ctx = _ctx(model=model, recent_messages=[Message.user("I'm pregnant, what should I take?")])
    await execute_tool_call("product_info", {"search_query": ""}, ctx)
    assert ctx.catalog.searches[0]["query"] == "prenatal folic acid"
    assert ctx.catalog.searches[0]["context"] == "pregnant"


@pytest.mark.asyncio
async def test_query_extraction_falls_back_to_last_message():
    model = FakeModel(structured={SearchQuery: RuntimeError("schema mismatch")})
    ctx = _ctx(model=model, recent_messages=[Message.user("magnesium tablets")])
    await execute_tool_call("product_info", {}, ctx)
    assert ctx.catalog.searches[0]["query"] == "magnesium tablets"


@pytest.mark.asyncio
async def test_order_status_requires_identifier():
    result = await execute_tool_call("order_status", {}, _ctx(session_token="tok"))
    assert result == {"error": "Either order_id or email must be provided."}


@pytest.mark.asyncio
async def test_order_status_requires_session_token():
    result = await execute_tool_call("order_status", {"order_id": "1001"}, _ctx())
    assert result["error"] == "Configuration error"


@pytest.mark.asyncio
async def test_order_status_delegates_to_order_service():
    class OrderService:
        async def lookup(self, session_token, order_id=None, email=None):
            return {"order_id": order_id, "fulfillment": "shipped", "token": session_token}

    ctx = _ctx(session_token="tok", order_service=OrderService())
    result = await execute_tool_call("order_status", {"order_id": "1001"}, ctx)
    assert result == {"order_id": "1001", "fulfillment": "shipped", "token": "tok"}


@pytest.mark.asyncio
async def test_handoff_confirms_forwarding():
    result = await execute_tool_call("handoff", {"transcript": "customer wants a refund"}, _ctx())
    assert result["status"] == "forwarded"


@pytest.mark.asyncio
async def test_validate_claims_uses_evaluator(retriever):
    ctx = _ctx(evaluator=ComplianceEvaluator(retriever))
    result = await execute_tool_call("validate_claims", {"text": "It cures nausea"}, ctx)
    assert result["is_compliant"] is False
    assert result["violated_claims"] == ["Folic acid cures pregnancy complications"]


@pytest.mark.asyncio
async def test_bad_arguments_become_error_payload():
    result = await execute_tool_call("handoff", {"unexpected": 1}, _ctx())
    assert result["error"] == "Error executing tool 'handoff'"
    assert "unexpected" in result["details"]


@pytest.mark.asyncio
async def test_slow_tool_times_out():
    class SlowCatalog:
        async def search(self, query, shop_domain, context=None):
            await asyncio.sleep(1)

    ctx = _ctx(catalog=SlowCatalog(), timeout=0.01)
    result = await execute_tool_call("product_info", {"search_query": "x"}, ctx)
    assert "timed out" in result["error"]


def test_map_product_tolerates_missing_variants():
    mapped = map_product({"title": "Zinc", "variants": None})
    assert mapped["title"] == "Zinc"
    assert mapped["variants"] == []


def test_serialize_result_is_json():
    payload = serialize_result({"error": "Configuration error", "details": "ü"})
    assert json.loads(payload)["details"] == "ü"
