"""Shared fixtures: claim rules, retriever, routing config and a runtime factory."""
import pytest

from agent.context_builder import ContextBuilder
from agent.nodes import TurnRuntime
from agent.router import IntentRouter
from agent.schemas import RoutingConfig
from compliance.evaluator import ComplianceEvaluator
from compliance.regeneration import RegenerationController
from fakes import FakeRetriever, claim


@pytest.fixture
def pregnancy_rules():
    return [
        ("cures", claim("Folic acid cures pregnancy complications", "forbidden", 0.91)),
        ("completely safe", claim("Guaranteed safe during pregnancy", "forbidden", 0.86)),
        ("maternal tissue", claim("Folate contributes to maternal tissue growth during pregnancy", "allowed", 0.88)),
        ("multivitamin", claim("Multivitamins support general wellbeing", "general", 0.52, nutrient="")),
    ]


@pytest.fixture
def retriever(pregnancy_rules):
    return FakeRetriever(pregnancy_rules)


@pytest.fixture
def routing_config():
    return RoutingConfig(shop_domain="test-shop.myshopify.com")


@pytest.fixture
def make_runtime():
    def _make(model, retriever=None, catalog=None, store=None, order_service=None):
        builder = ContextBuilder()
        return TurnRuntime(
            model=model,
            router=IntentRouter(model, context_builder=builder),
            evaluator=ComplianceEvaluator(retriever),
            controller=RegenerationController(model),
            context_builder=builder,
            catalog=catalog,
            order_service=order_service,
            store=store,
        )
    return _make
