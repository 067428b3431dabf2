import json
import uuid
from decimal import Decimal

import httpx
import pytest

from conftest import VAULT
from goalvault.deposits.errors import (
    GoalForbidden,
    GoalMissing,
    GoalsApiRejected,
    GoalsApiUnauthorized,
    GoalsApiUnavailable,
    GoalTitleTaken,
    InvalidDepositInput,
)
from goalvault.deposits.ledger import GoalsApiClient

GOAL_ID = "5f0c7b0e-3f7e-4b3e-9a57-1d2c3b4a5f60"
TX_HASH = "0x" + "ab" * 32


def goal_json(goal_id=GOAL_ID, funded="0.000000"):
    return {
        "id": goal_id,
        "user_id": "did:privy:alice",
        "title": "Trip",
        "description": None,
        "target_amount": "500.000000",
        "current_funded_amount": funded,
        "vault_address": VAULT,
        "end_date": None,
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": "2026-01-01T00:00:00Z",
    }


def api_for(handler, token="token-123"):
    transport = httpx.MockTransport(handler)
    client = httpx.AsyncClient(transport=transport, base_url="http://goals.test/api/v1")
    return GoalsApiClient("http://goals.test/api/v1", token, client=client)


@pytest.mark.asyncio
async def test_list_goals_sends_bearer_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[goal_json()])

    async with api_for(handler) as api:
        goals = await api.list_goals()

    assert [str(goal.id) for goal in goals] == [GOAL_ID]
    assert seen[0].url.path == "/api/v1/goals"
    assert seen[0].headers["Authorization"] == "Bearer token-123"


@pytest.mark.asyncio
async def test_token_provider_callable():
    async def provider():
        return "fresh-token"

    def handler(request):
        assert request.headers["Authorization"] == "Bearer fresh-token"
        return httpx.Response(200, json=[])

    async with api_for(handler, token=provider) as api:
        assert await api.list_goals() == []


@pytest.mark.asyncio
async def test_missing_token_does_not_call_api():
    def handler(request):
        raise AssertionError("request should not be sent")

    async with api_for(handler, token="") as api:
        with pytest.raises(GoalsApiUnauthorized):
            await api.list_goals()


@pytest.mark.asyncio
async def test_get_goal():
    other = str(uuid.uuid4())

    def handler(request):
        return httpx.Response(200, json=[goal_json(other), goal_json()])

    async with api_for(handler) as api:
        goal = await api.get_goal(GOAL_ID)
        assert str(goal.id) == GOAL_ID
        with pytest.raises(GoalMissing):
            await api.get_goal(uuid.uuid4())


@pytest.mark.asyncio
async def test_create_goal_payload():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(201, json=goal_json())

    async with api_for(handler) as api:
        await api.create_goal("Trip", Decimal("500"), VAULT, description="Summer")

    assert bodies == [{
        "title": "Trip",
        "description": "Summer",
        "target_amount": "500",
        "vault_address": VAULT,
        "end_date": None,
    }]


@pytest.mark.asyncio
async def test_update_funding_payload():
    bodies = []

    def handler(request):
        assert request.url.path == "/api/v1/goals/funding"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=goal_json(funded="100.000000"))

    async with api_for(handler) as api:
        goal = await api.update_funding(GOAL_ID, Decimal("100"), TX_HASH)

    assert goal.current_funded_amount == Decimal("100")
    assert bodies == [{"goal_id": GOAL_ID, "deposited_amount": "100", "tx_hash": TX_HASH}]


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code,error_cls", [
    (400, GoalsApiRejected),
    (401, GoalsApiUnauthorized),
    (403, GoalForbidden),
    (404, GoalMissing),
    (409, GoalsApiRejected),
    (500, GoalsApiUnavailable),
    (503, GoalsApiUnavailable),
])
async def test_update_funding_error_mapping(status_code, error_cls):
    def handler(request):
        return httpx.Response(status_code, json={"error": "nope", "details": {"why": "test"}})

    async with api_for(handler) as api:
        with pytest.raises(error_cls) as exc_info:
            await api.update_funding(GOAL_ID, Decimal("1"), TX_HASH)

    assert exc_info.value.status_code == status_code
    assert exc_info.value.message == "nope"
    assert exc_info.value.details == {"why": "test"}


@pytest.mark.asyncio
async def test_create_goal_conflict_is_duplicate_title():
    def handler(request):
        return httpx.Response(409, json={"error": "A goal with this title already exists."})

    async with api_for(handler) as api:
        with pytest.raises(GoalTitleTaken) as exc_info:
            await api.create_goal("Trip", Decimal("500"), VAULT)
    assert not exc_info.value.recoverable


@pytest.mark.asyncio
async def test_transport_errors_are_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with api_for(handler) as api:
        with pytest.raises(GoalsApiUnavailable) as exc_info:
            await api.list_goals()
    assert exc_info.value.recoverable


@pytest.mark.asyncio
async def test_non_json_error_body():
    def handler(request):
        return httpx.Response(502, text="<html>Bad Gateway</html>")

    async with api_for(handler) as api:
        with pytest.raises(GoalsApiUnavailable) as exc_info:
            await api.list_goals()
    assert exc_info.value.message == "Bad Gateway"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, text="<html>gateway</html>"),
    httpx.Response(200, json={"id": "not-a-goal"}),
    httpx.Response(200, json=["unexpected"]),
])
async def test_malformed_success_response_is_unavailable(response):
    async with api_for(lambda request: response) as api:
        with pytest.raises(GoalsApiUnavailable):
            await api.update_funding(GOAL_ID, Decimal("100"), TX_HASH)


@pytest.mark.asyncio
async def test_malformed_goal_list_is_unavailable():
    async with api_for(lambda request: httpx.Response(200, json={"goals": []})) as api:
        with pytest.raises(GoalsApiUnavailable):
            await api.list_goals()


@pytest.mark.asyncio
async def test_get_goal_with_malformed_id_makes_no_request():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[goal_json()])

    async with api_for(handler) as api:
        with pytest.raises(InvalidDepositInput):
            await api.get_goal("not-a-uuid")

    assert seen == []
