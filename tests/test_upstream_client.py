import asyncio
import base64
import json

import aiohttp
import pytest

from orchestration_service.cache import ResponseCache
from orchestration_service.errors import UpstreamError
from orchestration_service.upstream_client import UpstreamClient


class FakeResponse:
    def __init__(self, status=200, body=None):
        self.status = status
        self._body = body if body is not None else {"Success": True, "Data": []}

    async def json(self, content_type=None):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Records posts and replays queued responses (or raises queued errors)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.posts = []
        self.closed = False

    def post(self, url, json=None, headers=None):
        self.posts.append({"url": url, "json": json, "headers": headers})
        nxt = self.responses.pop(0) if self.responses else FakeResponse()
        if isinstance(nxt, BaseException):
            raise nxt
        return nxt

    async def close(self):
        self.closed = True


def make_client(session, cache=None):
    return UpstreamClient(base_url="http://erp.local/api/", username="u", password="p", cache=cache,
                          company_code="1", department_code="2", timeout_s=5, session=session)


@pytest.mark.asyncio
async def test_export_builds_request_with_context_and_auth():
    session = FakeSession(FakeResponse(body={"Success": True, "Data": [{"Id": 1}]}))
    client = make_client(session)
    data = await client.export("SD/SalesOrder", "ExportSalesOrders", family="sales_orders",
                               export_filter="[Status] == 'Open'", take=10)
    assert data["Data"] == [{"Id": 1}]
    post = session.posts[0]
    assert post["url"] == "http://erp.local/api/SD/SalesOrder/ExportSalesOrders"
    assert post["json"] == {"Format": 1, "CompanyCode": "1", "DepartmentCode": "2",
                            "ExportFilter": "[Status] == 'Open'", "Take": 10}
    expected = base64.b64encode(b"u:p").decode()
    assert post["headers"]["Authorization"] == f"Basic {expected}"


@pytest.mark.asyncio
async def test_context_override_per_request():
    session = FakeSession()
    client = make_client(session)
    await client.service("WM/Common", "GetItemsStock", {"ItemCodes": ["A"]}, company_code="9")
    body = session.posts[0]["json"]
    assert body["CompanyCode"] == "9"
    assert body["DepartmentCode"] == "2"
    assert body["ItemCodes"] == ["A"]


@pytest.mark.asyncio
async def test_cached_read_skips_network(fake_redis):
    cache = ResponseCache(url="redis://unused", prefix="t", client_factory=lambda url: fake_redis, enabled=True)
    session = FakeSession(FakeResponse(body={"Success": True, "Data": [1]}))
    client = make_client(session, cache=cache)
    first = await client.export("WM/Common", "ExportItems", family="items")
    second = await client.export("WM/Common", "ExportItems", family="items")
    assert first == second == {"Success": True, "Data": [1]}
    assert len(session.posts) == 1


@pytest.mark.asyncio
async def test_import_encodes_payload_and_invalidates_family(fake_redis):
    cache = ResponseCache(url="redis://unused", prefix="t", client_factory=lambda url: fake_redis, enabled=True)
    session = FakeSession(
        FakeResponse(body={"Success": True, "Data": [1]}),
        FakeResponse(body={"Success": True, "ImportedCount": 1}),
        FakeResponse(body={"Success": True, "Data": [1, 2]}),
    )
    client = make_client(session, cache=cache)
    await client.export("WM/Common", "ExportItems", family="items")
    await client.import_data("WM/Items", "Import", {"ItemCode": "NEW"}, family="items", update_existing=True)
    fresh = await client.export("WM/Common", "ExportItems", family="items")
    assert fresh["Data"] == [1, 2]
    assert len(session.posts) == 3

    body = session.posts[1]["json"]
    assert json.loads(base64.b64decode(body["BinaryContent"])) == [{"ItemCode": "NEW"}]
    assert body["UpdateExisting"] is True
    assert body["ValidateOnly"] is False


@pytest.mark.asyncio
async def test_validate_only_import_keeps_cache(fake_redis):
    cache = ResponseCache(url="redis://unused", prefix="t", client_factory=lambda url: fake_redis, enabled=True)
    session = FakeSession(FakeResponse(), FakeResponse())
    client = make_client(session, cache=cache)
    await client.export("WM/Common", "ExportItems", family="items")
    await client.import_data("WM/Items", "Import", [{"ItemCode": "X"}], family="items", validate_only=True)
    await client.export("WM/Common", "ExportItems", family="items")
    assert len(session.posts) == 2


@pytest.mark.parametrize("status,fragment", [
    (401, "authentication failed"),
    (403, "forbidden"),
    (404, "not found"),
    (429, "too many requests"),
    (503, "server error 503"),
])
@pytest.mark.asyncio
async def test_http_errors_are_mapped(status, fragment):
    client = make_client(FakeSession(FakeResponse(status=status, body={})))
    with pytest.raises(UpstreamError) as exc:
        await client.export("SD/SalesOrder", "ExportSalesOrders")
    assert exc.value.status == status
    assert fragment in exc.value.message


@pytest.mark.asyncio
async def test_success_false_body_is_an_error():
    body = {"Success": False, "ErrorMessage": "Invalid ExportFilter"}
    client = make_client(FakeSession(FakeResponse(body=body)))
    with pytest.raises(UpstreamError) as exc:
        await client.export("SD/SalesOrder", "ExportSalesOrders")
    assert "Invalid ExportFilter" in exc.value.message


@pytest.mark.asyncio
async def test_transport_errors_carry_codes():
    client = make_client(FakeSession(asyncio.TimeoutError(), aiohttp.ServerDisconnectedError()))
    with pytest.raises(UpstreamError) as exc:
        await client.export("SD/SalesOrder", "ExportSalesOrders")
    assert exc.value.code == "ETIMEDOUT"
    with pytest.raises(UpstreamError) as exc:
        await client.export("SD/SalesOrder", "ExportSalesOrders")
    assert exc.value.code == "ECONNRESET"


@pytest.mark.asyncio
async def test_injected_session_is_not_closed():
    session = FakeSession()
    async with make_client(session):
        pass
    assert session.closed is False
