"""Integration tests for coverage support detection."""

from aioresponses import aioresponses as aioresponses_cls
from yarl import URL

from testing_manager.atelier.client import AtelierClient
from testing_manager.coverage.support import (
    FUNCTIONS_DDL,
    SQL_FN_INT8BITSTRING,
    SQL_FN_RUNTESTPROXY,
    supports_coverage,
)
from testing_manager.testing.payloads import error_response, query_response

BASE_URL = "http://iris.example.com:52773/api/atelier/v1"
CODE_UNIT_URL = f"{BASE_URL}/USER/doc/TestCoverage.Data.CodeUnit.cls"
UTILS_URL = f"{BASE_URL}/USER/doc/TestCoverage.UI.VSCodeUtilsV1.cls"
QUERY_URL = f"{BASE_URL}/USER/action/query"


async def test_false_without_test_coverage_tool(
    client: AtelierClient, aioresponses: aioresponses_cls
) -> None:
    """Namespaces without the coverage tool don't support coverage."""
    aioresponses.head(CODE_UNIT_URL, status=404)

    assert await supports_coverage(client, "USER") is False


async def test_true_when_helpers_exist(
    client: AtelierClient, aioresponses: aioresponses_cls
) -> None:
    """Existing helper class means no DDL is run."""
    aioresponses.head(CODE_UNIT_URL, status=200)
    aioresponses.head(UTILS_URL, status=200)

    assert await supports_coverage(client, "USER") is True
    assert ("POST", URL(QUERY_URL)) not in aioresponses.requests


async def test_creates_helper_functions(
    client: AtelierClient, aioresponses: aioresponses_cls
) -> None:
    """Missing helpers are created by running each DDL statement."""
    aioresponses.head(CODE_UNIT_URL, status=200)
    aioresponses.head(UTILS_URL, status=404)
    aioresponses.post(QUERY_URL, payload=query_response([]), repeat=True)

    assert await supports_coverage(client, "USER") is True

    calls = aioresponses.requests[("POST", URL(QUERY_URL))]
    assert [call.kwargs["json"]["query"] for call in calls] == list(FUNCTIONS_DDL)
    assert SQL_FN_INT8BITSTRING in calls[0].kwargs["json"]["query"]
    assert SQL_FN_RUNTESTPROXY in calls[1].kwargs["json"]["query"]


async def test_false_when_ddl_fails(
    client: AtelierClient, aioresponses: aioresponses_cls
) -> None:
    """A failing DDL statement means coverage is unsupported."""
    aioresponses.head(CODE_UNIT_URL, status=200)
    aioresponses.head(UTILS_URL, status=404)
    aioresponses.post(QUERY_URL, payload=error_response("Privilege violation"))

    assert await supports_coverage(client, "USER") is False
