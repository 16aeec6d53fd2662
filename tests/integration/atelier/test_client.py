"""Integration tests for the Atelier REST client."""

import pytest
from aioresponses import aioresponses as aioresponses_cls
from yarl import URL

from testing_manager.atelier.client import AtelierClient, AtelierError
from testing_manager.config import ServerSpec
from testing_manager.testing.factories import ServerSpecFactory
from testing_manager.testing.payloads import (
    atelier_response,
    csp_apps_response,
    doc_response,
    error_response,
    query_response,
)

BASE_URL = "http://iris.example.com:52773/api/atelier/v1"


class TestUrl:
    """Tests for endpoint URL building."""

    async def test_builds_namespace_url(self, client: AtelierClient) -> None:
        """Joins base URL, API root, namespace and path."""
        assert str(client.url("USER", "doc", "pkg.Class.cls")) == (
            f"{BASE_URL}/USER/doc/pkg.Class.cls"
        )

    async def test_escapes_percent_namespace(self, client: AtelierClient) -> None:
        """Percent sign of system namespaces is escaped."""
        assert client.url("%SYS", "cspapps", "USER").raw_path.endswith(
            "/%25SYS/cspapps/USER"
        )

    async def test_includes_path_prefix(self, aioresponses: aioresponses_cls) -> None:
        """Path prefix of the web server sits before the API root."""
        spec: ServerSpec = ServerSpecFactory.build(path_prefix="/iris/")

        async with AtelierClient.from_spec(spec) as impl:
            url = impl.url("USER", "action/query")

        assert str(url) == "http://iris.example.com:52773/iris/api/atelier/v1/USER/action/query"


class TestQuery:
    """Tests for query."""

    async def test_posts_query_and_returns_rows(
        self, client: AtelierClient, aioresponses: aioresponses_cls
    ) -> None:
        """Sends SQL and parameters, returns result rows."""
        url = f"{BASE_URL}/USER/action/query"
        aioresponses.post(url, payload=query_response([{"Name": "a"}, {"Name": "b"}]))

        rows = await client.query("USER", "SELECT Name FROM T WHERE X = ?", [7])

        assert rows == [{"Name": "a"}, {"Name": "b"}]
        call = aioresponses.requests[("POST", URL(url))][0]
        assert call.kwargs["json"] == {
            "query": "SELECT Name FROM T WHERE X = ?",
            "parameters": [7],
        }

    async def test_raises_on_status_errors(
        self, client: AtelierClient, aioresponses: aioresponses_cls
    ) -> None:
        """Errors reported in the status block raise AtelierError."""
        aioresponses.post(
            f"{BASE_URL}/USER/action/query",
            payload=error_response("SQLCODE: -30 Table not found"),
        )

        with pytest.raises(AtelierError) as exc_info:
            await client.query("USER", "SELECT 1 FROM Missing")

        assert exc_info.value.summary == "SQLCODE: -30 Table not found"

    async def test_raises_on_http_error(
        self, client: AtelierClient, aioresponses: aioresponses_cls
    ) -> None:
        """Non-2xx responses raise AtelierError carrying the status."""
        aioresponses.post(f"{BASE_URL}/USER/action/query", status=401, body="Unauthorized")

        with pytest.raises(AtelierError) as exc_info:
            await client.query("USER", "SELECT 1")

        assert exc_info.value.status == 401


async def test_csp_apps_lists_web_applications(
    client: AtelierClient, aioresponses: aioresponses_cls
) -> None:
    """Lists web applications of a namespace from %SYS."""
    aioresponses.get(
        client.url("%SYS", "cspapps", "USER"),
        payload=csp_apps_response(["/csp/user", "/_vscode"]),
    )

    apps = await client.csp_apps("USER")

    assert apps == ["/csp/user", "/_vscode"]


@pytest.mark.parametrize(("status", "expected"), [(200, True), (404, False)])
async def test_doc_exists(
    client: AtelierClient,
    aioresponses: aioresponses_cls,
    status: int,
    expected: bool,
) -> None:
    """HEAD status tells whether a document exists."""
    aioresponses.head(f"{BASE_URL}/USER/doc/pkg.Class.cls", status=status)

    assert await client.doc_exists("USER", "pkg.Class.cls") is expected


async def test_get_doc_returns_lines(
    client: AtelierClient, aioresponses: aioresponses_cls
) -> None:
    """Returns the document content lines."""
    aioresponses.get(
        f"{BASE_URL}/USER/doc/pkg.Class.cls",
        payload=doc_response("pkg.Class.cls", ["Class pkg.Class", "{", "}"]),
    )

    assert await client.get_doc("USER", "pkg.Class.cls") == ["Class pkg.Class", "{", "}"]


async def test_put_doc_ignores_conflicts(
    client: AtelierClient, aioresponses: aioresponses_cls
) -> None:
    """Writes content unencoded and overwrites regardless of timestamps."""
    url = URL(f"{BASE_URL}/USER/doc/pkg.Class.cls").with_query(ignoreConflict="1")
    aioresponses.put(url, payload=atelier_response())

    await client.put_doc("USER", "pkg.Class.cls", ["Class pkg.Class", "{", "}"])

    call = aioresponses.requests[("PUT", url)][0]
    assert call.kwargs["json"] == {"enc": False, "content": ["Class pkg.Class", "{", "}"]}


async def test_delete_docs_sends_names(
    client: AtelierClient, aioresponses: aioresponses_cls
) -> None:
    """Deletes documents named in the request body."""
    url = f"{BASE_URL}/USER/docs"
    aioresponses.delete(url, payload=atelier_response())

    await client.delete_docs("USER", ["a.cls", "b.cls"])

    call = aioresponses.requests[("DELETE", URL(url))][0]
    assert call.kwargs["json"] == ["a.cls", "b.cls"]


async def test_compile_docs_passes_flags(
    client: AtelierClient, aioresponses: aioresponses_cls
) -> None:
    """Compiles documents with the given flags."""
    url = URL(f"{BASE_URL}/USER/action/compile").with_query(flags="ck")
    aioresponses.post(url, payload=atelier_response())

    await client.compile_docs("USER", ["a.cls"], flags="ck")

    call = aioresponses.requests[("POST", url)][0]
    assert call.kwargs["json"] == ["a.cls"]
