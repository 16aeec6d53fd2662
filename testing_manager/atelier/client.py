"""Atelier REST API client."""

import logging
from collections.abc import AsyncGenerator, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import aiohttp
from yarl import URL

from testing_manager.atelier.models import AtelierResponse
from testing_manager.config import ServerSpec

log = logging.getLogger(__name__)

API_ROOT = "api/atelier/v1"

type ClientFactory = Callable[[ServerSpec], AbstractAsyncContextManager["AtelierClient"]]


class AtelierError(RuntimeError):
    """Raised when the server rejects a request or reports errors."""

    def __init__(self, message: str, *, status: int, summary: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.summary = summary


@dataclass(frozen=True, kw_only=True)
class AtelierClient:
    """Client for one server's Atelier REST API."""

    spec: ServerSpec
    session: aiohttp.ClientSession = field(repr=False)

    @classmethod
    @asynccontextmanager
    async def from_spec(cls, spec: ServerSpec) -> AsyncGenerator["AtelierClient", None]:
        """Create client with managed session lifecycle."""
        auth = None
        if spec.username:
            password = spec.password.get_secret_value() if spec.password else ""
            auth = aiohttp.BasicAuth(spec.username, password)
        async with aiohttp.ClientSession(auth=auth) as session:
            yield cls(spec=spec, session=session)

    def url(self, namespace: str, *path: str) -> URL:
        """Build the URL of an endpoint within a namespace."""
        url = URL(self.spec.base_url) / API_ROOT / namespace
        for part in path:
            url = url / part.lstrip("/")
        return url

    async def _request(
        self,
        method: str,
        url: URL,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
    ) -> AtelierResponse:
        async with self.session.request(
            method, url, json=json, params=params
        ) as response:
            if not 200 <= response.status < 300:
                text = await response.text()
                raise AtelierError(
                    f"{method} {url.path} failed: {response.status} {text}",
                    status=response.status,
                )
            data = await response.json(content_type=None)

        parsed = AtelierResponse.model_validate(data or {})
        if parsed.status.errors:
            summary = parsed.status.summary or str(parsed.status.errors[0])
            raise AtelierError(
                f"{method} {url.path} reported errors: {summary}",
                status=response.status,
                summary=summary,
            )
        return parsed

    async def query(
        self, namespace: str, sql: str, parameters: Sequence[Any] = ()
    ) -> Sequence[dict[str, Any]]:
        """Run a parameterized SQL statement and return its rows."""
        log.debug("Query in %s: %s %s", namespace, sql, list(parameters))
        response = await self._request(
            "POST",
            self.url(namespace, "action/query"),
            json={"query": sql, "parameters": list(parameters)},
        )
        return response.rows

    async def csp_apps(self, namespace: str) -> Sequence[str]:
        """List the web application paths defined for a namespace."""
        response = await self._request("GET", self.url("%SYS", "cspapps", namespace))
        content = response.result.content
        return [str(app) for app in content] if isinstance(content, list) else []

    async def doc_exists(self, namespace: str, name: str) -> bool:
        """Check whether a document exists."""
        async with self.session.head(self.url(namespace, "doc", name)) as response:
            return response.status == 200

    async def get_doc(self, namespace: str, name: str) -> Sequence[str]:
        """Fetch the content of a document as lines."""
        response = await self._request("GET", self.url(namespace, "doc", name))
        content = response.result.content
        return [str(line) for line in content] if isinstance(content, list) else []

    async def put_doc(self, namespace: str, name: str, lines: Sequence[str]) -> None:
        """Create or overwrite a document."""
        await self._request(
            "PUT",
            self.url(namespace, "doc", name),
            json={"enc": False, "content": list(lines)},
            params={"ignoreConflict": "1"},
        )

    async def delete_docs(self, namespace: str, names: Sequence[str]) -> None:
        """Delete documents. Folders can't be deleted this way."""
        await self._request("DELETE", self.url(namespace, "docs"), json=list(names))

    async def compile_docs(
        self, namespace: str, names: Sequence[str], flags: str = "cuk"
    ) -> None:
        """Compile documents with the given compiler flags."""
        await self._request(
            "POST",
            self.url(namespace, "action/compile"),
            json=list(names),
            params={"flags": flags},
        )
