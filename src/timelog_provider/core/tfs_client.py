"""REST client for TFS / Azure DevOps work item queries, built on ``requests``."""

from __future__ import annotations

import logging
import time
from typing import Any, Sequence
from urllib.parse import quote

import requests

from timelog_provider.core.data_models import (
    IterationFilter,
    LinkQueryResult,
    RawWorkItem,
    WorkItemLink,
)
from timelog_provider.core.errors import (
    AuthenticationError,
    QueryExecutionError,
    ServerConnectionError,
)
from timelog_provider.core.fields import FieldNames

logger = logging.getLogger(__name__)

HIERARCHY_LINK_TYPE = "System.LinkTypes.Hierarchy-Forward"

_API_VERSION = "6.0"
_TIMEOUT = 30  # seconds
_BATCH_SIZE = 200  # server maximum for workitemsbatch
_MAX_RETRIES = 4
_BACKOFF_BASE = 1.0  # seconds
_RETRY_STATUSES = (429, 503)
# 203 is how Azure DevOps answers anonymous requests with a sign-in page
_AUTH_FAILURE_STATUSES = (203, 401, 403)


class TfsSession:
    """An authenticated connection to one project collection.

    Not safe for concurrent use; acquire one per retrieval.
    """

    def __init__(self, url: str, http: requests.Session) -> None:
        self.url = url.rstrip("/")
        self.http = http

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> TfsSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class TfsClient:
    """Runs WIQL tree/flat queries and batched work item fetches."""

    def __init__(
        self,
        *,
        api_version: str = _API_VERSION,
        timeout: float = _TIMEOUT,
        batch_size: int = _BATCH_SIZE,
        max_retries: int = _MAX_RETRIES,
        backoff_base: float = _BACKOFF_BASE,
        field_names: FieldNames | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.api_version = api_version
        self.timeout = timeout
        self.batch_size = batch_size
        self.max_retries = max(1, max_retries)
        self.backoff_base = backoff_base
        self.field_names = field_names or FieldNames()

    # -- connection -----------------------------------------------------------

    def connect(self, url: str, username: str, password: str) -> TfsSession:
        """Open a session against the collection at *url*.

        A ``connectionData`` call validates the credentials.  *username*
        may be empty when *password* is a personal access token.

        Raises:
            AuthenticationError: The server answered 203/401/403 or sent no JSON.
            ServerConnectionError: The server is unreachable or failed.
        """
        http = requests.Session()
        http.auth = (username, password)
        http.headers.update({"Accept": "application/json"})
        session = TfsSession(url, http)

        logger.debug("Connecting to %s as %r", session.url, username)
        try:
            resp = http.get(f"{session.url}/_apis/connectionData", timeout=self.timeout)
        except requests.RequestException as exc:
            http.close()
            raise ServerConnectionError(f"Cannot reach {session.url}: {exc}") from exc

        if resp.status_code in _AUTH_FAILURE_STATUSES:
            http.close()
            raise AuthenticationError(f"Authentication to {session.url} failed (HTTP {resp.status_code})")
        if not resp.ok:
            http.close()
            raise ServerConnectionError(f"Connecting to {session.url} failed (HTTP {resp.status_code})")
        try:
            resp.json()
        except ValueError:
            # sign-in pages come back as HTML with a 2xx status
            http.close()
            raise AuthenticationError(f"Authentication to {session.url} failed (no JSON in response)") from None

        logger.info("Connected to %s", session.url)
        return session

    # -- queries --------------------------------------------------------------

    def run_link_query(self, session: TfsSession, predicate: IterationFilter) -> LinkQueryResult:
        """Run the hierarchical query.

        Returns its link pairs together with the reference names of the
        columns the server reports for the query.
        """
        wiql = build_link_query(predicate, self.field_names)
        data = self._run_wiql(session, predicate.project_name, wiql)
        links = [_parse_relation(rel) for rel in data.get("workItemRelations") or []]
        columns = [col["referenceName"] for col in data.get("columns") or [] if col.get("referenceName")]
        logger.info(
            "Tree query for %s returned %d links", predicate.iteration_path, len(links),
        )
        return LinkQueryResult(links=links, columns=columns)

    def run_query(
        self,
        session: TfsSession,
        fields: Sequence[str],
        predicate: IterationFilter | None = None,
        ids: Sequence[int] | None = None,
    ) -> list[RawWorkItem]:
        """Fetch *fields* for the items matching *predicate*, or for *ids*.

        Exactly one of *predicate* and *ids* must be given.
        """
        if (predicate is None) == (ids is None):
            raise ValueError("pass exactly one of predicate or ids")

        if predicate is not None:
            wiql = build_flat_query(predicate, self.field_names)
            data = self._run_wiql(session, predicate.project_name, wiql)
            ids = [int(item["id"]) for item in data.get("workItems") or []]
            logger.info(
                "Flat query for %s matched %d work items", predicate.iteration_path, len(ids),
            )

        return self._fetch_batched(session, list(ids or []), list(fields))

    # -- internals ------------------------------------------------------------

    def _run_wiql(self, session: TfsSession, project: str, wiql: str) -> dict[str, Any]:
        logger.debug("Executing WIQL: %s", wiql)
        url = f"{session.url}/{quote(project)}/_apis/wit/wiql"
        return self._post_with_retry(session, url, {"query": wiql})

    def _fetch_batched(
        self, session: TfsSession, ids: list[int], fields: list[str]
    ) -> list[RawWorkItem]:
        items: list[RawWorkItem] = []
        url = f"{session.url}/_apis/wit/workitemsbatch"
        for start in range(0, len(ids), self.batch_size):
            chunk = ids[start:start + self.batch_size]
            logger.debug("Fetching %d work items (offset %d)", len(chunk), start)
            data = self._post_with_retry(session, url, {"ids": chunk, "fields": fields})
            items.extend(
                RawWorkItem(id=int(value["id"]), fields=dict(value.get("fields") or {}))
                for value in data.get("value") or []
            )
        return items

    def _post_with_retry(self, session: TfsSession, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST *payload* with exponential backoff on throttling responses."""
        for attempt in range(self.max_retries):
            try:
                resp = session.http.post(
                    url,
                    json=payload,
                    params={"api-version": self.api_version},
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                raise ServerConnectionError(f"Request to {url} failed: {exc}") from exc

            if resp.status_code in _RETRY_STATUSES and attempt < self.max_retries - 1:
                delay = _retry_after(resp)
                if delay is None:
                    delay = self.backoff_base * (2**attempt)
                logger.warning("Server throttled (HTTP %d), retrying in %.1fs", resp.status_code, delay)
                time.sleep(delay)
                continue
            return _check_response(resp, url)

        return {}  # unreachable, but satisfies type checker


# -- WIQL ---------------------------------------------------------------------


def build_link_query(predicate: IterationFilter, names: FieldNames | None = None) -> str:
    """WIQL for the tree query rooted at the filtered backlog items/bugs."""
    names = names or FieldNames()
    return (
        f"SELECT {_columns(names)} FROM WorkItemLinks "
        f"WHERE {_where(predicate, names, prefix='Source.')} "
        f"AND [System.Links.LinkType] = {_quote(HIERARCHY_LINK_TYPE)} "
        f"ORDER BY [{names.priority}], [{names.id}] "
        "MODE (MayContain)"
    )


def build_flat_query(predicate: IterationFilter, names: FieldNames | None = None) -> str:
    """WIQL for every filtered work item, linked or not."""
    names = names or FieldNames()
    return (
        f"SELECT {_columns(names)} FROM WorkItems "
        f"WHERE {_where(predicate, names)} "
        f"ORDER BY [{names.priority}], [{names.id}]"
    )


def _columns(names: FieldNames) -> str:
    return ", ".join(f"[{name}]" for name in names.query_columns)


def _where(predicate: IterationFilter, names: FieldNames, prefix: str = "") -> str:
    types = ", ".join(_quote(t) for t in predicate.work_item_types)
    return (
        f"{prefix}[{names.team_project}] = {_quote(predicate.project_name)} "
        f"AND {prefix}[{names.work_item_type}] IN ({types}) "
        f"AND {prefix}[{names.state}] <> {_quote(predicate.excluded_state)} "
        f"AND {prefix}[{names.iteration_path}] UNDER {_quote(predicate.iteration_path)}"
    )


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


# -- responses ----------------------------------------------------------------


def _parse_relation(rel: dict[str, Any]) -> WorkItemLink:
    source = rel.get("source") or {}
    target = rel.get("target") or {}
    return WorkItemLink(
        source_id=int(source.get("id", 0)),
        target_id=int(target["id"]),
        link_type=rel.get("rel"),
    )


def _check_response(resp: requests.Response, url: str) -> dict[str, Any]:
    if resp.status_code in _AUTH_FAILURE_STATUSES:
        raise AuthenticationError(f"Server rejected credentials for {url} (HTTP {resp.status_code})")
    if not resp.ok:
        raise QueryExecutionError(
            f"HTTP {resp.status_code} from {url}: {_error_message(resp)}",
            status_code=resp.status_code,
        )
    try:
        return resp.json()
    except ValueError as exc:
        raise QueryExecutionError(
            f"Invalid JSON from {url}", status_code=resp.status_code,
        ) from exc


def _retry_after(resp: requests.Response) -> float | None:
    """Seconds from a numeric ``Retry-After`` header, if the server sent one."""
    value = resp.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return resp.text
