"""Tests for timelog_provider.core.tfs_client."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import requests

from timelog_provider.core.data_models import IterationFilter, WorkItemLink
from timelog_provider.core.errors import (
    AuthenticationError,
    QueryExecutionError,
    ServerConnectionError,
)
from timelog_provider.core.tfs_client import (
    TfsClient,
    TfsSession,
    build_flat_query,
    build_link_query,
)

URL = "https://tfs.example.com/tfs/DefaultCollection"
PREDICATE = IterationFilter(project_name="Fabrikam", iteration_path="Fabrikam\\Sprint 7")


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------


def _response(status: int = 200, body: Any = None) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.json.return_value = body if body is not None else {}
    resp.text = str(body)
    resp.headers = {}
    return resp


def _session(*responses: MagicMock) -> TfsSession:
    http = MagicMock()
    http.post.side_effect = list(responses)
    return TfsSession(URL + "/", http)


def _batch(*ids: int) -> dict[str, Any]:
    return {
        "count": len(ids),
        "value": [{"id": i, "fields": {"System.Id": i, "System.Title": f"WI {i}"}} for i in ids],
    }


# ---------------------------------------------------------------------------
# WIQL
# ---------------------------------------------------------------------------


class TestWiql:
    def test_link_query_filters_on_source(self) -> None:
        wiql = build_link_query(PREDICATE)
        assert "FROM WorkItemLinks" in wiql
        assert "Source.[System.TeamProject] = 'Fabrikam'" in wiql
        assert "Source.[System.WorkItemType] IN ('Product Backlog Item', 'Bug')" in wiql
        assert "Source.[System.State] <> 'Removed'" in wiql
        assert "Source.[System.IterationPath] UNDER 'Fabrikam\\Sprint 7'" in wiql
        assert "[System.Links.LinkType] = 'System.LinkTypes.Hierarchy-Forward'" in wiql
        assert "ORDER BY [Microsoft.VSTS.Common.Priority], [System.Id]" in wiql
        assert wiql.endswith("MODE (MayContain)")

    def test_flat_query_has_same_predicate_without_prefix(self) -> None:
        wiql = build_flat_query(PREDICATE)
        assert "FROM WorkItems " in wiql
        assert "Source." not in wiql
        assert "[System.TeamProject] = 'Fabrikam'" in wiql
        assert "[System.IterationPath] UNDER 'Fabrikam\\Sprint 7'" in wiql
        assert wiql.endswith("ORDER BY [Microsoft.VSTS.Common.Priority], [System.Id]")

    def test_selects_conversion_fields(self) -> None:
        wiql = build_flat_query(PREDICATE)
        for name in (
            "System.Id",
            "System.Title",
            "System.WorkItemType",
            "System.IterationPath",
            "System.AssignedTo",
            "System.State",
            "Microsoft.VSTS.Scheduling.RemainingWork",
            "Microsoft.VSTS.Common.Activity",
        ):
            assert f"[{name}]" in wiql

    def test_quotes_are_escaped(self) -> None:
        wiql = build_flat_query(IterationFilter("O'Brien", "O'Brien\\S1"))
        assert "'O''Brien'" in wiql
        assert "'O''Brien\\S1'" in wiql


# ---------------------------------------------------------------------------
# connect
# ---------------------------------------------------------------------------


class TestConnect:
    @patch("timelog_provider.core.tfs_client.requests.Session")
    def test_connect_returns_session(self, mock_session_cls: MagicMock) -> None:
        http = mock_session_cls.return_value
        http.get.return_value = _response(200, {"authenticatedUser": {}})

        session = TfsClient().connect(URL + "/", "alice", "secret")

        assert session.url == URL
        assert session.http is http
        assert http.auth == ("alice", "secret")
        http.get.assert_called_once_with(f"{URL}/_apis/connectionData", timeout=30)

    @pytest.mark.parametrize("status", [401, 403])
    @patch("timelog_provider.core.tfs_client.requests.Session")
    def test_bad_credentials(self, mock_session_cls: MagicMock, status: int) -> None:
        http = mock_session_cls.return_value
        http.get.return_value = _response(status)

        with pytest.raises(AuthenticationError):
            TfsClient().connect(URL, "alice", "wrong")
        http.close.assert_called_once()

    @patch("timelog_provider.core.tfs_client.requests.Session")
    def test_sign_in_page_is_auth_failure(self, mock_session_cls: MagicMock) -> None:
        http = mock_session_cls.return_value
        http.get.return_value = _response(203)

        with pytest.raises(AuthenticationError):
            TfsClient().connect(URL, "", "")
        http.close.assert_called_once()

    @patch("timelog_provider.core.tfs_client.requests.Session")
    def test_html_body_is_auth_failure(self, mock_session_cls: MagicMock) -> None:
        resp = _response(200)
        resp.json.side_effect = ValueError("Expecting value")
        mock_session_cls.return_value.get.return_value = resp

        with pytest.raises(AuthenticationError):
            TfsClient().connect(URL, "alice", "secret")

    @patch("timelog_provider.core.tfs_client.requests.Session")
    def test_unreachable_server(self, mock_session_cls: MagicMock) -> None:
        http = mock_session_cls.return_value
        http.get.side_effect = requests.ConnectionError("no route to host")

        with pytest.raises(ServerConnectionError) as excinfo:
            TfsClient().connect(URL, "alice", "secret")
        assert not isinstance(excinfo.value, AuthenticationError)

    @patch("timelog_provider.core.tfs_client.requests.Session")
    def test_server_error_on_connect(self, mock_session_cls: MagicMock) -> None:
        mock_session_cls.return_value.get.return_value = _response(500)
        with pytest.raises(ServerConnectionError):
            TfsClient().connect(URL, "alice", "secret")

    def test_session_context_manager_closes(self) -> None:
        http = MagicMock()
        with TfsSession(URL, http):
            pass
        http.close.assert_called_once()


# ---------------------------------------------------------------------------
# run_link_query
# ---------------------------------------------------------------------------


class TestRunLinkQuery:
    def test_maps_relations(self) -> None:
        body = {
            "queryType": "oneHop",
            "workItemRelations": [
                {"rel": None, "source": None, "target": {"id": 101}},
                {"rel": "System.LinkTypes.Hierarchy-Forward", "source": {"id": 101}, "target": {"id": 201}},
                {"rel": None, "source": None, "target": {"id": 102}},
            ],
        }
        session = _session(_response(200, body))

        links = TfsClient().run_link_query(session, PREDICATE).links

        assert links == [
            WorkItemLink(0, 101),
            WorkItemLink(101, 201, "System.LinkTypes.Hierarchy-Forward"),
            WorkItemLink(0, 102),
        ]
        assert links[0].is_root and not links[1].is_root

    def test_posts_to_project_wiql_endpoint(self) -> None:
        session = _session(_response(200, {"workItemRelations": []}))
        TfsClient(api_version="7.0").run_link_query(
            session, IterationFilter("Fabrikam Fiber", "Fabrikam Fiber\\S1"),
        )

        args, kwargs = session.http.post.call_args
        assert args[0] == f"{URL}/Fabrikam%20Fiber/_apis/wit/wiql"
        assert kwargs["params"] == {"api-version": "7.0"}
        assert "FROM WorkItemLinks" in kwargs["json"]["query"]

    def test_empty_result(self) -> None:
        session = _session(_response(200, {"workItemRelations": None}))
        result = TfsClient().run_link_query(session, PREDICATE)
        assert result.links == []
        assert result.columns == []

    def test_reports_server_columns(self) -> None:
        body = {
            "columns": [
                {"referenceName": "System.Id", "name": "ID"},
                {"referenceName": "System.Title", "name": "Title"},
                {"referenceName": "Custom.Effort", "name": "Effort"},
            ],
            "workItemRelations": [{"rel": None, "source": None, "target": {"id": 7}}],
        }
        result = TfsClient().run_link_query(_session(_response(200, body)), PREDICATE)
        assert result.columns == ["System.Id", "System.Title", "Custom.Effort"]
        assert result.links == [WorkItemLink(0, 7)]


# ---------------------------------------------------------------------------
# run_query
# ---------------------------------------------------------------------------


class TestRunQuery:
    def test_by_ids_uses_batch_endpoint(self) -> None:
        session = _session(_response(200, _batch(5, 6)))

        items = TfsClient().run_query(session, ["System.Id", "System.Title"], ids=[5, 6])

        assert [i.id for i in items] == [5, 6]
        assert items[0].fields["System.Title"] == "WI 5"
        args, kwargs = session.http.post.call_args
        assert args[0] == f"{URL}/_apis/wit/workitemsbatch"
        assert kwargs["json"] == {"ids": [5, 6], "fields": ["System.Id", "System.Title"]}

    def test_by_predicate_runs_wiql_then_batch(self) -> None:
        wiql = _response(200, {"workItems": [{"id": 9}, {"id": 3}]})
        session = _session(wiql, _response(200, _batch(9, 3)))

        items = TfsClient().run_query(session, ["System.Id"], predicate=PREDICATE)

        assert [i.id for i in items] == [9, 3]
        first, second = session.http.post.call_args_list
        assert first.args[0].endswith("/Fabrikam/_apis/wit/wiql")
        assert "FROM WorkItems " in first.kwargs["json"]["query"]
        assert second.kwargs["json"]["ids"] == [9, 3]

    def test_predicate_without_matches_skips_batch(self) -> None:
        session = _session(_response(200, {"workItems": []}))
        assert TfsClient().run_query(session, ["System.Id"], predicate=PREDICATE) == []
        assert session.http.post.call_count == 1

    def test_batches_large_id_lists(self) -> None:
        session = _session(
            _response(200, _batch(1, 2)),
            _response(200, _batch(3, 4)),
            _response(200, _batch(5)),
        )
        items = TfsClient(batch_size=2).run_query(session, ["System.Id"], ids=[1, 2, 3, 4, 5])

        assert [i.id for i in items] == [1, 2, 3, 4, 5]
        assert [c.kwargs["json"]["ids"] for c in session.http.post.call_args_list] == [
            [1, 2], [3, 4], [5],
        ]

    def test_missing_fields_key(self) -> None:
        session = _session(_response(200, {"value": [{"id": 1}]}))
        (item,) = TfsClient().run_query(session, ["System.Id"], ids=[1])
        assert item.fields == {}

    @pytest.mark.parametrize("kwargs", [{}, {"predicate": PREDICATE, "ids": [1]}])
    def test_requires_exactly_one_selector(self, kwargs: dict[str, Any]) -> None:
        with pytest.raises(ValueError):
            TfsClient().run_query(_session(), ["System.Id"], **kwargs)

    def test_rejects_non_positive_batch_size(self) -> None:
        with pytest.raises(ValueError):
            TfsClient(batch_size=0)


# ---------------------------------------------------------------------------
# errors and retry
# ---------------------------------------------------------------------------


class TestErrorsAndRetry:
    def test_retries_on_429(self) -> None:
        session = _session(_response(429), _response(200, {"workItemRelations": []}))

        with patch("timelog_provider.core.tfs_client.time.sleep") as mock_sleep:
            result = TfsClient().run_link_query(session, PREDICATE)

        assert result.links == []
        assert session.http.post.call_count == 2
        mock_sleep.assert_called_once_with(1.0)

    def test_backoff_doubles(self) -> None:
        session = _session(_response(503), _response(429), _response(200, {"workItemRelations": []}))
        with patch("timelog_provider.core.tfs_client.time.sleep") as mock_sleep:
            TfsClient(backoff_base=0.5).run_link_query(session, PREDICATE)
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    def test_honours_retry_after_header(self) -> None:
        throttled = _response(429)
        throttled.headers = {"Retry-After": "7"}
        session = _session(throttled, _response(200, {"workItemRelations": []}))
        with patch("timelog_provider.core.tfs_client.time.sleep") as mock_sleep:
            TfsClient().run_link_query(session, PREDICATE)
        mock_sleep.assert_called_once_with(7.0)

    def test_unparseable_retry_after_falls_back_to_backoff(self) -> None:
        throttled = _response(503)
        throttled.headers = {"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}
        session = _session(throttled, _response(200, {"workItemRelations": []}))
        with patch("timelog_provider.core.tfs_client.time.sleep") as mock_sleep:
            TfsClient(backoff_base=2.0).run_link_query(session, PREDICATE)
        mock_sleep.assert_called_once_with(2.0)

    def test_gives_up_after_max_retries(self) -> None:
        session = _session(_response(429), _response(429))
        with patch("timelog_provider.core.tfs_client.time.sleep"):
            with pytest.raises(QueryExecutionError) as excinfo:
                TfsClient(max_retries=2).run_link_query(session, PREDICATE)
        assert excinfo.value.status_code == 429

    def test_bad_query_raises_with_server_message(self) -> None:
        session = _session(_response(400, {"message": "TF51005: The query references a field that does not exist."}))
        with pytest.raises(QueryExecutionError, match="TF51005") as excinfo:
            TfsClient().run_link_query(session, PREDICATE)
        assert excinfo.value.status_code == 400

    def test_unauthorized_query(self) -> None:
        session = _session(_response(401))
        with pytest.raises(AuthenticationError):
            TfsClient().run_query(session, ["System.Id"], ids=[1])

    def test_sign_in_page_on_query(self) -> None:
        session = _session(_response(203))
        with pytest.raises(AuthenticationError):
            TfsClient().run_link_query(session, PREDICATE)

    def test_network_failure(self) -> None:
        http = MagicMock()
        http.post.side_effect = requests.Timeout("read timed out")
        with pytest.raises(ServerConnectionError):
            TfsClient().run_link_query(TfsSession(URL, http), PREDICATE)

    def test_invalid_json(self) -> None:
        resp = _response(200)
        resp.json.side_effect = ValueError("not json")
        with pytest.raises(QueryExecutionError):
            TfsClient().run_link_query(_session(resp), PREDICATE)
