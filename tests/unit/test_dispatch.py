"""Tests for the schema-driven list engine."""

import httpx
import pytest

from gcp_tui.dispatch import DispatchEngine, build_list_url, extract_items, project_rows
from gcp_tui.errors import ApiError, DispatchError, MissingContextValue, TransportError
from gcp_tui.http_client import HttpClient
from gcp_tui.models import Cell, Context

from conftest import INSTANCES, INSTANCES_PATH, FakeCredentials

CONTEXT = Context(project="p1", zone="us-central1-a")


class TestBuildListUrl:
    def test_resolves_path(self, registry):
        url = build_list_url(registry.require("vm-instances"), CONTEXT)
        assert url == (
            "https://compute.googleapis.com/compute/v1/projects/p1/zones/us-central1-a/instances"
        )

    def test_missing_placeholder(self, registry):
        with pytest.raises(MissingContextValue) as excinfo:
            build_list_url(registry.require("vm-instances"), Context(project="p1"))
        assert excinfo.value.name == "zone"

    def test_filter_in_template(self, registry):
        context = CONTEXT.with_filter("instance", "web-1")
        url = build_list_url(registry.require("vm-disks"), context)
        assert url.endswith("/zones/us-central1-a/instances/web-1")

    def test_filter_not_in_template_goes_to_query(self, registry):
        context = CONTEXT.with_filter("filter", "status = RUNNING")
        url = build_list_url(registry.require("disks"), context)
        assert url.endswith("/zones/us-central1-a/disks?filter=status+%3D+RUNNING")


class TestExtractItems:
    def test_plain_path(self):
        assert extract_items({"items": [1, 2]}, "items") == [1, 2]

    def test_missing_or_non_array_path(self):
        assert extract_items({"kind": "compute#instanceList"}, "items") == []
        assert extract_items({"items": {"a": 1}}, "items") == []
        assert extract_items(None, "items") == []

    def test_empty_path_uses_whole_body(self):
        assert extract_items([1, 2], "") == [1, 2]
        assert extract_items({"name": "x"}, "") == [{"name": "x"}]

    def test_aggregated_path(self):
        body = {
            "items": {
                "zones/us-central1-a": {"instances": [{"name": "a"}]},
                "zones/us-east1-b": {"warning": {"code": "NO_RESULTS_ON_PAGE"}},
                "zones/europe-west1-b": {"instances": [{"name": "b"}, {"name": "c"}]},
            }
        }
        names = [item["name"] for item in extract_items(body, "items.*.instances")]
        assert names == ["a", "b", "c"]


class TestProjectRows:
    def test_missing_column_renders_placeholder(self, registry):
        rows = project_rows(registry.require("vm-instances"), INSTANCES, registry.color_for)

        assert rows[0].texts == ("web-1", "RUNNING", "ok")
        assert rows[1].texts == ("web-2", "TERMINATED", "-")

    def test_color_map_tags_cells(self, registry):
        rows = project_rows(registry.require("vm-instances"), INSTANCES, registry.color_for)

        assert rows[0].cells[1] == Cell("RUNNING", (0, 200, 0))
        assert rows[0].cells[0].color is None

    def test_row_keeps_raw_item(self, registry):
        rows = project_rows(registry.require("vm-instances"), INSTANCES)
        assert rows[0].item is INSTANCES[0]
        assert (rows[0].id, rows[0].name) == ("101", "web-1")


class TestDispatchEngine:
    def test_list_sends_bearer_token(self, engine, fake_api, registry):
        rows = engine.list(registry.require("vm-instances"), CONTEXT)

        assert [row.name for row in rows] == ["web-1", "web-2"]
        request = fake_api.requests[0]
        assert request.method == "GET"
        assert request.headers["Authorization"] == "Bearer test-token"

    def test_list_is_idempotent(self, engine, registry):
        schema = registry.require("vm-instances")
        assert engine.list(schema, CONTEXT) == engine.list(schema, CONTEXT)

    def test_preserves_api_order(self, fake_api, engine, registry):
        reversed_items = list(reversed(INSTANCES))
        fake_api.add("GET", INSTANCES_PATH, {"items": reversed_items})

        rows = engine.list(registry.require("vm-instances"), CONTEXT)
        assert [row.id for row in rows] == ["102", "101"]

    def test_empty_body_yields_no_rows(self, fake_api, engine, registry):
        fake_api.add("GET", INSTANCES_PATH, None)
        assert engine.list(registry.require("vm-instances"), CONTEXT) == []

    def test_api_error_carries_google_message(self, fake_api, engine, registry):
        fake_api.add(
            "GET",
            INSTANCES_PATH,
            {"error": {"code": 403, "message": "Permission denied on project p1"}},
            status=403,
        )

        with pytest.raises(ApiError) as excinfo:
            engine.list(registry.require("vm-instances"), CONTEXT)
        assert excinfo.value.status == 403
        assert str(excinfo.value) == "API error 403: Permission denied on project p1"
        # Non-2xx answers are never retried.
        assert len(fake_api.requests) == 1

    def test_body_excerpt_is_truncated(self):
        error = ApiError(500, "x" * 2000)
        assert len(error.body) == 500

    def test_invalid_json(self, fake_api, engine, registry):
        fake_api.add("GET", INSTANCES_PATH, lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(DispatchError, match="not valid JSON"):
            engine.list(registry.require("vm-instances"), CONTEXT)

    def test_undecodable_body(self, fake_api, engine, registry):
        fake_api.add("GET", INSTANCES_PATH, lambda request: httpx.Response(200, content=b"\xff\xfe\xfa"))

        with pytest.raises(DispatchError, match="not valid JSON"):
            engine.list(registry.require("vm-instances"), CONTEXT)

    def test_transient_failure_is_retried_once(self, fake_api, engine, registry):
        attempts = []

        def flaky(request):
            attempts.append(request)
            if len(attempts) == 1:
                raise httpx.ConnectError("connection reset", request=request)
            return httpx.Response(200, json={"items": INSTANCES})

        fake_api.add("GET", INSTANCES_PATH, flaky)

        rows = engine.list(registry.require("vm-instances"), CONTEXT)
        assert len(rows) == 2
        assert len(attempts) == 2

    def test_persistent_transport_failure_surfaces(self, registry):
        def down(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        engine = DispatchEngine(
            HttpClient(transport=httpx.MockTransport(down)),
            FakeCredentials(),
        )

        with pytest.raises(TransportError) as excinfo:
            engine.list(registry.require("vm-instances"), CONTEXT)
        assert excinfo.value.transient
