import json

import httpx
import pytest

from gcp_tui.dispatch import DispatchEngine
from gcp_tui.http_client import HttpClient
from gcp_tui.registry import load

COMPUTE_BASE = "https://compute.googleapis.com/compute/v1"
INSTANCES_PATH = "/compute/v1/projects/p1/zones/us-central1-a/instances"


def sample_document():
    """A small but realistic schema document with actions and a sub-resource."""
    return {
        "color_maps": {
            "status": [
                {"value": "RUNNING", "color": [0, 200, 0]},
                {"value": "TERMINATED", "color": [150, 150, 150]},
            ]
        },
        "resources": {
            "vm-instances": {
                "display_name": "VM Instances",
                "service": "compute",
                "api": {
                    "base": COMPUTE_BASE,
                    "path": "projects/{project}/zones/{zone}/instances",
                },
                "response_path": "items",
                "id_field": "id",
                "name_field": "name",
                "columns": [
                    {"header": "NAME", "json_path": "name", "width": 30},
                    {"header": "STATUS", "json_path": "status", "width": 12, "color_map": "status"},
                    {"header": "STATE", "json_path": "state", "width": 12},
                ],
                "actions": [
                    {
                        "display_name": "Start",
                        "shortcut": "s",
                        "api": {
                            "method": "POST",
                            "path": "projects/{project}/zones/{zone}/instances/{name}/start",
                        },
                    },
                    {
                        "display_name": "Delete",
                        "shortcut": "D",
                        "api": {
                            "method": "DELETE",
                            "path": "projects/{project}/zones/{zone}/instances/{name}",
                        },
                        "confirm": {"message": "Delete instance '{name}'?", "destructive": True},
                    },
                ],
                "sub_resources": [
                    {
                        "resource_key": "vm-disks",
                        "display_name": "Attached disks",
                        "shortcut": "a",
                        "parent_id_field": "name",
                        "filter_param": "instance",
                    }
                ],
            },
            "vm-disks": {
                "display_name": "Instance Disks",
                "service": "compute",
                "api": {
                    "base": COMPUTE_BASE,
                    "path": "projects/{project}/zones/{zone}/instances/{instance}",
                },
                "response_path": "disks",
                "id_field": "deviceName",
                "name_field": "deviceName",
                "columns": [{"header": "DEVICE", "json_path": "deviceName", "width": 20}],
            },
            "disks": {
                "display_name": "Disks",
                "service": "compute",
                "api": {
                    "base": COMPUTE_BASE,
                    "path": "projects/{project}/zones/{zone}/disks",
                },
                "response_path": "items",
                "id_field": "id",
                "name_field": "name",
                "columns": [{"header": "NAME", "json_path": "name", "width": 30}],
            },
            "projects": {
                "display_name": "Projects",
                "service": "cloudresourcemanager",
                "api": {
                    "base": "https://cloudresourcemanager.googleapis.com/v1",
                    "path": "projects",
                },
                "response_path": "projects",
                "id_field": "projectId",
                "name_field": "name",
                "columns": [{"header": "PROJECT ID", "json_path": "projectId", "width": 30}],
            },
        },
    }


INSTANCES = [
    {
        "id": "101",
        "name": "web-1",
        "status": "RUNNING",
        "state": "ok",
        "zone": "https://www.googleapis.com/compute/v1/projects/p1/zones/us-central1-a",
    },
    {
        "id": "102",
        "name": "web-2",
        "status": "TERMINATED",
        "zone": "https://www.googleapis.com/compute/v1/projects/p1/zones/us-central1-a",
    },
]


class FakeApi:
    """Serves canned responses by method and URL path and records every request."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, method, path, payload=None, status=200):
        self.routes[(method, path)] = (status, payload)

    def calls(self, method=None):
        return [r for r in self.requests if method is None or r.method == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"error": {"code": 404, "message": "Not found"}})
        status, payload = route
        if callable(payload):
            return payload(request)
        if payload is None:
            return httpx.Response(status)
        return httpx.Response(status, json=payload)

    def client(self) -> HttpClient:
        return HttpClient(transport=httpx.MockTransport(self.handler))


class FakeCredentials:
    def __init__(self, token="test-token"):
        self.token = token
        self.calls = 0

    def get_token(self):
        self.calls += 1
        return self.token


class ManualExecutor:
    """Holds submitted jobs until the test decides to run them."""

    def __init__(self):
        self.jobs = []

    def submit(self, job):
        self.jobs.append(job)

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()
        return len(jobs)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def document():
    return sample_document()


@pytest.fixture
def registry(document):
    return load([json.dumps(document)])


@pytest.fixture
def fake_api():
    api = FakeApi()
    api.add("GET", INSTANCES_PATH, {"items": INSTANCES})
    return api


@pytest.fixture
def credentials():
    return FakeCredentials()


@pytest.fixture
def engine(fake_api, credentials, registry):
    return DispatchEngine(fake_api.client(), credentials, color_resolver=registry.color_for)


@pytest.fixture
def manual_executor():
    return ManualExecutor()


@pytest.fixture
def clock():
    return FakeClock()
