"""
Pytest configuration file.

Sets up the Python path so test files can import from the python/ directory,
and provides fake registry and cluster collaborators so no test needs the az
CLI or a live cluster.
"""
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add python directory to path for all tests
_python_dir = Path(__file__).parent.parent / 'python'
_python_dir_abs = str(_python_dir.absolute())
if _python_dir_abs not in sys.path:
    sys.path.insert(0, _python_dir_abs)

# The global config_manager is built at import time; keep it on defaults
os.environ.setdefault("SKIP_CONFIG_VALIDATION", "true")
os.environ["CONFIG_FILE"] = "/nonexistent/acr-cleaner-test-config.yaml"

from acr_cleaner.az_client import AzureRegistryClient  # noqa: E402
from acr_cleaner.error_utils import ClusterQueryError, DeletionExecutionError  # noqa: E402

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def manifest_record(digest, tags, last_update, created=None, size=1024 ** 3):
    """One element of an `az acr manifest list-metadata` listing"""
    return {
        "architecture": "amd64",
        "changeableAttributes": {
            "deleteEnabled": True,
            "listEnabled": True,
            "readEnabled": True,
            "writeEnabled": True,
        },
        "configMediaType": "application/vnd.docker.container.image.v1+json",
        "createdTime": created or last_update,
        "digest": digest,
        "imageSize": size,
        "lastUpdateTime": last_update,
        "mediaType": "application/vnd.docker.distribution.manifest.v2+json",
        "os": "linux",
        "tags": tags,
    }


class FakeRegistryClient(AzureRegistryClient):
    """Records every call instead of running az"""

    def __init__(self, records=None, raw=None, failing_digests=(), purge_error=None, fetch_error=None):
        super().__init__()
        self.raw = raw if raw is not None else json.dumps(records or [])
        self.failing_digests = set(failing_digests)
        self.purge_error = purge_error
        self.fetch_error = fetch_error
        self.calls = []
        self.deleted = []
        self.purge_output = ["Deleting tags for repository: myapp", "Number of deleted tags: 3"]

    def set_subscription(self, subscription):
        self.calls.append(("set_subscription", subscription))

    def list_manifest_metadata(self, registry, repository, before):
        self.calls.append(("list_manifest_metadata", registry, repository, before))
        if self.fetch_error:
            raise self.fetch_error
        return self.raw

    def purge(self, registry, repository, ago, tag_filter=".*", untagged=True, line_handler=None):
        self.calls.append(("purge", registry, repository, ago, tag_filter, untagged))
        for line in self.purge_output:
            line_handler(line)
        if self.purge_error:
            raise self.purge_error

    def delete_manifest(self, registry, repository, digest):
        self.calls.append(("delete_manifest", registry, repository, digest))
        if digest in self.failing_digests:
            raise DeletionExecutionError(message=f"Failed to delete {repository}@{digest}: boom")
        self.deleted.append(digest)

    def call_names(self):
        return [call[0] for call in self.calls]


class FakeClusterApi:
    """Canned kubeconfig contexts and pod images"""

    def __init__(self, images_by_context=None, contexts=None, failing=(), list_error=None):
        self.images_by_context = images_by_context or {}
        self.contexts = contexts if contexts is not None else list(self.images_by_context)
        self.failing = set(failing)
        self.list_error = list_error
        self.queried = []

    def list_contexts(self):
        if self.list_error:
            raise self.list_error
        return list(self.contexts)

    def list_pod_images(self, context):
        self.queried.append(context)
        if context in self.failing:
            raise ClusterQueryError(context, RuntimeError("connection refused"))
        return self.images_by_context.get(context, [])


@pytest.fixture
def three_old_manifests():
    return [
        manifest_record("sha256:aaa", ["1.0.0"], "2023-01-01T10:00:00.1234567Z"),
        manifest_record("sha256:bbb", ["1.1.0", "stable"], "2023-02-01T10:00:00Z"),
        manifest_record("sha256:ccc", ["1.2.0"], "2023-03-01T10:00:00Z"),
    ]
