"""
Workflow tests for the retention sweep.

These tests drive RetentionSweep end to end against fake registry and cluster
collaborators:
- Itemized deletion with pacing and per-item failure isolation
- Abort on a running image before the confirmation prompt
- Bulk purge command generation and output streaming
- Confirmation, dry-run and nothing-to-do paths
"""

from unittest.mock import MagicMock

import pytest

from conftest import NOW, FakeClusterApi, FakeRegistryClient, manifest_record

LOGIN_SERVER = "myregistry.azurecr.io"

# ============================================================================
# Fixtures
# ============================================================================


def _options(**overrides):
    from acr_cleaner.duration import resolve_window
    from acr_cleaner.orchestrator import SweepOptions

    values = {
        "registry": "myregistry",
        "repository": "myapp",
        "window": resolve_window(ago="30d", now=NOW),
    }
    values.update(overrides)
    return SweepOptions(**values)


def _sweep(registry_client, cluster_api=None, answer="yes", **overrides):
    from acr_cleaner.orchestrator import RetentionSweep

    input_fn = MagicMock(return_value=answer)
    sleep_fn = MagicMock()
    sweep = RetentionSweep(
        registry_client,
        cluster_api,
        _options(**overrides),
        input_fn=input_fn,
        sleep_fn=sleep_fn,
        now_fn=lambda: NOW,
    )
    return sweep, input_fn, sleep_fn


# ============================================================================
# Tests: itemized mode
# ============================================================================


class TestItemizedSweep:
    def test_deletes_each_candidate_with_delay_between_items(self, three_old_manifests):
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(records=three_old_manifests)
        sweep, input_fn, sleep_fn = _sweep(client, mode="itemized", delay=1.5)

        result = sweep.run()

        assert result.state == SweepState.DONE
        assert client.deleted == ["sha256:aaa", "sha256:bbb", "sha256:ccc"]
        assert result.deleted == client.deleted
        assert sleep_fn.call_count == 2
        sleep_fn.assert_called_with(1.5)
        input_fn.assert_called_once()

    def test_zero_delay_never_sleeps(self, three_old_manifests):
        client = FakeRegistryClient(records=three_old_manifests)
        sweep, _, sleep_fn = _sweep(client, mode="itemized", delay=0)

        sweep.run()

        sleep_fn.assert_not_called()

    def test_failed_item_does_not_stop_the_rest(self, three_old_manifests):
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(records=three_old_manifests, failing_digests={"sha256:bbb"})
        sweep, _, sleep_fn = _sweep(client, mode="itemized", delay=1)

        result = sweep.run()

        assert result.state == SweepState.DONE
        assert result.deleted == ["sha256:aaa", "sha256:ccc"]
        assert list(result.failed) == ["sha256:bbb"]
        assert sleep_fn.call_count == 2

    def test_skip_policy_keeps_running_images(self, three_old_manifests):
        client = FakeRegistryClient(records=three_old_manifests)
        cluster = FakeClusterApi({"prod": [f"{LOGIN_SERVER}/myapp:stable"]})
        sweep, input_fn, _ = _sweep(client, cluster, mode="itemized", on_match="skip", contexts=["prod"])

        result = sweep.run()

        assert client.deleted == ["sha256:aaa", "sha256:ccc"]
        assert [c.digest for c in result.skipped] == ["sha256:bbb"]
        assert result.skipped[0].in_use_by == "prod"
        input_fn.assert_called_once()

    def test_every_candidate_in_use_with_skip_policy(self):
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(records=[manifest_record("sha256:a", ["1.0"], "2023-01-01T00:00:00Z")])
        cluster = FakeClusterApi({"prod": [f"{LOGIN_SERVER}/myapp:1.0"]})
        sweep, input_fn, _ = _sweep(client, cluster, mode="itemized", on_match="skip", contexts=["prod"])

        result = sweep.run()

        assert result.state == SweepState.DONE
        assert result.nothing_to_do
        input_fn.assert_not_called()
        assert "delete_manifest" not in client.call_names()

    def test_dry_run_prompts_but_makes_no_deletion_calls(self, three_old_manifests):
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(records=three_old_manifests)
        sweep, input_fn, sleep_fn = _sweep(client, mode="itemized", delay=5, dry_run=True)

        result = sweep.run()

        assert result.state == SweepState.DONE
        input_fn.assert_called_once()
        assert client.call_names() == ["list_manifest_metadata"]
        assert result.deleted == []
        assert len(result.candidates) == 3
        sleep_fn.assert_not_called()


def _preview_lines(caplog):
    prefixes = ("Docker Image ", "Found ", "The purge will also remove", "Generated az purge cmd")
    return [r.message for r in caplog.records if r.name == "RetentionSweep" and r.message.startswith(prefixes)]


class TestDryRunPreview:
    @pytest.mark.parametrize("mode", ["bulk", "itemized"])
    def test_dry_run_preview_matches_live_preview(self, three_old_manifests, caplog, mode):
        records = three_old_manifests + [manifest_record("sha256:untagged", [], "2023-01-05T00:00:00Z")]

        with caplog.at_level("INFO"):
            dry_sweep, _, _ = _sweep(FakeRegistryClient(records=records), mode=mode, dry_run=True)
            dry_sweep.run()
        dry_preview = _preview_lines(caplog)
        caplog.clear()

        with caplog.at_level("INFO"):
            live_sweep, _, _ = _sweep(FakeRegistryClient(records=records), answer="no", mode=mode)
            live_sweep.run()
        live_preview = _preview_lines(caplog)

        assert dry_preview == live_preview
        assert sum(line.startswith("Docker Image myapp with tags") for line in dry_preview) == 3
        assert "Found 3 docker images with approximately 3.00 GiB worth of data to delete." in dry_preview


# ============================================================================
# Tests: safety abort
# ============================================================================


class TestSafetyAbort:
    def test_running_image_aborts_before_prompt(self, three_old_manifests):
        from acr_cleaner.error_utils import ImageInUseError
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(records=three_old_manifests)
        cluster = FakeClusterApi({
            "staging": ["nginx:1.25"],
            "prod": [f"{LOGIN_SERVER}/myapp:1.1.0"],
        })
        sweep, input_fn, _ = _sweep(client, cluster, mode="itemized", contexts=["staging", "prod"])

        with pytest.raises(ImageInUseError) as exc_info:
            sweep.run()

        assert exc_info.value.tag == "1.1.0"
        assert exc_info.value.context == "prod"
        assert sweep.state == SweepState.ABORTED
        input_fn.assert_not_called()
        assert client.deleted == []
        assert "purge" not in client.call_names()

    def test_bulk_mode_also_aborts(self, three_old_manifests):
        from acr_cleaner.error_utils import ImageInUseError

        client = FakeRegistryClient(records=three_old_manifests)
        cluster = FakeClusterApi({"prod": [f"{LOGIN_SERVER}/myapp:1.0.0"]})
        sweep, input_fn, _ = _sweep(client, cluster, all_contexts=True)

        with pytest.raises(ImageInUseError):
            sweep.run()
        input_fn.assert_not_called()
        assert "purge" not in client.call_names()

    def test_failed_context_does_not_hide_other_matches(self, three_old_manifests):
        from acr_cleaner.error_utils import ImageInUseError

        client = FakeRegistryClient(records=three_old_manifests)
        cluster = FakeClusterApi(
            {"a": [], "b": [], "c": [f"{LOGIN_SERVER}/myapp:1.2.0"]},
            failing={"b"},
        )
        sweep, _, _ = _sweep(client, cluster, contexts=["a", "b", "c"])

        with pytest.raises(ImageInUseError) as exc_info:
            sweep.run()
        assert exc_info.value.context == "c"

    def test_incomplete_inventory_is_reported(self, three_old_manifests, caplog):
        client = FakeRegistryClient(records=three_old_manifests)
        cluster = FakeClusterApi({"a": [], "b": []}, failing={"b"})
        sweep, _, _ = _sweep(client, cluster, contexts=["a", "b"], dry_run=True)

        result = sweep.run()

        assert not result.inventory_complete
        assert "without data from: b" in caplog.text


# ============================================================================
# Tests: bulk mode
# ============================================================================


class TestBulkSweep:
    def test_generates_and_runs_purge(self, three_old_manifests, caplog):
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(records=three_old_manifests)
        sweep, _, _ = _sweep(client)

        with caplog.at_level("INFO"):
            result = sweep.run()

        assert result.state == SweepState.DONE
        assert ("purge", "myregistry", "myapp", "30d", ".*", True) in client.calls
        assert "Generated az purge cmd: az acr run --cmd acr purge --filter 'myapp:.*' --ago 30d --untagged" in caplog.text
        # streamed purge output reaches the log
        assert "Number of deleted tags: 3" in caplog.text
        assert "Found 3 docker images with approximately 3.00 GiB worth of data to delete." in caplog.text

    def test_timestamp_window_is_converted_to_ago(self, three_old_manifests):
        from acr_cleaner.duration import resolve_window

        client = FakeRegistryClient(records=three_old_manifests)
        sweep, _, _ = _sweep(client, window=resolve_window(timestamp="2024-05-30T12:00:00Z"))

        sweep.run()

        purge_call = [c for c in client.calls if c[0] == "purge"][0]
        assert purge_call[3] == "2d"

    def test_purge_failure_is_fatal(self, three_old_manifests):
        from acr_cleaner.error_utils import DeletionExecutionError
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(
            records=three_old_manifests,
            purge_error=DeletionExecutionError(message="Error fulfilling az purge command (exit code 1)"),
        )
        sweep, _, _ = _sweep(client)

        with pytest.raises(DeletionExecutionError):
            sweep.run()
        assert sweep.state == SweepState.ABORTED

    def test_only_untagged_manifests_still_purge(self):
        client = FakeRegistryClient(records=[manifest_record("sha256:u", [], "2023-01-01T00:00:00Z")])
        sweep, input_fn, _ = _sweep(client)

        result = sweep.run()

        assert not result.nothing_to_do
        input_fn.assert_called_once()
        assert "purge" in client.call_names()

    def test_subscription_is_set_first(self, three_old_manifests):
        client = FakeRegistryClient(records=three_old_manifests)
        sweep, _, _ = _sweep(client, subscription="sub-123", dry_run=True)

        sweep.run()

        assert client.calls[0] == ("set_subscription", "sub-123")


# ============================================================================
# Tests: confirmation and empty runs
# ============================================================================


class TestConfirmation:
    @pytest.mark.parametrize("answer", ["no", "y", "YES", "yes please", " yes", ""])
    def test_anything_but_yes_declines(self, three_old_manifests, answer):
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(records=three_old_manifests)
        sweep, _, _ = _sweep(client, answer=answer, mode="itemized")

        result = sweep.run()

        assert result.state == SweepState.ABORTED
        assert client.call_names() == ["list_manifest_metadata"]

    def test_trailing_newline_is_accepted(self, three_old_manifests):
        client = FakeRegistryClient(records=three_old_manifests)
        sweep, _, _ = _sweep(client, answer="yes\n", mode="itemized")

        sweep.run()

        assert len(client.deleted) == 3

    def test_closed_stdin_declines(self, three_old_manifests):
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(records=three_old_manifests)
        sweep, input_fn, _ = _sweep(client)
        input_fn.side_effect = EOFError

        assert sweep.run().state == SweepState.ABORTED
        assert "purge" not in client.call_names()


class TestNothingToDo:
    def test_empty_listing_skips_cluster_queries_and_prompt(self):
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(records=[])
        cluster = FakeClusterApi({"prod": ["nginx:1.25"]})
        sweep, input_fn, _ = _sweep(client, cluster, contexts=["prod"])

        result = sweep.run()

        assert result.state == SweepState.DONE
        assert result.nothing_to_do
        assert cluster.queried == []
        input_fn.assert_not_called()

    def test_only_recent_manifests(self):
        client = FakeRegistryClient(records=[manifest_record("sha256:new", ["9"], "2024-05-31T00:00:00Z")])
        sweep, input_fn, _ = _sweep(client, mode="itemized")

        result = sweep.run()

        assert result.nothing_to_do
        input_fn.assert_not_called()

    def test_malformed_listing_aborts(self):
        from acr_cleaner.error_utils import MetadataParseError
        from acr_cleaner.orchestrator import SweepState

        client = FakeRegistryClient(raw="not json")
        sweep, input_fn, _ = _sweep(client)

        with pytest.raises(MetadataParseError):
            sweep.run()
        assert sweep.state == SweepState.ABORTED
        input_fn.assert_not_called()
