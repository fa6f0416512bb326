"""
Retention sweep orchestration.

Drives one run end to end:

    PLANNING -> AWAITING_CONFIRMATION -> EXECUTING -> DONE

with ABORTED reachable from every state. Planning fetches the manifests,
filters them, collects the cluster inventory and runs the safety check.
Nothing is deleted until the operator types exactly "yes".

Two failure policies coexist on purpose:
- the safety check aborts the whole run on the first live-usage match;
- itemized deletion logs a failed item and moves on to the next one.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from acr_cleaner.cluster_inventory import ClusterApi, collect_inventory
from acr_cleaner.eligibility import BULK, filter_candidates
from acr_cleaner.error_utils import ActionableError, DeletionExecutionError
from acr_cleaner.logging_utils import get_logger
from acr_cleaner.manifest_source import ManifestMetadataSource
from acr_cleaner.models import CandidatePlan, DeletionCandidate, RetentionWindow, SweepResult
from acr_cleaner.report_utils import bytes_to_gib, preview_line, sizeof_fmt
from acr_cleaner.safety import ABORT, EXACT, check_live_usage, login_server_for

CONFIRMATION_TOKEN = "yes"


class SweepState(Enum):
    PLANNING = "planning"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    EXECUTING = "executing"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class SweepOptions:
    """Everything one sweep needs to know, resolved before it starts"""
    registry: str
    repository: str
    window: RetentionWindow
    subscription: Optional[str] = None
    contexts: List[str] = field(default_factory=list)
    all_contexts: bool = False
    mode: str = BULK
    dry_run: bool = False
    delay: float = 0.0
    match_mode: str = EXACT
    on_match: str = ABORT
    login_server_suffix: str = ".azurecr.io"
    tag_filter: str = ".*"
    purge_untagged: bool = True
    max_workers: int = 4


class RetentionSweep:
    """Runs the plan/confirm/execute cycle against injected collaborators"""

    def __init__(
        self,
        registry_client,
        cluster_api: Optional[ClusterApi],
        options: SweepOptions,
        input_fn: Callable[[str], str] = input,
        sleep_fn: Callable[[float], None] = time.sleep,
        now_fn: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """Initialize the sweep

        Args:
            registry_client: Provides set_subscription, list_manifest_metadata,
                build_purge_command, purge and delete_manifest
            cluster_api: Provides list_contexts and list_pod_images (may be None
                when no contexts are requested)
            options: Resolved sweep options
            input_fn: Reads the confirmation answer
            sleep_fn: Pauses between itemized deletions
            now_fn: Current time, used to express an absolute window as a purge --ago
        """
        self.registry_client = registry_client
        self.cluster_api = cluster_api
        self.options = options
        self.input_fn = input_fn
        self.sleep_fn = sleep_fn
        self.now_fn = now_fn
        self.state = SweepState.PLANNING
        self.logger = get_logger(self.__class__.__name__)

    def _transition(self, state: SweepState) -> None:
        self.logger.debug(f"Sweep state: {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> SweepResult:
        """Run the sweep.

        Returns:
            SweepResult in state DONE, or ABORTED when the operator declined

        Raises:
            ActionableError: any fatal error, after moving to ABORTED
        """
        try:
            return self._run()
        except ActionableError as e:
            self._transition(SweepState.ABORTED)
            self.logger.error(f"{e.kind}: {e.message}")
            raise

    def _run(self) -> SweepResult:
        opts = self.options
        mode_label = "DRY RUN" if opts.dry_run else "DELETE"
        self.logger.info(f"Retention sweep for {opts.registry}/{opts.repository} ({opts.mode} mode, {mode_label})")
        self.logger.info(f"Retention cutoff: {opts.window.query_timestamp()} UTC (from {opts.window.source} {opts.window.raw})")

        if opts.subscription:
            self.registry_client.set_subscription(opts.subscription)

        manifests = ManifestMetadataSource(self.registry_client).fetch(opts.registry, opts.repository, opts.window)
        if not manifests:
            self.logger.info(f"No Docker Images found which precede the date {opts.window.query_timestamp()}")
            self._transition(SweepState.DONE)
            return SweepResult(state=self.state, nothing_to_do=True)

        plan = filter_candidates(manifests, opts.window, opts.mode)
        if not plan.candidates and not (opts.mode == BULK and opts.purge_untagged and plan.untagged):
            self.logger.info("Nothing to delete: no eligible tagged images older than the cutoff")
            self._transition(SweepState.DONE)
            return SweepResult(state=self.state, nothing_to_do=True)

        inventory = None
        if opts.contexts or opts.all_contexts:
            inventory = collect_inventory(self.cluster_api, opts.contexts, opts.all_contexts, opts.max_workers)

        login_server = login_server_for(opts.registry, opts.login_server_suffix)
        to_delete = check_live_usage(
            plan.candidates, inventory, login_server, opts.repository,
            match_mode=opts.match_mode, on_match=opts.on_match,
        )
        skipped = [c for c in plan.candidates if not c.is_safe]

        result = SweepResult(
            state=self.state,
            candidates=to_delete,
            skipped=skipped,
            inventory_complete=inventory.complete if inventory is not None else True,
        )

        self._log_preview(plan, to_delete, skipped)
        if inventory is not None and not inventory.complete:
            self.logger.warning(
                f"⚠️  Live-usage check ran without data from: {', '.join(inventory.failed_contexts)}"
            )

        purge_cmd = None
        purge_ago = None
        if opts.mode == BULK:
            purge_ago = opts.window.purge_ago(self.now_fn())
            purge_cmd = self.registry_client.build_purge_command(
                opts.registry, opts.repository, purge_ago,
                opts.tag_filter, opts.purge_untagged,
            )
            self.logger.info(f"Generated az purge cmd: {' '.join(purge_cmd)}")
        elif not to_delete:
            self.logger.info("Nothing to delete: every candidate is in use")
            self._transition(SweepState.DONE)
            result.state = self.state
            result.nothing_to_do = True
            return result

        self._transition(SweepState.AWAITING_CONFIRMATION)
        if not self.confirm_deletion(len(to_delete)):
            self.logger.info("Goodbye!")
            self._transition(SweepState.ABORTED)
            result.state = self.state
            return result

        self._transition(SweepState.EXECUTING)
        if opts.mode == BULK:
            self._execute_bulk(purge_cmd, purge_ago, to_delete, result)
        else:
            self._execute_itemized(to_delete, result)

        self._transition(SweepState.DONE)
        result.state = self.state
        self.log_summary(result)
        return result

    def _log_preview(self, plan: CandidatePlan, to_delete: List[DeletionCandidate],
                     skipped: List[DeletionCandidate]) -> None:
        repository = self.options.repository
        for candidate in to_delete:
            self.logger.info(preview_line(repository, candidate))
        for candidate in skipped:
            self.logger.info(
                f"Docker Image {repository} with tags {','.join(candidate.tags)} is kept: "
                f"running in context {candidate.in_use_by}"
            )

        total_bytes = sum(c.manifest.size_bytes for c in to_delete)
        self.logger.info(
            f"Found {len(to_delete)} docker images with approximately {bytes_to_gib(total_bytes)} GiB "
            f"worth of data to delete."
        )
        if self.options.mode == BULK and self.options.purge_untagged and plan.untagged:
            self.logger.info(f"The purge will also remove {len(plan.untagged)} untagged manifests.")

    def confirm_deletion(self, count: int) -> bool:
        """Ask the operator to type exactly "yes"; anything else declines."""
        self.logger.info(f"Do you want to perform the deletion of {count} images? Please answer with yes")
        try:
            response = self.input_fn("> ")
        except EOFError:
            self.logger.warning("Unable to read user input")
            return False
        return (response or "").rstrip("\r\n") == CONFIRMATION_TOKEN

    def _execute_bulk(self, purge_cmd: List[str], purge_ago: str, to_delete: List[DeletionCandidate],
                      result: SweepResult) -> None:
        opts = self.options
        if opts.dry_run:
            self.logger.info(f"[DRY-RUN] Would run: {' '.join(purge_cmd)}")
            return

        self.logger.info("Starting az purge, streaming output...")
        self.registry_client.purge(
            opts.registry, opts.repository, purge_ago,
            tag_filter=opts.tag_filter, untagged=opts.purge_untagged,
            line_handler=self.logger.info,
        )
        result.deleted = [c.digest for c in to_delete]

    def _execute_itemized(self, to_delete: List[DeletionCandidate], result: SweepResult) -> None:
        opts = self.options
        total = len(to_delete)
        for index, candidate in enumerate(to_delete, 1):
            label = f"{opts.repository}@{candidate.digest} (tags: {','.join(candidate.tags)})"
            if opts.dry_run:
                self.logger.info(f"[DRY-RUN] [{index}/{total}] Would delete {label}")
                continue

            try:
                self.registry_client.delete_manifest(opts.registry, opts.repository, candidate.digest)
                result.deleted.append(candidate.digest)
                self.logger.info(f"✓ [{index}/{total}] Deleted {label}")
            except DeletionExecutionError as e:
                result.failed[candidate.digest] = e.message
                self.logger.error(f"✗ [{index}/{total}] DeletionExecutionError for {label}: {e.message}")

            if index < total and opts.delay > 0:
                self.sleep_fn(opts.delay)

    def log_summary(self, result: SweepResult) -> None:
        """Log a standardized deletion summary"""
        dry_run = self.options.dry_run
        mode = "DRY RUN: " if dry_run else ""
        self.logger.info(f"📊 {mode}Deletion Summary:")
        self.logger.info(f"   Total candidates: {len(result.candidates)}")
        if dry_run:
            self.logger.info(f"   Would delete: {len(result.candidates)}")
            freed = sum(c.manifest.size_bytes for c in result.candidates)
        else:
            self.logger.info(f"   Successfully deleted: {len(result.deleted)}")
            deleted = set(result.deleted)
            freed = sum(c.manifest.size_bytes for c in result.candidates if c.digest in deleted)
        if result.failed:
            self.logger.info(f"   Failed deletions: {len(result.failed)}")
        if result.skipped:
            self.logger.info(f"   Skipped (in use): {len(result.skipped)}")
        self.logger.info(f"   {'Would save' if dry_run else 'Saved'}: {sizeof_fmt(freed)}")
