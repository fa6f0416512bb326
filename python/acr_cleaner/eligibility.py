"""
Eligibility filter.

Selects the manifests a sweep may delete. The registry query already applies
the cutoff, but every manifest is checked again against the run's frozen
window so a listing that ignored the query cannot widen the deletion set.
"""

from typing import Iterable

from acr_cleaner.error_utils import ConfigError
from acr_cleaner.logging_utils import get_logger
from acr_cleaner.models import CandidatePlan, DeletionCandidate, ImageManifest, RetentionWindow

logger = get_logger(__name__)

BULK = "bulk"
ITEMIZED = "itemized"


def filter_candidates(manifests: Iterable[ImageManifest], window: RetentionWindow, mode: str) -> CandidatePlan:
    """Build the candidate plan for one deletion mode.

    Args:
        manifests: Manifests from the metadata source, oldest first
        window: The run's retention window
        mode: "bulk" (acr purge by tag pattern) or "itemized" (delete by digest)

    Returns:
        CandidatePlan with the candidates in input order and the excluded
        manifests grouped by reason
    """
    if mode not in (BULK, ITEMIZED):
        raise ConfigError(
            message=f"Unknown deletion mode '{mode}'",
            suggestions=["Use --mode bulk or --mode itemized"],
        )

    plan = CandidatePlan()
    for manifest in manifests:
        if not window.includes(manifest.last_update_time):
            logger.debug(
                f"Skipping {manifest.digest}: last updated {manifest.last_update_time.isoformat()} "
                f"is not before the cutoff {window.query_timestamp()}"
            )
            plan.too_recent.append(manifest)
            continue

        if not manifest.is_tagged:
            # Untagged manifests belong to acr purge --untagged, not to this list
            plan.untagged.append(manifest)
            continue

        if mode == ITEMIZED and not manifest.digest:
            logger.warning(f"Manifest with tags {','.join(manifest.tags)} has no digest; it cannot be deleted individually")
            plan.undeletable.append(manifest)
            continue

        plan.candidates.append(DeletionCandidate(manifest=manifest))

    if plan.too_recent:
        logger.warning(f"{len(plan.too_recent)} listed manifests are not older than the cutoff and were dropped")
    if plan.untagged:
        if mode == BULK:
            logger.info(f"{len(plan.untagged)} untagged manifests are left to acr purge --untagged")
        else:
            logger.info(f"{len(plan.untagged)} untagged manifests are skipped (use bulk mode to purge untagged manifests)")

    return plan
