"""
Live-usage safety check.

Cross-references every candidate tag against the images running in the
collected cluster contexts. By default the first match aborts the whole run
with ImageInUseError before anything is shown for confirmation. The opt-in
"skip" policy withholds only the matching candidate instead.
"""

from typing import List, Optional

from acr_cleaner.error_utils import ConfigError, ImageInUseError
from acr_cleaner.logging_utils import get_logger
from acr_cleaner.models import ClusterInventory, DeletionCandidate

logger = get_logger(__name__)

EXACT = "exact"
SUBSTRING = "substring"
ABORT = "abort"
SKIP = "skip"


def login_server_for(registry: str, suffix: str = ".azurecr.io") -> str:
    """Return the registry host images are pulled from."""
    if "." in registry or not suffix:
        return registry
    return f"{registry}{suffix}"


def image_reference(login_server: str, repository: str, tag: str) -> str:
    return f"{login_server}/{repository}:{tag}"


def _matches(image: str, tag: str, login_server: str, repository: str, match_mode: str) -> bool:
    if match_mode == EXACT:
        return image == image_reference(login_server, repository, tag)
    return f"{repository}:{tag}" in image


def find_running_image(candidate: DeletionCandidate, inventory: ClusterInventory, login_server: str,
                       repository: str, match_mode: str = EXACT) -> Optional[tuple]:
    """Return (tag, context, image) for the first running match, or None."""
    for tag in candidate.tags:
        for context, images in inventory.images_by_context.items():
            for image in images:
                if image and _matches(image, tag, login_server, repository, match_mode):
                    return tag, context, image
    return None


def check_live_usage(candidates: List[DeletionCandidate], inventory: Optional[ClusterInventory],
                     login_server: str, repository: str, match_mode: str = EXACT,
                     on_match: str = ABORT) -> List[DeletionCandidate]:
    """Verify no candidate is running in any collected context.

    Args:
        candidates: Candidates from the eligibility filter
        inventory: Collected cluster inventory, or None when no contexts were
            requested (the check is then bypassed)
        login_server: Registry host used by exact matching
        repository: Repository name
        match_mode: "exact" compares the full <login_server>/<repository>:<tag>
            reference; "substring" looks for <repository>:<tag> anywhere in it
        on_match: "abort" raises on the first match; "skip" drops the matching
            candidates and keeps going

    Returns:
        The candidates that may be deleted

    Raises:
        ImageInUseError: on the first match when on_match is "abort"
    """
    if match_mode not in (EXACT, SUBSTRING):
        raise ConfigError(message=f"Unknown match mode '{match_mode}'", suggestions=["Use exact or substring"])
    if on_match not in (ABORT, SKIP):
        raise ConfigError(message=f"Unknown in-use policy '{on_match}'", suggestions=["Use abort or skip"])

    if inventory is None:
        logger.info("No cluster contexts supplied: live-usage safety check skipped")
        return list(candidates)

    logger.info(
        f"Checking {len(candidates)} candidates against {inventory.image_count()} running image references "
        f"in {len(inventory.images_by_context)} contexts ({match_mode} match)"
    )

    safe = []
    for candidate in candidates:
        candidate.safety_checked = True
        match = find_running_image(candidate, inventory, login_server, repository, match_mode)
        if match is None:
            safe.append(candidate)
            continue

        tag, context, image = match
        if on_match == ABORT:
            logger.error(f"ImageInUseError: image with tag {tag} is running in the k8s context {context} ({image})")
            raise ImageInUseError(tag=tag, context=context, image=image, digest=candidate.digest)

        candidate.in_use_by = context
        candidate.matched_image = image
        logger.warning(f"⚠️  Keeping {candidate.digest}: tag {tag} is running in the k8s context {context}")

    return safe
