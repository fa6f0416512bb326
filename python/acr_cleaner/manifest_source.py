"""Manifest metadata listing for one repository."""

import json
from typing import List, Protocol

from acr_cleaner.error_utils import MetadataParseError
from acr_cleaner.logging_utils import get_logger
from acr_cleaner.models import ImageManifest, RetentionWindow

logger = get_logger(__name__)


class ManifestLister(Protocol):
    def list_manifest_metadata(self, registry: str, repository: str, before: str) -> str:
        ...


def parse_manifest_listing(raw: str) -> List[ImageManifest]:
    """Deserialize the registry's JSON array into manifests.

    Raises:
        MetadataParseError: if the payload is not a JSON array of manifest objects
    """
    if raw is None or not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise MetadataParseError(
            message=f"Error reading metadata: {e}",
            details={"payload_start": raw[:200]},
        )
    if not isinstance(data, list):
        raise MetadataParseError(
            message=f"Error reading metadata: expected a JSON array, got {type(data).__name__}",
            details={"payload_start": raw[:200]},
        )
    return [ImageManifest.from_dict(item) for item in data]


class ManifestMetadataSource:
    """Fetches the manifests older than a retention window, oldest first"""

    def __init__(self, lister: ManifestLister):
        self.lister = lister

    def fetch(self, registry: str, repository: str, window: RetentionWindow) -> List[ImageManifest]:
        before = window.query_timestamp()
        logger.info(f"Listing manifests in {registry}/{repository} last updated before {before}")
        raw = self.lister.list_manifest_metadata(registry, repository, before)
        manifests = parse_manifest_listing(raw)
        manifests.sort(key=lambda m: m.last_update_time)
        logger.info(f"Registry returned {len(manifests)} manifests older than {before}")
        return manifests
