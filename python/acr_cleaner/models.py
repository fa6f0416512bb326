"""Data classes shared by the retention sweep."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser

from acr_cleaner.error_utils import MetadataParseError

QUERY_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"
BYTES_PER_GIB = 1024 ** 3


def to_utc(instant: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken as UTC."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def _parse_manifest_time(value: Any, field_name: str, digest: str) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return to_utc(date_parser.isoparse(str(value)))
    except (ValueError, OverflowError) as e:
        raise MetadataParseError(
            message=f"Invalid {field_name} '{value}' for manifest {digest or '<no digest>'}",
            details={"digest": digest, "field": field_name, "error_message": str(e)},
        )


@dataclass
class ImageManifest:
    """One manifest record from `az acr manifest list-metadata`"""
    digest: str
    tags: List[str]
    last_update_time: datetime
    created_time: Optional[datetime] = None
    size_bytes: int = 0
    architecture: str = ""
    os: str = ""
    media_type: str = ""
    config_media_type: str = ""
    changeable_attributes: Dict[str, bool] = field(default_factory=dict)

    @property
    def is_tagged(self) -> bool:
        return bool(self.tags)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImageManifest":
        """Build a manifest from one element of the registry's JSON listing.

        Raises:
            MetadataParseError: if the element is not an object, lacks a usable
                lastUpdateTime, or carries fields of the wrong type
        """
        if not isinstance(data, dict):
            raise MetadataParseError(
                message=f"Expected a manifest object, got {type(data).__name__}",
                details={"element": repr(data)[:200]},
            )

        digest = data.get("digest") or ""
        tags = data.get("tags") or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise MetadataParseError(
                message=f"Manifest {digest or '<no digest>'} has malformed tags: {tags!r}",
                details={"digest": digest},
            )

        last_update_time = _parse_manifest_time(data.get("lastUpdateTime"), "lastUpdateTime", digest)
        if last_update_time is None:
            raise MetadataParseError(
                message=f"Manifest {digest or '<no digest>'} has no lastUpdateTime",
                details={"digest": digest},
            )

        size = data.get("imageSize") or 0
        try:
            size_bytes = int(size)
        except (TypeError, ValueError):
            raise MetadataParseError(
                message=f"Manifest {digest or '<no digest>'} has a non-numeric imageSize: {size!r}",
                details={"digest": digest},
            )

        return cls(
            digest=digest,
            tags=list(tags),
            last_update_time=last_update_time,
            created_time=_parse_manifest_time(data.get("createdTime"), "createdTime", digest),
            size_bytes=size_bytes,
            architecture=data.get("architecture") or "",
            os=data.get("os") or "",
            media_type=data.get("mediaType") or "",
            config_media_type=data.get("configMediaType") or "",
            changeable_attributes=dict(data.get("changeableAttributes") or {}),
        )


@dataclass
class ClusterInventory:
    """Image references observed per cluster context"""
    requested: List[str]
    images_by_context: Dict[str, List[str]] = field(default_factory=dict)
    failed_contexts: Dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed_contexts

    def image_count(self) -> int:
        return sum(len(images) for images in self.images_by_context.values())


@dataclass
class DeletionCandidate:
    """A manifest selected for deletion, annotated by the safety checker"""
    manifest: ImageManifest
    safety_checked: bool = False
    in_use_by: Optional[str] = None
    matched_image: Optional[str] = None

    @property
    def is_safe(self) -> bool:
        return self.in_use_by is None

    @property
    def digest(self) -> str:
        return self.manifest.digest

    @property
    def tags(self) -> List[str]:
        return self.manifest.tags


@dataclass(frozen=True)
class RetentionWindow:
    """The single cutoff instant a run compares every manifest against"""
    cutoff: datetime
    source: str
    raw: str

    def includes(self, instant: datetime) -> bool:
        """True when `instant` is strictly before the cutoff."""
        return to_utc(instant) < self.cutoff

    def query_timestamp(self) -> str:
        return self.cutoff.astimezone(timezone.utc).strftime(QUERY_TIMESTAMP_FORMAT)

    def purge_ago(self, now: Optional[datetime] = None) -> str:
        """Return the --ago value for `acr purge`.

        A relative window is passed through as typed. An absolute window is
        converted to the elapsed time between the cutoff and `now`.
        """
        if self.source == "ago":
            return self.raw
        now = to_utc(now or datetime.now(timezone.utc))
        remaining = max(0, int((now - self.cutoff).total_seconds()))
        parts = []
        for unit, seconds in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
            value, remaining = divmod(remaining, seconds)
            if value:
                parts.append(f"{value}{unit}")
        return "".join(parts) or "0s"


@dataclass
class CandidatePlan:
    """Eligibility filter output"""
    candidates: List[DeletionCandidate] = field(default_factory=list)
    untagged: List[ImageManifest] = field(default_factory=list)
    undeletable: List[ImageManifest] = field(default_factory=list)
    too_recent: List[ImageManifest] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.candidates)

    @property
    def total_bytes(self) -> int:
        return sum(c.manifest.size_bytes for c in self.candidates)

    @property
    def total_gib(self) -> float:
        return self.total_bytes / BYTES_PER_GIB

    @property
    def total_gib_display(self) -> str:
        return f"{self.total_gib:.2f}"


@dataclass
class SweepResult:
    """Outcome of one retention sweep"""
    state: Any
    candidates: List[DeletionCandidate] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: List[DeletionCandidate] = field(default_factory=list)
    inventory_complete: bool = True
    nothing_to_do: bool = False
