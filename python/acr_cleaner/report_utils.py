"""
Formatting helpers for the sweep's log output and the cluster inventory table.
"""
from collections import Counter
from datetime import datetime
from typing import Optional

from tabulate import tabulate

from acr_cleaner.models import BYTES_PER_GIB, ClusterInventory, DeletionCandidate


def sizeof_fmt(num: float, suffix: str = "B") -> str:
    """Format bytes into human-readable size.

    Args:
        num: Number of bytes
        suffix: Suffix to append (default: "B")

    Returns:
        Formatted string like "1.5GiB", "500.0MiB", etc.
    """
    for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
        if abs(num) < 1024.0:
            return f"{num:3.1f}{unit}{suffix}"
        num /= 1024.0
    return f"{num:.1f}Yi{suffix}"


def bytes_to_gib(num_bytes: int) -> str:
    """Bytes as GiB with two decimals."""
    return f"{num_bytes / BYTES_PER_GIB:.2f}"


def _fmt_time(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S UTC") if value else "unknown"


def preview_line(repository: str, candidate: DeletionCandidate) -> str:
    """One operator-facing line describing a deletion candidate."""
    manifest = candidate.manifest
    return (
        f"Docker Image {repository} with tags {','.join(manifest.tags)} would get deleted. "
        f"Digest: {manifest.digest or 'n/a'}, Created Time: {_fmt_time(manifest.created_time)}, "
        f"Last Update: {_fmt_time(manifest.last_update_time)}, Size: {sizeof_fmt(manifest.size_bytes)}"
    )


def inventory_table(inventory: ClusterInventory, repository: Optional[str] = None) -> str:
    """Render the running images per context as a grid.

    Args:
        inventory: Collected inventory
        repository: If set, only references containing "<repository>:" are listed
    """
    rows = []
    for context, images in inventory.images_by_context.items():
        counts = Counter(image for image in images if image)
        for image, count in sorted(counts.items()):
            if repository and f"{repository}:" not in image:
                continue
            rows.append([context, image, count])
    for context, error in inventory.failed_contexts.items():
        rows.append([context, f"<query failed: {error}>", 0])

    headers = ["Context", "Image", "Containers"]
    return tabulate(rows, headers=headers, tablefmt="grid")
