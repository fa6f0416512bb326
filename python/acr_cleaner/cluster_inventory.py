"""
Cluster inventory collection.

Resolves which kube contexts the safety check covers and gathers the image
references running in each of them. A failing context is logged and left out
so the remaining clusters still count; the returned inventory records which
contexts are missing.
"""

import concurrent.futures
from typing import Iterable, List, Optional, Protocol, Sequence, Union

from acr_cleaner.error_utils import ClusterQueryError, create_context_resolution_error
from acr_cleaner.logging_utils import get_logger
from acr_cleaner.models import ClusterInventory

logger = get_logger(__name__)


class ClusterApi(Protocol):
    def list_contexts(self) -> List[str]:
        ...

    def list_pod_images(self, context: str) -> Union[str, Sequence[str]]:
        ...


def parse_context_list(raw: Union[None, str, Iterable[str]]) -> List[str]:
    """Split a comma-separated context flag into clean, unique names."""
    if not raw:
        return []
    items = raw.split(",") if isinstance(raw, str) else raw
    contexts = []
    for item in items:
        name = item.strip()
        if name and name not in contexts:
            contexts.append(name)
    return contexts


def parse_image_references(raw: Union[str, Sequence[str], None]) -> List[str]:
    """Normalize a per-context query result into a list of references.

    Raw text (whitespace or newline delimited) is split; a list is copied as-is,
    keeping duplicates and empty entries.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        return raw.split()
    return list(raw)


def resolve_contexts(explicit: Union[None, str, Iterable[str]], all_contexts: bool,
                     cluster_api: ClusterApi) -> List[str]:
    """Decide which contexts the safety check covers.

    An explicit list wins over all_contexts and is used without validation.

    Raises:
        ContextResolutionError: if all contexts were requested and the local
            kubeconfig could not be read
    """
    contexts = parse_context_list(explicit)
    if contexts:
        if all_contexts:
            logger.info("Both an explicit context list and all-contexts given; using the explicit list")
        return contexts

    if not all_contexts:
        return []

    try:
        contexts = parse_context_list(cluster_api.list_contexts())
    except Exception as e:
        logger.error(f"ContextResolutionError: could not list kubeconfig contexts: {e}")
        raise create_context_resolution_error(e)

    if not contexts:
        raise create_context_resolution_error(ValueError("no contexts found in kubeconfig"))
    return contexts


class ClusterInventoryCollector:
    """Collects running image references per context"""

    def __init__(self, cluster_api: ClusterApi, max_workers: int = 4):
        self.cluster_api = cluster_api
        self.max_workers = max(1, max_workers)

    def _query(self, context: str) -> List[str]:
        try:
            raw = self.cluster_api.list_pod_images(context)
        except ClusterQueryError:
            raise
        except Exception as e:
            raise ClusterQueryError(context, e)
        return parse_image_references(raw)

    def collect(self, contexts: Sequence[str]) -> ClusterInventory:
        """Query every context; failures are isolated per context."""
        inventory = ClusterInventory(requested=list(contexts))
        if not contexts:
            return inventory

        logger.info(f"Parsing images from the following contexts: {','.join(contexts)}")

        results = {}
        workers = min(self.max_workers, len(contexts))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self._query, context): context for context in contexts}
            for future in concurrent.futures.as_completed(futures):
                context = futures[future]
                try:
                    results[context] = future.result()
                except ClusterQueryError as e:
                    logger.warning(f"ClusterQueryError: {e.message}; skipping context {context}")
                    inventory.failed_contexts[context] = e.message

        # Keep the requested order regardless of completion order
        for context in contexts:
            if context in results:
                inventory.images_by_context[context] = results[context]
                logger.debug(f"Context {context}: {len(results[context])} image references")

        if not inventory.complete:
            logger.warning(
                f"⚠️  Cluster inventory is incomplete: no data from {', '.join(inventory.failed_contexts)}"
            )
        return inventory


def collect_inventory(cluster_api: ClusterApi, explicit: Union[None, str, Iterable[str]],
                      all_contexts: bool, max_workers: int = 4) -> Optional[ClusterInventory]:
    """Resolve contexts and collect their inventory.

    Returns None when no contexts were requested, which tells the safety
    checker to bypass the live-usage check.
    """
    contexts = resolve_contexts(explicit, all_contexts, cluster_api)
    if not contexts:
        return None
    return ClusterInventoryCollector(cluster_api, max_workers=max_workers).collect(contexts)
