#!/usr/bin/env python3
"""
Cluster image inventory

Lists the container images running in the given Kubernetes contexts, the same
inventory the purge checks its candidates against. Useful to see why a purge
was refused.

Usage examples:
  python inspect_clusters.py --contexts prod,staging
  python inspect_clusters.py --all-contexts --repository myapp
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path for imports
_parent_dir = Path(__file__).parent.parent.absolute()
if str(_parent_dir) not in sys.path:
    sys.path.insert(0, str(_parent_dir))

from acr_cleaner.cluster_inventory import ClusterInventoryCollector, resolve_contexts
from acr_cleaner.config_manager import config_manager
from acr_cleaner.error_utils import ActionableError
from acr_cleaner.kube_client import KubernetesClusterApi
from acr_cleaner.logging_utils import get_logger, setup_logging
from acr_cleaner.report_utils import inventory_table


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="List container images running in Kubernetes contexts")
    parser.add_argument("--contexts", help="Comma-separated list of Kubernetes contexts")
    parser.add_argument("--all-contexts", action="store_true", help="Use every context in your kubeconfig")
    parser.add_argument("--repository", help="Only show images of this repository")
    parser.add_argument("--kubeconfig", help="Path to the kubeconfig file (default: ~/.kube/config)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging()
    logger = get_logger(__name__)
    args = parse_arguments(argv)

    cluster_api = KubernetesClusterApi(kubeconfig=args.kubeconfig or config_manager.get_kubeconfig())
    explicit = args.contexts or config_manager.get_contexts()
    try:
        contexts = resolve_contexts(explicit, args.all_contexts or config_manager.get_all_contexts(), cluster_api)
    except ActionableError as e:
        logger.error(str(e))
        return 1

    if not contexts:
        logger.error("No contexts given. Use --contexts or --all-contexts")
        return 1

    collector = ClusterInventoryCollector(cluster_api, max_workers=config_manager.get_max_workers())
    inventory = collector.collect(contexts)
    print(inventory_table(inventory, repository=args.repository))
    return 0 if inventory.complete else 1


if __name__ == "__main__":
    sys.exit(main())
