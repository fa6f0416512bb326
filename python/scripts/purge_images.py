#!/usr/bin/env python3
"""
Retention purge for an Azure Container Registry repository

Finds the images in a repository that were last updated before a retention
window, refuses to continue if any of them is running in the given Kubernetes
contexts, and deletes them after you confirm with "yes".

Usage examples:
  # Preview what a 360 day window would delete (no deletion calls)
  python purge_images.py --registry myregistry --repository myapp --ago 360d --dry-run

  # Purge everything older than 90 days unless it runs in prod or staging
  python purge_images.py --registry myregistry --repository myapp --ago 90d --contexts prod,staging

  # Check every context in your kubeconfig and delete digest by digest, 2s apart
  python purge_images.py --registry myregistry --repository myapp --timestamp 2024-01-31 \\
      --all-contexts --mode itemized --delay 2

  # Use another subscription for the registry
  python purge_images.py --registry myregistry --repository myapp --subscription <id>
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Add parent directory to path for imports
_parent_dir = Path(__file__).parent.parent.absolute()
if str(_parent_dir) not in sys.path:
    sys.path.insert(0, str(_parent_dir))

from acr_cleaner.az_client import AzureRegistryClient
from acr_cleaner.cluster_inventory import parse_context_list
from acr_cleaner.config_manager import (
    DELETION_MODES,
    MATCH_MODES,
    ON_MATCH_POLICIES,
    ConfigManager,
    config_manager,
)
from acr_cleaner.duration import resolve_window
from acr_cleaner.error_utils import ActionableError, ConfigError
from acr_cleaner.kube_client import KubernetesClusterApi
from acr_cleaner.logging_utils import get_logger, log_exception, setup_logging
from acr_cleaner.orchestrator import RetentionSweep, SweepOptions, SweepState


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Delete images older than a retention window from an Azure Container Registry repository"
    )
    parser.add_argument("--registry", help="Name of the Azure Container Registry")
    parser.add_argument("--repository", help="Name of the repository in your registry")
    parser.add_argument(
        "--subscription", help="ID of the subscription. If not specified it will use the default one"
    )
    parser.add_argument(
        "--contexts",
        help="Comma-separated list of Kubernetes contexts. The deletion will not start if any image to delete "
        "is running in a cluster from the context list",
    )
    parser.add_argument(
        "--all-contexts",
        action="store_true",
        help="Check every context in your kubeconfig (ignored when --contexts is given)",
    )
    window = parser.add_mutually_exclusive_group()
    window.add_argument(
        "--ago",
        help="Time duration in the past. Expects a number followed by a duration type: "
        "'s' for seconds, 'm' for minutes, 'h' for hours, 'd' for days (default: from config, 360d)",
    )
    window.add_argument("--timestamp", help="Absolute cutoff date/time, e.g. 2024-01-31 or 2024-01-31T12:00:00Z")
    parser.add_argument(
        "--dry-run", action="store_true", help="Print the images that would be deleted but do not delete them"
    )
    parser.add_argument(
        "--mode",
        choices=DELETION_MODES,
        help="bulk: one acr purge run; itemized: delete digest by digest (default: from config, bulk)",
    )
    parser.add_argument("--delay", type=float, help="Seconds to wait between itemized deletions")
    parser.add_argument(
        "--match-mode",
        choices=MATCH_MODES,
        help="exact: compare <registry>.azurecr.io/<repo>:<tag>; substring: look for <repo>:<tag> in the pod image",
    )
    parser.add_argument(
        "--on-image-in-use",
        dest="on_match",
        choices=ON_MATCH_POLICIES,
        help="abort: stop the whole run (default); skip: keep only the running images (itemized mode only)",
    )
    parser.add_argument("--kubeconfig", help="Path to the kubeconfig file (default: ~/.kube/config)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def build_options(args: argparse.Namespace, cm: ConfigManager = config_manager) -> SweepOptions:
    """Merge flags over configuration and resolve the retention window.

    Raises:
        ConfigError: missing or inconsistent input
        ParseError: the retention window could not be parsed
    """
    registry = args.registry or cm.get_registry_name()
    repository = args.repository or cm.get_repository()
    if not registry or not repository:
        raise ConfigError(
            message="You must provide the registry and repository",
            suggestions=["Pass --registry and --repository", "Or set registry.name and registry.repository in config.yaml"],
        )

    mode = args.mode or cm.get_deletion_mode()
    on_match = args.on_match or cm.get_on_match()
    if on_match == "skip" and mode != "itemized":
        raise ConfigError(
            message="--on-image-in-use skip only works with --mode itemized",
            suggestions=["A bulk purge removes every matching tag; use --mode itemized to keep running images"],
        )

    delay = args.delay if args.delay is not None else cm.get_delay()
    if delay < 0:
        raise ConfigError(message=f"--delay must not be negative, got {delay}")

    if args.timestamp:
        window = resolve_window(timestamp=args.timestamp)
    else:
        window = resolve_window(ago=args.ago or cm.get_ago())

    contexts = parse_context_list(args.contexts) if args.contexts else cm.get_contexts()

    return SweepOptions(
        registry=registry,
        repository=repository,
        window=window,
        subscription=args.subscription or cm.get_subscription(),
        contexts=contexts,
        all_contexts=args.all_contexts or cm.get_all_contexts(),
        mode=mode,
        dry_run=args.dry_run or cm.is_dry_run(),
        delay=delay,
        match_mode=args.match_mode or cm.get_match_mode(),
        on_match=on_match,
        login_server_suffix=cm.get_login_server_suffix(),
        tag_filter=cm.get_tag_filter(),
        purge_untagged=cm.get_purge_untagged(),
        max_workers=cm.get_max_workers(),
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    args = parse_arguments(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger = get_logger(__name__)

    try:
        options = build_options(args)
        if options.dry_run:
            logger.info("🔍 DRY RUN MODE")
            logger.info("Images will NOT be deleted.")

        registry_client = AzureRegistryClient(timeout=config_manager.get_timeout())
        cluster_api = KubernetesClusterApi(kubeconfig=args.kubeconfig or config_manager.get_kubeconfig())
        sweep = RetentionSweep(registry_client, cluster_api, options)
        result = sweep.run()
    except ActionableError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"\n❌ Retention sweep failed: {e}")
        log_exception(logger, "Error in main", exc_info=e)
        return 1

    if result.state == SweepState.ABORTED:
        logger.info("Deletion cancelled by user.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
