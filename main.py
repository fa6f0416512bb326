import argparse
import logging
import os
import subprocess
import sys

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "python"))

from acr_cleaner.config_manager import config_manager


def setup_logging():
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


def load_script_paths():
    base = os.path.join(os.path.dirname(os.path.abspath(__file__)), "python", "scripts")
    return {
        "purge_images": os.path.join(base, "purge_images.py"),
        "inspect_clusters": os.path.join(base, "inspect_clusters.py"),
    }


def run_script(script_path, args):
    """Run a script with the given arguments and return its exit code"""
    if not os.path.exists(script_path):
        logging.error(f"Script not found: {script_path}")
        return 1

    logging.info(f"Running script: {script_path}")
    logging.info(f"Arguments: {args}")

    # The purge prompts for confirmation, so the child keeps our stdin
    return subprocess.run([sys.executable, script_path] + args).returncode


def main():
    setup_logging()
    script_paths = load_script_paths()

    parser = argparse.ArgumentParser(
        description="Unified entrypoint for the ACR retention cleaner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Available scripts:
  purge_images      - Delete images older than a retention window (asks for confirmation)
  inspect_clusters  - List the images running in Kubernetes contexts

Configuration:
  The tool uses config.yaml for default settings (CONFIG_FILE overrides the path).
  Environment variables:
  - ACR_REGISTRY: Registry name
  - ACR_REPOSITORY: Repository name
  - AZURE_SUBSCRIPTION_ID: Subscription to switch to before querying
  - KUBE_CONTEXTS: Comma-separated contexts for the live-usage check
  - KUBECONFIG_PATH: Kubeconfig file
  - RETENTION_AGO: Default retention window, e.g. 360d
  - DELETION_MODE: bulk or itemized
  - DELETION_DELAY: Seconds between itemized deletions

Examples:
  # Preview (no deletions)
  python main.py purge_images --registry myregistry --repository myapp --ago 90d --dry-run

  # Purge, refusing if anything old still runs in prod
  python main.py purge_images --registry myregistry --repository myapp --ago 90d --contexts prod

  # What is running where
  python main.py inspect_clusters --all-contexts --repository myapp

Safety Notes:
  - Nothing is deleted unless you answer the prompt with exactly: yes
  - A candidate running in any checked context aborts the whole purge
  - Without --contexts or --all-contexts the live-usage check is skipped
        """
    )

    parser.add_argument(
        'script_keyword',
        nargs='?',
        choices=script_paths.keys(),
        help="Script to run"
    )

    parser.add_argument(
        '--config',
        action='store_true',
        help="Show current configuration and exit"
    )

    parser.add_argument(
        'additional_args',
        nargs=argparse.REMAINDER,
        help="Additional arguments for the script"
    )

    args = parser.parse_args()

    # Show configuration if requested
    if args.config:
        config_manager.print_config()
        sys.exit(0)

    if not args.script_keyword:
        parser.print_help()
        sys.exit(1)

    sys.exit(run_script(script_paths[args.script_keyword], args.additional_args))


if __name__ == '__main__':
    main()
