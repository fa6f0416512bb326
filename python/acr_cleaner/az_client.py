"""
Azure CLI client for registry operations.

Wraps the handful of `az` invocations the sweep needs: switching the active
subscription, listing manifest metadata, running `acr purge` and deleting a
single manifest. Commands are run without a shell.
"""

import subprocess
import threading
from typing import Callable, List, Optional

from acr_cleaner.error_utils import (
    DeletionExecutionError,
    create_metadata_fetch_error,
    create_subscription_error,
)
from acr_cleaner.logging_utils import get_logger

logger = get_logger(__name__)


def run_streaming_command(cmd: List[str], line_handler: Optional[Callable[[str], None]] = None) -> int:
    """Run a command and forward each output line as it is produced.

    stdout and stderr are merged and read on a background thread while this
    thread blocks on process completion, so a chatty child can never fill the
    pipe buffer.

    Args:
        cmd: Command and arguments
        line_handler: Called once per output line, without the trailing newline
            (default: log at INFO level)

    Returns:
        The process exit code
    """
    handler = line_handler or logger.info
    process = subprocess.Popen(
        cmd,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
    )

    def _pump():
        try:
            for line in process.stdout:
                handler(line.rstrip("\r\n"))
        except Exception as e:
            logger.error(f"Error forwarding command output: {e}; discarding the remaining output")
            # The child blocks on a full pipe unless someone keeps reading
            for _ in process.stdout:
                pass

    reader = threading.Thread(target=_pump, name="stream-output", daemon=True)
    reader.start()
    try:
        return_code = process.wait()
    except BaseException:
        process.kill()
        process.wait()
        raise
    finally:
        reader.join()
        process.stdout.close()
    return return_code


class AzureRegistryClient:
    """Thin wrapper around the az CLI for Azure Container Registry"""

    def __init__(self, az_binary: str = "az", timeout: Optional[int] = 300):
        self.az_binary = az_binary
        self.timeout = timeout

    def _run(self, args: List[str]) -> str:
        cmd = [self.az_binary] + args
        logger.debug(f"Running: {' '.join(cmd)}")
        result = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=self.timeout)
        return result.stdout

    def set_subscription(self, subscription: str) -> None:
        """Switch the active az account before any registry query.

        Raises:
            ConfigError: if az rejects the subscription or is not installed
        """
        try:
            self._run(["account", "set", "--subscription", subscription])
            logger.info(f"Using az subscription {subscription}")
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            stderr = getattr(e, "stderr", None)
            if stderr:
                logger.error(f"  stderr: {stderr.strip()}")
            raise create_subscription_error(subscription, e)

    def list_manifest_metadata(self, registry: str, repository: str, before: str) -> str:
        """Return the raw JSON listing of manifests last updated before `before`.

        Args:
            registry: Registry name
            repository: Repository within the registry
            before: Cutoff formatted as YYYY-MM-DDThh:mm:ss

        Raises:
            MetadataFetchError: if the az call fails
        """
        args = [
            "acr", "manifest", "list-metadata",
            "--name", repository,
            "--registry", registry,
            "--orderby", "time_asc",
            "--query", f"[?lastUpdateTime < '{before}']",
            "--output", "json",
        ]
        try:
            return self._run(args)
        except subprocess.CalledProcessError as e:
            if e.stderr:
                logger.error(f"  stderr: {e.stderr.strip()}")
            raise create_metadata_fetch_error(registry, repository, e)
        except (subprocess.TimeoutExpired, OSError) as e:
            raise create_metadata_fetch_error(registry, repository, e)

    def build_purge_command(self, registry: str, repository: str, ago: str,
                            tag_filter: str = ".*", untagged: bool = True) -> List[str]:
        """Build the `az acr run` invocation wrapping `acr purge`."""
        purge = f"acr purge --filter '{repository}:{tag_filter}' --ago {ago}"
        if untagged:
            purge += " --untagged"
        return [self.az_binary, "acr", "run", "--cmd", purge, "--registry", registry, "/dev/null"]

    def purge(self, registry: str, repository: str, ago: str, tag_filter: str = ".*",
              untagged: bool = True, line_handler: Optional[Callable[[str], None]] = None) -> None:
        """Run the bulk purge, streaming its output.

        Raises:
            DeletionExecutionError: if the purge cannot start or exits non-zero
        """
        cmd = self.build_purge_command(registry, repository, ago, tag_filter, untagged)
        try:
            return_code = run_streaming_command(cmd, line_handler)
        except OSError as e:
            raise DeletionExecutionError(
                message=f"Could not start az purge command: {e}",
                details={"registry": registry, "repository": repository},
            )
        if return_code != 0:
            raise DeletionExecutionError(
                message=f"Error fulfilling az purge command (exit code {return_code})",
                suggestions=["Review the streamed purge output above for the failing step"],
                details={"registry": registry, "repository": repository, "exit_code": return_code},
            )

    def delete_manifest(self, registry: str, repository: str, digest: str) -> None:
        """Delete one manifest (and every tag pointing at it) by digest.

        Raises:
            DeletionExecutionError: if az reports a failure
        """
        image = f"{repository}@{digest}"
        try:
            self._run(["acr", "repository", "delete", "--name", registry, "--image", image, "--yes"])
        except subprocess.CalledProcessError as e:
            raise DeletionExecutionError(
                message=f"Failed to delete {image}: {(e.stderr or str(e)).strip()}",
                details={"digest": digest, "exit_code": e.returncode},
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            raise DeletionExecutionError(
                message=f"Failed to delete {image}: {e}",
                details={"digest": digest},
            )
