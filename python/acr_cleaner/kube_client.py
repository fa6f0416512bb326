"""
Kubernetes access for the live-usage check.

Lists the contexts in the local kubeconfig and the container images of every
pod in a given context, using the official kubernetes client.
"""

from typing import List, Optional

from kubernetes import client, config

from acr_cleaner.error_utils import ClusterQueryError
from acr_cleaner.logging_utils import get_logger

logger = get_logger(__name__)


class KubernetesClusterApi:
    """Read-only view of the clusters in a kubeconfig"""

    def __init__(self, kubeconfig: Optional[str] = None):
        self.kubeconfig = kubeconfig

    def list_contexts(self) -> List[str]:
        """Return the context names known to the local kubeconfig.

        Errors from the kubernetes config loader propagate to the caller.
        """
        contexts, _ = config.list_kube_config_contexts(config_file=self.kubeconfig)
        return [ctx["name"] for ctx in contexts or [] if ctx.get("name")]

    def _core_api(self, context: str) -> client.CoreV1Api:
        api_client = config.new_client_from_config(config_file=self.kubeconfig, context=context)
        return client.CoreV1Api(api_client)

    def list_pod_images(self, context: str) -> List[str]:
        """Return the image of every init and regular container in all namespaces.

        Containers without an image yield an empty string.

        Raises:
            ClusterQueryError: if the context cannot be loaded or queried
        """
        try:
            core_v1 = self._core_api(context)
            pods = core_v1.list_pod_for_all_namespaces(watch=False)
        except Exception as e:
            raise ClusterQueryError(context, e)

        images = []
        for pod in pods.items:
            spec = pod.spec
            if spec is None:
                continue
            for container in (spec.init_containers or []) + (spec.containers or []):
                images.append(container.image or "")
        logger.debug(f"Context {context}: {len(pods.items)} pods, {len(images)} container images")
        return images
