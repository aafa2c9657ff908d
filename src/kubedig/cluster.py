import json
import logging
import os
import time
from functools import wraps

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .errors import ClusterError, ConfigurationError

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_NAMESPACE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"
# Seconds allowed to connect when opening a log stream. Reads have no limit while following.
LOG_CONNECT_TIMEOUT_SECONDS = 10


# --- Kubernetes Configuration ---
def load_cluster_config(context=None):
    """
    Configure the Kubernetes client.

    With an explicit context only the kubeconfig file is consulted. Otherwise
    in-cluster configuration is tried first (when running inside a pod) and
    the local kubeconfig second.
    """
    if context is None:
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration.")
            return
        except config.ConfigException:
            pass

    try:
        config.load_kube_config(context=context)
        logger.info(f"Loaded local Kubernetes configuration (kubeconfig), context={context or 'current'}.")
    except config.ConfigException as e:
        raise ConfigurationError(
            f"Could not configure Kubernetes client: {e}. Ensure KUBECONFIG is set or run inside a cluster."
        ) from e


def detect_namespace(namespace=None, context=None):
    """
    Work out which namespace to tail.

    Priority:
    1. The namespace given on the command line.
    2. The K8S_NAMESPACE environment variable.
    3. The namespace bound to the selected kubeconfig context.
    4. The service account namespace when running in a pod.
    5. "default".
    """
    if namespace:
        return namespace
    if os.environ.get("K8S_NAMESPACE"):
        return os.environ["K8S_NAMESPACE"]

    try:
        contexts, active_context = config.list_kube_config_contexts()
    except config.ConfigException:
        contexts, active_context = [], None

    if context is None:
        selected = active_context
    else:
        selected = next((c for c in contexts if c.get("name") == context), None)
    if selected and selected.get("context", {}).get("namespace"):
        return selected["context"]["namespace"]

    if os.path.exists(SERVICE_ACCOUNT_NAMESPACE):
        with open(SERVICE_ACCOUNT_NAMESPACE) as f:
            return f.read().strip() or "default"
    return "default"


# --- Error Handling Helpers ---
def retry_k8s_operation(max_retries=3, initial_delay=0.5, backoff_factor=2.0):
    """
    Decorator to retry Kubernetes operations with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay between retries in seconds
        backoff_factor: Multiplier for delay between retries
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_exception = None
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except ApiException as e:
                    last_exception = e
                    # Don't retry on certain HTTP status codes
                    if e.status in [400, 401, 403, 404]:
                        break

                    if attempt < max_retries:
                        logger.warning(
                            f"Kubernetes API call failed (attempt {attempt + 1}/{max_retries + 1}): "
                            f"{e.status} - {e.reason}. Retrying in {delay:.1f}s..."
                        )
                        time.sleep(delay)
                        delay *= backoff_factor
                    else:
                        logger.error(
                            f"Kubernetes API call failed after {max_retries + 1} attempts: {e.status} - {e.reason}"
                        )
                except Exception as e:
                    last_exception = e
                    # Don't retry on non-API exceptions
                    break

            # Re-raise the last exception
            raise last_exception

        return wrapper

    return decorator


def format_k8s_error(e):
    """
    Format Kubernetes API exception into user-friendly error message.

    Args:
        e: ApiException from Kubernetes client

    Returns:
        tuple: (user_message, status_code)
    """
    if e.status == 401:
        return "Authentication required - check your kubeconfig credentials", 401
    elif e.status == 403:
        return "Access denied - insufficient permissions to list pods in this namespace", 403
    elif e.status == 404:
        return "Resource not found - check that the namespace exists", 404
    elif e.status == 429:
        return "Rate limited - too many requests, please try again later", 429
    elif e.status is not None and e.status >= 500:
        return "Kubernetes cluster error - please try again later", 503
    else:
        # Try to extract detailed error message from response body
        error_message = e.reason
        if e.body:
            try:
                error_details = json.loads(e.body)
                if "message" in error_details:
                    error_message = error_details["message"]
                elif "reason" in error_details:
                    error_message = error_details["reason"]
            except json.JSONDecodeError:
                # Include truncated body if JSON parsing fails
                error_message = f"{e.reason} (Details: {e.body[:200]})"

        return f"Kubernetes API error: {error_message}", e.status


# --- Log Streams ---
class PodLogStream:
    """
    Follow the log of one container.

    Iterating yields decoded lines without their trailing newline. The
    iteration ends when the container's log stream ends. close() may be
    called from another thread to unblock a pending read.
    """

    def __init__(self, response, chunk_size=4096):
        self._response = response
        self._chunk_size = chunk_size

    def __iter__(self):
        buffer = b""
        for chunk in self._response.stream(self._chunk_size, decode_content=True):
            buffer += chunk
            while b"\n" in buffer:
                line, buffer = buffer.split(b"\n", 1)
                yield line.decode("utf-8", errors="replace")
        # Flush remaining partial line
        if buffer:
            yield buffer.decode("utf-8", errors="replace")

    def close(self):
        self._response.shutdown()
        self._response.release_conn()


class KubeCluster:
    """The slice of the Kubernetes API kubedig needs: list pods, follow logs."""

    def __init__(self, namespace, api=None):
        self.namespace = namespace
        self.api = api or client.CoreV1Api()

    def list_instances(self):
        """
        List the pods of the namespace.

        Raises:
            ClusterError: if the API stays unreachable after retries
        """
        try:
            return self._list_pods_with_retry().items
        except ApiException as e:
            message, status = format_k8s_error(e)
            raise ClusterError(f"Could not list pods in namespace {self.namespace}: {message}", status) from e
        except Exception as e:
            raise ClusterError(f"Could not list pods in namespace {self.namespace}: {e}") from e

    @retry_k8s_operation(max_retries=2, initial_delay=0.3)
    def _list_pods_with_retry(self):
        """Helper function to list pods with retry logic."""
        return self.api.list_namespaced_pod(namespace=self.namespace)

    def stream_logs(self, pod_name, container_name):
        response = self.api.read_namespaced_pod_log(
            name=pod_name,
            namespace=self.namespace,
            container=container_name,
            follow=True,
            _preload_content=False,
            _request_timeout=(LOG_CONNECT_TIMEOUT_SECONDS, None),
        )
        logger.debug(f"Opened log stream for {pod_name}/{container_name}")
        return PodLogStream(response)
