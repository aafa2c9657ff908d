class KubedigError(Exception):
    """Base class for errors that end the program with a readable message."""


class ConfigurationError(KubedigError):
    """Invalid settings, pod query or kubeconfig."""


class ClusterError(KubedigError):
    """The Kubernetes API could not be reached or refused a request."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status
