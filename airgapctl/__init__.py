"""airgapctl - offline Kubernetes cluster installer."""

__version__ = "0.1.0"
