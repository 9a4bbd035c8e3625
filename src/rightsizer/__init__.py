"""kube-rightsizer - right-sizing recommendations for Kubernetes containers"""

__version__ = "0.1.0"
