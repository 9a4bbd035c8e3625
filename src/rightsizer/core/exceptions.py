"""Custom exceptions for kube-rightsizer"""

class RightsizerError(Exception):
    """Base exception for all rightsizer errors"""
    pass


class ConfigurationError(RightsizerError):
    """Raised when configuration is invalid"""
    pass


class ValidationError(RightsizerError):
    """Raised when input validation fails"""
    pass


class SourceUnavailableError(RightsizerError):
    """Raised when the workload inventory or usage backend cannot be reached"""
    pass


class StoreError(RightsizerError):
    """Raised when a read or write against the history store fails"""
    pass


class NoDataError(RightsizerError):
    """Raised when a container has no usage samples in the analysis window"""

    def __init__(self, container_id: int, window_days: float):
        self.container_id = container_id
        self.window_days = window_days
        super().__init__(
            f"No usage samples for container {container_id} in the last {window_days:g} days"
        )


class NotFoundError(RightsizerError):
    """Raised when a requested record does not exist"""
    pass
