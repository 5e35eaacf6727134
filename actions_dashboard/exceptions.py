"""Error types shared by the GitHub client, the dashboard service and the API.

Kept free of imports from the rest of the package so any module can catch
a specific class (e.g. unauthorized) without creating import cycles.
"""

from __future__ import annotations


class GitHubAPIError(Exception):
    def __init__(self, message: str, *, status_code: int = 0, endpoint: str = ""):
        super().__init__(message)
        self.status_code = int(status_code)
        self.endpoint = str(endpoint or "")


class GitHubUnauthorizedError(GitHubAPIError):
    """Credentials were rejected (expired or revoked token). Never retried."""


class GitHubNotFoundError(GitHubAPIError):
    pass


class GitHubRequestError(GitHubAPIError):
    """Any other upstream failure: rate limit, 5xx, network."""


class FetchCancelledError(Exception):
    """The caller abandoned an in-flight paginated fetch."""


class WorkflowNotFoundError(LookupError):
    def __init__(self, workflow_id: int):
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class OptimizationResponseError(ValueError):
    """The advisor returned something that is not a valid optimization report."""


class AdvisorRequestError(Exception):
    def __init__(self, message: str, *, status_code: int = 0):
        super().__init__(message)
        self.status_code = int(status_code)
