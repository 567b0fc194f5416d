"""Exception types for the adsync job orchestration subsystem."""

from typing import Optional


class AsyncJobsError(Exception):
    """Base exception for all job orchestration errors."""

    pass


class JobNotFoundError(AsyncJobsError):
    """Raised when a job is not found in a queue."""

    def __init__(self, job_id: str, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} not found"
        super().__init__(message)


class UnknownQueueError(AsyncJobsError):
    """Raised when a queue name is not one of the known queues."""

    def __init__(self, queue_name: str, message: str = None):
        self.queue_name = queue_name
        if message is None:
            message = f"Unknown queue {queue_name}"
        super().__init__(message)


class JobValidationError(AsyncJobsError):
    """Raised when a job payload fails a precondition. Never retried."""

    pass


class AuthenticationError(AsyncJobsError):
    """Raised when third-party credentials are missing, expired or invalid."""

    pass


class TenantContextError(AsyncJobsError):
    """Raised when a tenant-scoped operation has no resolvable tenant."""

    pass


class RemoteHttpError(AsyncJobsError):
    """Raised when an HTTP call to an external service fails."""

    def __init__(
        self,
        status_code: int,
        message: str,
        response_body: str = None,
        code: Optional[str] = None,
    ):
        self.status_code = status_code
        self.response_body = response_body
        self.code = code
        super().__init__(f"HTTP {status_code}: {message}")


class CustomerEmailConflictError(AsyncJobsError):
    """Raised by the customer service when an email is already taken."""

    def __init__(self, email: str, message: str = None):
        self.email = email
        if message is None:
            message = f"Customer with email {email} already exists"
        super().__init__(message)


class JobCancelledError(AsyncJobsError):
    """Raised at a processor checkpoint once its job has been cancelled."""

    def __init__(self, job_id: str, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} was cancelled"
        super().__init__(message)
