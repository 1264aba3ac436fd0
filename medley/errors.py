from __future__ import annotations


class AppError(Exception):
    """
    Error surfaced over HTTP.

    status_code is sent to the client; is_operational=False marks programmer or
    infrastructure errors whose message must not leak in production.
    """

    def __init__(self, message: str, status_code: int = 500, is_operational: bool = True) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_operational = is_operational


class BadRequestError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=400)


class NotFoundError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class JobNotFoundError(NotFoundError):
    def __init__(self, job_id: str) -> None:
        super().__init__("Job not found")
        self.job_id = job_id


class ArtifactNotFoundError(NotFoundError):
    def __init__(self, file_id: str) -> None:
        super().__init__(f"File not found: {file_id}")
        self.file_id = file_id


class ConflictError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=409)


class JobNotCancellableError(ConflictError):
    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(f"Cannot cancel job in status '{status}'")
        self.job_id = job_id
        self.status = status


class ServiceBusyError(AppError):
    def __init__(self, message: str = "Too many generation jobs in progress, please try again later") -> None:
        super().__init__(message, status_code=503)


# -----------------------------------------------------------------------------
# Pipeline failures (caught by the orchestrator, stored on the job)
# -----------------------------------------------------------------------------

class PipelineError(RuntimeError):
    pass


class NoAssetsFoundError(PipelineError):
    def __init__(self) -> None:
        super().__init__("no assets found for requested songs")


class AssetFetchError(PipelineError):
    def __init__(self, ref: str, reason: str) -> None:
        super().__init__(f"failed to fetch asset {ref}: {reason}")
        self.ref = ref
        self.reason = reason


class GenerationError(PipelineError):
    """kind: timeout | unavailable | too_large | busy | remote | invalid_response"""

    def __init__(self, message: str, kind: str = "remote", status_code: int | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class OutputStoreError(PipelineError):
    pass
