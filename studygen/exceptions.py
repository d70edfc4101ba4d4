"""
Exception types raised by the study generation pipeline and its ingress paths.
"""


class StudyGenerationError(Exception):
    """Base class for failures inside a generation run."""


class GenerationUnavailableError(StudyGenerationError):
    """The generation capability failed or returned no usable text."""


class StorageError(StudyGenerationError):
    """A blob store read or write failed."""


class GenerationCancelledError(StudyGenerationError):
    """The run was cancelled between stages."""


class TextExtractionError(StudyGenerationError):
    """An uploaded document yielded no text."""


class IngressValidationError(Exception):
    """
    A request was rejected before the pipeline started.

    Raised with no job or package side effects. ``status_code`` is the HTTP
    status the route layer responds with.
    """

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class MissingJobIdError(IngressValidationError):
    status_code = 400

    def __init__(self):
        super().__init__("Missing job identifier")


class JobNotFoundError(IngressValidationError):
    status_code = 404

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__("Job not found")


class JobMetadataMissingError(IngressValidationError):
    status_code = 422

    def __init__(self):
        super().__init__("Job metadata missing")


class JobOwnershipError(IngressValidationError):
    status_code = 403

    def __init__(self):
        super().__init__("Forbidden")


class DocumentMismatchError(IngressValidationError):
    status_code = 409

    def __init__(self):
        super().__init__("Document mismatch")


class EmptyUploadError(IngressValidationError):
    status_code = 400

    def __init__(self):
        super().__init__("Uploaded file is empty")
