"""
Failure taxonomy for the transcoding pipeline.

Every TranscodeError carries a short ``public_message`` that is safe to
persist on a Job row; ``str(exc)`` holds the operator-facing detail and
only ever goes to the log.
"""


class TranscodeError(Exception):
    public_message = "Processing failed"

    def __init__(self, detail: str = "", *, public_message: str | None = None):
        super().__init__(detail or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class RuntimeUnavailable(TranscodeError):
    """The codec runtime could not be initialised (fatal for the process)."""
    public_message = "Transcoding runtime unavailable"


class EncodeFailure(TranscodeError):
    """Bad or unsupported input, or the encoder crashed."""
    public_message = "Encoding failed; the source file may be corrupt or unsupported"


class IOFailure(TranscodeError):
    """Scratch or object-storage I/O failed."""
    public_message = "Storage error while processing the file"


class ManifestParseFailure(TranscodeError):
    public_message = "Generated playlist could not be parsed"


class LedgerConflict(TranscodeError):
    """A conditional ledger update matched no row: another actor owns the job."""
    public_message = "Job is not in the expected state"


class JobNotPending(LedgerConflict):
    """The job could not be claimed: it is missing or already past pending."""
    public_message = "Job is not pending"


class InvalidJobId(ValueError):
    pass
