"""Errors surfaced to callers of the direct-debit engine."""


class BatchNotFoundError(LookupError):
    """Unknown batch id, or a batch of the wrong direction."""


class BatchFileMissingError(LookupError):
    """The batch exists but has no stored file."""


class StaleAttemptError(RuntimeError):
    """An attempt changed status between read and guarded update."""
