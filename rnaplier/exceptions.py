"""
Error types for the rnaplier pipeline.

Every error that aborts a run carries the pipeline stage it came from and the
key of the offending record (composite identifier, symbol, or file path), so
the command line can report the failure without a traceback.
"""


class PipelineError(Exception):
    """Base class for errors that abort a pipeline run."""

    stage = None

    def __init__(self, message, key=None, stage=None):
        super().__init__(message)
        self.message = message
        self.key = key
        if stage is not None:
            self.stage = stage

    def describe(self):
        """One-line, user-facing description of the failure."""
        stage = self.stage or 'unknown'
        where = f" on '{self.key}'" if self.key is not None else ''
        return f"Stage '{stage}' failed{where}: {self.message}"


class InputDataError(PipelineError):
    """The input data is unusable. Fix the data and re-run."""


class MalformedInputError(InputDataError):
    """A record or file does not have the expected structure."""

    stage = 'parse'


class EmptyAggregationError(InputDataError):
    """A record has no sample values, so its mean is undefined."""

    stage = 'aggregate'


class InvariantViolationError(PipelineError):
    """An internal invariant was broken. This is a defect, not bad input."""

    stage = 'assemble'

    def describe(self):
        return (
            super().describe()
            + " (internal error: duplicate resolution produced a non-unique result)"
        )
