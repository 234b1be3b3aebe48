"""
Job-level errors shared by the analytics batch jobs.
"""


class PipelineError(Exception):
    """Raised when pipeline execution fails."""
    pass
