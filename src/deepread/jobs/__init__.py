"""deepread jobs: map-reduce deep analysis."""

from deepread.jobs.engine import DeepAnalysisService, TokenEstimate
from deepread.jobs.partition import SourceTokenInfo, partition_sources
from deepread.jobs.polling import PollTimeoutError, poll_timeout_minutes, wait_for_job
from deepread.jobs.runner import JobRunner

__all__ = [
    "DeepAnalysisService",
    "JobRunner",
    "PollTimeoutError",
    "SourceTokenInfo",
    "TokenEstimate",
    "partition_sources",
    "poll_timeout_minutes",
    "wait_for_job",
]
