"""Fatal pipeline conditions. Each carries the alert an operator should receive."""

from typing import List, Optional

from shared.schemas.messages import AlertMessage


class PipelineAbort(Exception):
    """A condition that stops the run and needs a human."""

    title = "Pipeline aborted"
    action_items: List[str] = ["Check the pipeline logs for this run"]

    def __init__(self, reason: str, week_id: Optional[str] = None, details: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.week_id = week_id
        self.details = details

    @property
    def alert(self) -> AlertMessage:
        return AlertMessage(
            title=self.title,
            reason=self.reason,
            week_id=self.week_id,
            details=self.details,
            action_items=list(self.action_items),
        )


class InputMissingError(PipelineAbort):
    title = "No raw data for this week"
    action_items = [
        "Check that the ingest job ran this week",
        "Run the ingest job manually, then re-run the curator",
    ]


class EmptyBatchError(PipelineAbort):
    title = "Raw batch is empty"
    action_items = [
        "Check the RSS sources for outages or format changes",
        "Re-run ingest, then re-run the curator",
    ]


class InsufficientYieldError(PipelineAbort):
    title = "Not enough positive articles"
    action_items = [
        "Review the scored batch and the discard reasons in the run trace",
        "Add sources or lower the positivity threshold for this edition",
        "Assemble the edition manually if needed",
    ]


class QuotaExhaustedError(PipelineAbort):
    title = "Scoring quota exhausted"
    action_items = [
        "Check the OpenAI billing and usage limits",
        "Re-run the curator once the quota resets; cached scores are kept",
    ]
