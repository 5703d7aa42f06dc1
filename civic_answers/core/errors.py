"""Error taxonomy for the answering pipeline."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for pipeline failures."""


class ProviderUnavailable(PipelineError):
    """An external provider timed out, errored, or returned a malformed payload.

    Always recovered locally (fallback embedding, canned answer, untranslated
    passthrough); never surfaced to the caller.
    """

    def __init__(self, provider: str, detail: str):
        super().__init__(f"{provider}: {detail}")
        self.provider = provider
        self.detail = detail


class PipelineTimeout(PipelineError):
    """The request deadline fired (or was cancelled) before a stage could start."""

    def __init__(self, stage: str):
        super().__init__(f"deadline exceeded before stage '{stage}'")
        self.stage = stage


class CorpusUnavailable(PipelineError):
    """The content corpus could not be read; the request continues with no matches."""
