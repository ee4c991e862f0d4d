"""Pipeline error taxonomy.

Every error carries a ``user_message``, the text sent to the client in an
``error`` event.  Internal detail stays in the exception args and the logs.

    AuthenticationRequired   no identity on the session
    UpstreamExhausted        every credential failed for this request
    SearchUnavailable        search call failed (absorbed, never surfaced)
    MalformedClientMessage   unparsable or unknown client frame
    ConversationUnavailable  no chat selected, or not the caller's
    InternalPipelineFailure  anything else
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for errors the streaming pipeline knows how to report."""

    user_message = "Something went wrong. Please try again later."

    def __init__(self, detail: str = "", *, user_message: str | None = None):
        super().__init__(detail or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class AuthenticationRequired(PipelineError):
    user_message = "Not signed in. Please log in again."


class UpstreamExhausted(PipelineError):
    """All credentials in the pool failed for one request."""

    user_message = "All upstream credentials failed. Please try again later."

    def __init__(self, failures: list[str] | None = None, *, user_message: str | None = None):
        self.failures = list(failures or [])
        detail = f"upstream exhausted after {len(self.failures)} attempt(s)"
        if self.failures:
            detail += f": {self.failures[-1]}"
        super().__init__(detail, user_message=user_message)


class SearchUnavailable(PipelineError):
    user_message = "Search is unavailable."


class MalformedClientMessage(PipelineError):
    user_message = "Could not process the message."


class InternalPipelineFailure(PipelineError):
    user_message = "The assistant ran into a problem. Please try again later!"


class ConversationUnavailable(PipelineError):
    """No conversation selected, or it does not belong to the caller."""

    user_message = "The chat does not exist or you do not have access to it."
