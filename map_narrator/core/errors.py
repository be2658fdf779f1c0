# map_narrator/core/errors.py

from typing import List, Optional, Sequence


class NarratorError(Exception):
    """Base class for every error raised by the narration pipeline."""


# ---------------- Geodata ----------------

class OverpassError(NarratorError):
    pass


class OverpassOverloadedError(OverpassError):
    """Mirror answered 429/503/504; the next mirror may still work."""

    def __init__(self, status_code: int, endpoint: str) -> None:
        super().__init__(f"Overpass HTTP {status_code} (overloaded) @ {endpoint}")
        self.status_code = status_code
        self.endpoint = endpoint


class OverpassTimeoutError(OverpassError):
    pass


class RequestCancelled(NarratorError):
    """The caller gave up; not an upstream failure."""


# ---------------- Narration model ----------------

class LLMError(NarratorError):
    pass


class LLMConfigError(LLMError):
    pass


class LLMUpstreamError(LLMError):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body[:1200]


class NarrationValidationError(NarratorError):
    """No attempt produced a structurally and semantically valid narration."""

    def __init__(self, issues: Sequence[str], attempts: int) -> None:
        self.issues: List[str] = list(issues)
        self.attempts = attempts
        summary = "; ".join(self.issues[-5:]) or "no details"
        super().__init__(
            f"Narration failed validation after {attempts} attempt(s): {summary}"
        )


class NarrationTimeoutError(NarratorError):
    pass
