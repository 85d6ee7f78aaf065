"""
Typed stage outcomes.

Every stage handler ends in exactly one of these variants; the executor
turns them into StageLog entries and the runner decides from them whether
to continue.
"""

from dataclasses import dataclass
from typing import Optional, Union

from app.utils.helpers import utc_now
from domains.inbox.records import StageError, StageLog


@dataclass(frozen=True)
class Completed:
    note: Optional[str] = None
    proceed = True

    def to_log(self) -> StageLog:
        return StageLog(timestamp=utc_now(), completed=True, message=self.note)


@dataclass(frozen=True)
class Skipped:
    reason: Optional[str] = None
    proceed = True

    def to_log(self) -> StageLog:
        return StageLog(timestamp=utc_now(), skipped=True, message=self.reason)


@dataclass(frozen=True)
class Bypassed:
    reason: str
    proceed = False

    def to_log(self) -> StageLog:
        return StageLog(
            timestamp=utc_now(),
            error=StageError(message=self.reason, bypassed=True),
        )


@dataclass(frozen=True)
class Failed:
    message: str
    proceed = False

    def to_log(self) -> StageLog:
        return StageLog(timestamp=utc_now(), error=StageError(message=self.message))


StageOutcome = Union[Completed, Skipped, Bypassed, Failed]
