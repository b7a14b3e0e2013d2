"""
Graded outcome values exchanged with the grading services.
"""

from dataclasses import dataclass, fields
from typing import Optional, Union

from ltilink.core.lti_config import OutcomeType


OutcomeValue = Union[str, int, float, None]


@dataclass
class Outcome:
    """A grade value together with its type and grading metadata."""
    value: OutcomeValue = None
    type: OutcomeType = OutcomeType.DECIMAL
    points_possible: float = 1
    comment: Optional[str] = None
    language: str = "en-US"
    status: Optional[str] = None
    date: Optional[str] = None
    data_source: Optional[str] = None
    activity_progress: Optional[str] = None
    grading_progress: Optional[str] = None

    def assign(self, other: "Outcome") -> None:
        """Copy every field of another outcome onto this one."""
        for f in fields(self):
            setattr(self, f.name, getattr(other, f.name))

    def reset_for_delete(self) -> None:
        """Clear the value and mark the grade as not ready."""
        self.value = None
        self.activity_progress = "Initialized"
        self.grading_progress = "NotReady"

    def scaled_value(self) -> OutcomeValue:
        """Value scaled into [0, 1] by the points possible, when numeric."""
        if self.points_possible != 1 and self.points_possible > 0:
            try:
                return float(self.value) / self.points_possible
            except (TypeError, ValueError):
                return self.value
        return self.value
