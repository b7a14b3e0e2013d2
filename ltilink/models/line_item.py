"""
Gradebook line items and assessment control actions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class LineItem:
    """A gradable column associated with a resource link."""
    label: str
    points_possible: float = 1
    resource_id: Optional[str] = None
    tag: Optional[str] = None
    start_date_time: Optional[str] = None
    end_date_time: Optional[str] = None
    lti_resource_link_id: Optional[str] = None
    endpoint: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'label': self.label,
            'scoreMaximum': self.points_possible,
        }
        optional = {
            'resourceId': self.resource_id,
            'tag': self.tag,
            'startDateTime': self.start_date_time,
            'endDateTime': self.end_date_time,
            'resourceLinkId': self.lti_resource_link_id,
        }
        data.update({k: v for k, v in optional.items() if v})
        return data

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "LineItem":
        return cls(
            label=data.get('label', ''),
            points_possible=data.get('scoreMaximum', 1),
            resource_id=data.get('resourceId'),
            tag=data.get('tag'),
            start_date_time=data.get('startDateTime'),
            end_date_time=data.get('endDateTime'),
            lti_resource_link_id=data.get('resourceLinkId'),
            endpoint=data.get('id'),
        )


@dataclass
class AssessmentControlAction:
    """Proctoring action reported to the platform's assessment control service."""
    action: str
    date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: float = 0.0
    extra_time: Optional[int] = None
    reason: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'action': self.action,
            'incident_time': self.date.isoformat(),
            'incident_severity': self.severity,
        }
        if self.extra_time is not None:
            data['extra_time'] = self.extra_time
        if self.reason:
            data['reason_msg'] = self.reason
        return data
