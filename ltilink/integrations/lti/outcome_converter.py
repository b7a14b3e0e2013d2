"""
Outcome value type conversion between grading scales.
"""

import logging
import math
import re
from typing import Iterable, List, Optional, Union

from ltilink.core.lti_config import OutcomeType
from ltilink.models.outcome import Outcome, OutcomeValue


logger = logging.getLogger(__name__)

NUMERIC_PATTERN = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$", re.ASCII)


def supported_types_from_setting(value: Optional[str]) -> List[str]:
    """Parse the comma-separated list of result value types a platform accepts."""
    if not value:
        value = OutcomeType.DECIMAL.value
    return [t for t in value.replace(' ', '').lower().split(',') if t]


def _to_number(value: OutcomeValue) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        if not NUMERIC_PATTERN.match(value):
            return None
        number = float(value)
    else:
        return None
    return number if math.isfinite(number) else None


def _percentage(value: OutcomeValue) -> Optional[float]:
    """Numeric percentage in [0, 100] with any trailing ``%`` removed."""
    if isinstance(value, str) and value.endswith('%'):
        value = value[:-1]
    number = _to_number(value)
    if number is None or number < 0 or number > 100:
        return None
    return number


def check_value_type(
    outcome: Outcome,
    supported_types: Iterable[Union[str, OutcomeType]]
) -> bool:
    """
    Make sure an outcome is expressed in one of the supported types.

    The outcome's type and value are changed only when a conversion succeeds.

    Args:
        outcome: Outcome to check and possibly convert
        supported_types: Types accepted by the target service

    Returns:
        True if the outcome type (after any conversion) is supported
    """
    supported = {
        t.value if isinstance(t, OutcomeType) else str(t).lower()
        for t in supported_types
    }
    outcome_type = outcome.type
    value = outcome.value

    if outcome_type.value in supported or value is None or value == '':
        return True

    if outcome_type == OutcomeType.PERCENTAGE:
        number = _percentage(value)
        if number is None:
            return False
        outcome.value = number / 100
        outcome.type = OutcomeType.DECIMAL
        return True

    if outcome_type == OutcomeType.RATIO:
        parts = str(value).split('/', 1)
        if len(parts) != 2:
            return False
        numerator = _to_number(parts[0])
        denominator = _to_number(parts[1])
        if numerator is None or denominator is None or numerator < 0 or denominator <= 0:
            return False
        outcome.value = numerator / denominator
        outcome.type = OutcomeType.DECIMAL
        return True

    if outcome_type == OutcomeType.LETTER_AF:
        if OutcomeType.LETTER_AF_PLUS.value in supported:
            outcome.type = OutcomeType.LETTER_AF_PLUS
            return True
        if OutcomeType.TEXT.value in supported:
            outcome.type = OutcomeType.TEXT
            return True
        return False

    if outcome_type == OutcomeType.LETTER_AF_PLUS:
        if OutcomeType.LETTER_AF.value in supported and len(str(value)) == 1:
            outcome.type = OutcomeType.LETTER_AF
            return True
        if OutcomeType.TEXT.value in supported:
            outcome.type = OutcomeType.TEXT
            return True
        return False

    if outcome_type == OutcomeType.TEXT:
        number = _to_number(value)
        if number is not None and 0 <= number <= 1:
            outcome.type = OutcomeType.DECIMAL
            return True
        if isinstance(value, str) and value.endswith('%'):
            number = _percentage(value)
            if number is None:
                return False
            if OutcomeType.PERCENTAGE.value in supported:
                outcome.type = OutcomeType.PERCENTAGE
            else:
                outcome.value = number / 100
                outcome.type = OutcomeType.DECIMAL
            return True
        return False

    logger.debug(f"No conversion available from {outcome_type.value} to {sorted(supported)}")
    return False
