"""Enumeration types for report services."""

from enum import Enum


class CommissionFailurePolicy(str, Enum):
    """What to do when a validator's commission cannot be fetched."""

    FAIL = "fail"
    ZERO = "zero"  # log, fee the validator at rate 0, report it as degraded
