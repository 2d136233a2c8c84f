"""Work-time calculation."""

from payroll_settlement.calculators.work_time import (
    Clock,
    calculate_amount,
    calculate_work_minutes,
    derive_application_type,
)

__all__ = [
    "Clock",
    "calculate_amount",
    "calculate_work_minutes",
    "derive_application_type",
]
