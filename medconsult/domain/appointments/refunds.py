"""
Fee split and cancellation refund policy

Amounts are derived from the commission and earnings recorded on the
appointment at booking time, never recomputed from the current percentages.
"""

from dataclasses import dataclass

from ...config import (
    PLATFORM_COMMISSION_PERCENT,
    USER_CANCEL_ADMIN_COMMISSION,
    USER_CANCEL_DOCTOR_COMMISSION,
    USER_CANCEL_REFUND_PERCENT,
)
from ...constants import Role


@dataclass(frozen=True)
class FeeSplit:
    fee: float
    admin_commission: float
    doctor_earnings: float


@dataclass(frozen=True)
class RefundPlan:
    patient_refund: float
    doctor_debit: float
    platform_debit: float
    full_refund: bool


def split_fee(fee: float) -> FeeSplit:
    """Platform keeps its commission percentage; the doctor earns the rest"""
    commission = round(fee * PLATFORM_COMMISSION_PERCENT / 100, 2)
    return FeeSplit(fee=fee, admin_commission=commission, doctor_earnings=round(fee - commission, 2))


def plan_refund(fee: float, admin_commission: float, doctor_earnings: float, cancelled_by: str) -> RefundPlan:
    """
    Patient cancel: the patient gets USER_CANCEL_REFUND_PERCENT of the fee, the
    doctor keeps USER_CANCEL_DOCTOR_COMMISSION% and the platform keeps
    USER_CANCEL_ADMIN_COMMISSION%; each party is debited the difference from
    what it was credited.

    Doctor or admin cancel: the full fee goes back and both credits are reversed.
    """
    fee = fee or 0
    admin_commission = admin_commission or 0
    doctor_earnings = doctor_earnings or 0

    if cancelled_by == Role.PATIENT.value:
        doctor_keeps = fee * USER_CANCEL_DOCTOR_COMMISSION / 100
        platform_keeps = fee * USER_CANCEL_ADMIN_COMMISSION / 100
        return RefundPlan(
            patient_refund=round(fee * USER_CANCEL_REFUND_PERCENT / 100, 2),
            doctor_debit=round(max(doctor_earnings - doctor_keeps, 0), 2),
            platform_debit=round(max(admin_commission - platform_keeps, 0), 2),
            full_refund=False,
        )

    return RefundPlan(
        patient_refund=round(fee, 2),
        doctor_debit=round(doctor_earnings, 2),
        platform_debit=round(admin_commission, 2),
        full_refund=True,
    )
