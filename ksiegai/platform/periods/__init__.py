from ksiegai.platform.periods.schemas import AccountingPeriodRead, AutoLockRequest, AutoLockResult, PeriodCheck, PeriodDecision

__all__ = [
    "AccountingPeriodRead",
    "AutoLockRequest",
    "AutoLockResult",
    "PeriodCheck",
    "PeriodDecision",
]
