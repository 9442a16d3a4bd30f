"""
Billing Ledger Consistency Engine
"""
from .errors import (
    LedgerEngineError,
    ValidationError,
    NotFound,
    StoreError,
    DuplicateLedgerEntryError,
    InvariantViolation
)

from .financial_precision import (
    to_decimal,
    round_financial,
    to_float,
    validate_positive,
    outstanding_balance,
    amounts_match
)

from .series_resolution import (
    Series,
    SeriesKey,
    SeriesResolver,
    strip_installment_suffix,
    format_installment_description
)

from .payment_status_machine import (
    PaymentStatusMachine,
    TransitionResult,
    validate_transition
)

from .installment_sequencer import (
    InstallmentSequencer,
    SequenceResult
)

from .ledger_sync import (
    LedgerSynchronizer,
    LedgerSyncResult
)

from .schedule_shifter import (
    ScheduleShifter,
    ShiftPreview,
    ShiftResult,
    days_between
)

from .duplicator import Duplicator

from .plan_lifecycle import (
    PlanLifecycle,
    PlanOperationResult,
    installment_due_date
)

from .ledger_integrity_job import LedgerIntegrityJob

from .engine import BillingLedgerEngine

__all__ = [
    # Errors
    'LedgerEngineError',
    'ValidationError',
    'NotFound',
    'StoreError',
    'DuplicateLedgerEntryError',
    'InvariantViolation',
    # Financial Precision
    'to_decimal',
    'round_financial',
    'to_float',
    'validate_positive',
    'outstanding_balance',
    'amounts_match',
    # Series Resolution
    'Series',
    'SeriesKey',
    'SeriesResolver',
    'strip_installment_suffix',
    'format_installment_description',
    # Components
    'PaymentStatusMachine',
    'TransitionResult',
    'validate_transition',
    'InstallmentSequencer',
    'SequenceResult',
    'LedgerSynchronizer',
    'LedgerSyncResult',
    'ScheduleShifter',
    'ShiftPreview',
    'ShiftResult',
    'days_between',
    'Duplicator',
    'PlanLifecycle',
    'PlanOperationResult',
    'installment_due_date',
    'LedgerIntegrityJob',
    'BillingLedgerEngine',
]
