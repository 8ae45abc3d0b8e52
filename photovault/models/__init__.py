from photovault.models.account import Account
from photovault.models.ledger_entry import LedgerEntry
from photovault.models.payment_event import PaymentEvent
from photovault.models.photo_set import PhotoSet
from photovault.models.reservation import Reservation
from photovault.models.theme import Theme
from photovault.models.usage_record import UsageRecord

__all__ = [
    "Account",
    "LedgerEntry",
    "PaymentEvent",
    "PhotoSet",
    "Reservation",
    "Theme",
    "UsageRecord",
]
