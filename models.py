#models.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

# Persisted as last_status_sent once the source accepted the fulfilment update
FULFILLED_MARKER = "CompletedByPOS"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value) -> "OrderStatus":
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class OrderLineItem:
    item_id: str
    integration_id: str     # POS catalog id as sent by the source (usually an int)
    quantity: int
    unit_price: str         # decimal string, parsed by the mapper
    item_notes: Optional[str] = None


@dataclass(frozen=True)
class ExternalOrder:
    order_id: str
    store_id: str
    total_amount: str
    status: OrderStatus
    date_created: datetime
    order_notes: Optional[str] = None
    location_number: Optional[str] = None
    service_charge_amount: Optional[str] = None
    items: Tuple[OrderLineItem, ...] = field(default_factory=tuple)


@dataclass
class ProcessingState:
    external_id: str
    hashed_external_id: str
    pos_order_id: Optional[str] = None
    last_status_sent: Optional[str] = None
    order_pulled_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class PosStatusSnapshot:
    pos_order_id: int
    hashed_external_id: str
    pos_status: Optional[int]
    is_make: int
    order_end_time: Optional[datetime] = None

    @property
    def fulfilled(self) -> bool:
        return (self.pos_status or 0) >= 1 or self.is_make == 1


@dataclass
class StatusUpdateResult:
    success: bool
    status_code: Optional[int] = None
    error_message: str = ""
