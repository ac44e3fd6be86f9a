"""
Append-only event stream of the launchpad.

Events are records for external indexing, not part of the queryable pool
state. Every emitted event is also written to the log.
"""
from typing import Iterator, List, Literal, Type, TypeVar, Union

from pydantic import BaseModel

from mcp.server.fastmcp.utilities.logging import get_logger

logger = get_logger(__name__)


class PoolCreated(BaseModel):
    kind: Literal["PoolCreated"] = "PoolCreated"
    pool: str
    supply_token: str
    purchase_token: str


class TransferLoss(BaseModel):
    kind: Literal["TransferLoss"] = "TransferLoss"
    token: str
    sender: str
    recipient: str
    expected_amount: int
    actual_amount: int


Event = Union[PoolCreated, TransferLoss]
E = TypeVar("E", PoolCreated, TransferLoss)


class EventLog:
    """In-memory append-only list of emitted events."""

    def __init__(self) -> None:
        self._events: List[Event] = []

    def emit(self, event: Event) -> None:
        self._events.append(event)
        if isinstance(event, TransferLoss):
            logger.warning(
                f"Transfer loss on {event.token} from {event.sender} to {event.recipient}: "
                f"expected={event.expected_amount}, actual={event.actual_amount}"
            )
        else:
            logger.info(f"Event emitted: {event.model_dump_json()}")

    def of_type(self, event_type: Type[E]) -> List[E]:
        return [e for e in self._events if isinstance(e, event_type)]

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
