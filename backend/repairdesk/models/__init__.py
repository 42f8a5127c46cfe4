from .auth import User, SessionToken
from .inventory import InventoryItem, StockMovement
from .sales import Sale, SaleLine
from .tickets import ServiceTicket, TicketPart
from .documents import DocumentSequence

__all__ = [
    'User', 'SessionToken',
    'InventoryItem', 'StockMovement',
    'Sale', 'SaleLine',
    'ServiceTicket', 'TicketPart',
    'DocumentSequence',
]
