from .customers import Customer
from .catalog import FuelType, Vehicle
from .sales import Sale
from .invoices import Invoice, InvoiceItem
from .payments import Payment
from .shifts import Shift
from .documents import DocumentSequence

__all__ = [
    'Customer',
    'FuelType', 'Vehicle',
    'Sale',
    'Invoice', 'InvoiceItem',
    'Payment',
    'Shift',
    'DocumentSequence',
]
