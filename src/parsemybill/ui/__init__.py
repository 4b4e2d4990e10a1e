"""View logic behind the invoice list, detail and edit screens."""

from .qr import qr_value, render_qr_svg
from .views import InvoiceViews, filter_records, format_currency, format_date

__all__ = [
    "InvoiceViews",
    "filter_records",
    "format_currency",
    "format_date",
    "qr_value",
    "render_qr_svg",
]
