from .api import ParseMyBillClient

__all__ = ["ParseMyBillClient"]
