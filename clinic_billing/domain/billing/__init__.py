"""Billing domain - charges, invoices and the payment gateway"""

from .router import router

__all__ = ["router"]
