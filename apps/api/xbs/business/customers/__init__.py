from xbs.business.customers.api import router
from xbs.business.customers.models import BillingCustomer
from xbs.business.customers.schemas import (
    CustomerCreate,
    CustomerMetadataMerge,
    CustomerPage,
    CustomerRead,
    CustomerUpdate,
)
from xbs.business.customers.service import CustomerService, customer_service

__all__ = [
    "router",
    "BillingCustomer",
    "CustomerCreate",
    "CustomerMetadataMerge",
    "CustomerPage",
    "CustomerRead",
    "CustomerUpdate",
    "CustomerService",
    "customer_service",
]
