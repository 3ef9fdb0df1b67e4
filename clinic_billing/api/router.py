# clinic_billing/api/router.py
from fastapi import APIRouter

from clinic_billing.api import (
    routes_billing,
    # /billing/{kind} catches anything routes_billing does not, keep it last
    routes_billing_kinds,
)

api_router = APIRouter()

api_router.include_router(routes_billing.router)
api_router.include_router(routes_billing_kinds.router)
