from fastapi import APIRouter

from pawnbroker.api.v1.endpoints import (
    applications,
    assets,
    auctions,
    audit_logs,
    bid_payments,
    bids,
    loan_terms,
    loans,
    users,
    valuations,
)

router = APIRouter()
router.include_router(users.router)
router.include_router(assets.router)
router.include_router(valuations.router)
router.include_router(applications.router)
router.include_router(loans.router)
router.include_router(loan_terms.router)
router.include_router(auctions.router)
router.include_router(bids.router)
router.include_router(bid_payments.router)
router.include_router(audit_logs.router)
