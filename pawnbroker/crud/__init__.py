from pawnbroker.crud.base import BaseCRUD, Page, paginate  # noqa: F401
from pawnbroker.models import (
    Asset,
    AssetValuation,
    Auction,
    AuditLog,
    Bid,
    BidPayment,
    DebtorRecord,
    Loan,
    LoanApplication,
    LoanTerm,
    User,
)

users = BaseCRUD(User)
assets = BaseCRUD(Asset)
valuations = BaseCRUD(AssetValuation, label="Valuation")
applications = BaseCRUD(LoanApplication, label="Application")
debtor_records = BaseCRUD(DebtorRecord, label="Debtor record")
loans = BaseCRUD(Loan)
loan_terms = BaseCRUD(LoanTerm, label="Loan term")
auctions = BaseCRUD(Auction)
bids = BaseCRUD(Bid)
bid_payments = BaseCRUD(BidPayment, label="Bid payment")
audit_logs = BaseCRUD(AuditLog, label="Audit log")
