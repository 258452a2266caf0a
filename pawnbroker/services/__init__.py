"""Service wiring.

``build_services`` assembles one object graph per application; the API keeps
it on ``app.state.services`` and tests build their own with fakes.
"""

from __future__ import annotations

from dataclasses import dataclass

from pawnbroker.clock import Clock, utcnow
from pawnbroker.gateways.base import PaymentGateway
from pawnbroker.locks import KeyedLocks, locks as default_locks
from pawnbroker.services.applications import ApplicationService
from pawnbroker.services.assets import AssetService
from pawnbroker.services.auctions import AuctionService
from pawnbroker.services.audit import AuditJournal
from pawnbroker.services.bid_payments import BidPaymentService
from pawnbroker.services.bids import DisputeService
from pawnbroker.services.debtors import DatabaseDebtorLookup, DebtorLookup
from pawnbroker.services.loan_terms import LoanTermService
from pawnbroker.services.loans import LoanService
from pawnbroker.services.notifications import Notifier
from pawnbroker.services.users import UserService
from pawnbroker.services.valuations import ValuationService


@dataclass
class Services:
    audit: AuditJournal
    users: UserService
    assets: AssetService
    valuations: ValuationService
    applications: ApplicationService
    loans: LoanService
    loan_terms: LoanTermService
    auctions: AuctionService
    bid_payments: BidPaymentService
    bids: DisputeService


def build_services(
    *,
    gateway: PaymentGateway | None = None,
    notifier: Notifier | None = None,
    debtor_lookup: DebtorLookup | None = None,
    clock: Clock = utcnow,
    locks: KeyedLocks = default_locks,
) -> Services:
    audit = AuditJournal()
    payments = BidPaymentService(audit=audit, gateway=gateway, notifier=notifier, clock=clock, locks=locks)
    return Services(
        audit=audit,
        users=UserService(audit=audit, notifier=notifier, clock=clock),
        assets=AssetService(audit=audit, clock=clock),
        valuations=ValuationService(audit=audit, clock=clock),
        applications=ApplicationService(
            audit=audit, debtor_lookup=debtor_lookup or DatabaseDebtorLookup(), notifier=notifier, clock=clock
        ),
        loans=LoanService(audit=audit, notifier=notifier, clock=clock, locks=locks),
        loan_terms=LoanTermService(audit=audit, clock=clock, locks=locks),
        auctions=AuctionService(audit=audit, notifier=notifier, clock=clock, locks=locks),
        bid_payments=payments,
        bids=DisputeService(audit=audit, payments=payments, clock=clock, locks=locks),
    )
