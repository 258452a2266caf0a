# Import models here so Alembic can discover them via metadata
from .base import Base  # noqa: F401
from .user import User  # noqa: F401
from .asset import Asset  # noqa: F401
from .valuation import AssetValuation  # noqa: F401
from .application import LoanApplication  # noqa: F401
from .debtor_record import DebtorRecord  # noqa: F401
from .loan import Loan  # noqa: F401
from .loan_term import LoanTerm  # noqa: F401
from .auction import Auction  # noqa: F401
from .bid import Bid  # noqa: F401
from .bid_payment import BidPayment  # noqa: F401
from .audit_log import AuditLog  # noqa: F401
