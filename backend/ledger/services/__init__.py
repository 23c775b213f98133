# ledger/services/__init__.py
from .account_service import AccountService
from .balance_service import BalanceService
from .category_service import CategoryService
from .currency_service import CurrencyService
from .debt_service import DebtService
from .exchange_rate_service import ExchangeRateService
from .operation_service import OperationService
from .scheduled_operation_service import ScheduledOperationService
from .summary_service import SummaryService
from .tag_service import TagService
from .transfer_service import TransferService
from .workspace_context_service import WorkspaceContextService

__all__ = [
    "AccountService",
    "BalanceService",
    "CategoryService",
    "CurrencyService",
    "DebtService",
    "ExchangeRateService",
    "OperationService",
    "ScheduledOperationService",
    "SummaryService",
    "TagService",
    "TransferService",
    "WorkspaceContextService",
]
