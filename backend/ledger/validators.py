"""
Input validation for operation writes.

``clean_operation_data`` turns raw caller input (API payloads, bot
commands, scheduler templates) into typed values and workspace-scoped
model instances, collecting every field error into one Django
``ValidationError`` keyed by field.
"""

import logging

from django.core.exceptions import ValidationError
from django.utils import timezone

from .models import Account, Category, Debt, Operation, Tags
from .utils.currency_utils import normalize_currency, parse_money, parse_rate
from .utils.date_utils import parse_date

logger = logging.getLogger(__name__)

OPERATION_TYPES = [choice[0] for choice in Operation.OPERATION_TYPES]
MAX_TAG_LENGTH = Tags._meta.get_field("name").max_length

# Category type accepted by each operation type
CATEGORY_TYPE_FOR_OPERATION = {
    "income": "income",
    "expense": "expense",
    "salary": "expense",
}

# Every key an operation write may carry
OPERATION_FIELDS = frozenset(
    {
        "type",
        "amount",
        "currency",
        "operation_date",
        "exchange_rate",
        "account",
        "category",
        "tags",
        "debt",
        "debt_applied_amount",
        "description",
        "from_account",
        "to_account",
        "to_currency",
        "transfer_rate",
    }
)


def _is_blank(value):
    return value is None or value == ""


def _workspace_object(model, value, workspace, field, errors):
    """Fetch ``model`` by id (or instance) inside ``workspace``; records an error when missing."""
    if _is_blank(value):
        return None
    pk = value.pk if isinstance(value, model) else value
    try:
        return model.objects.get(pk=pk, workspace=workspace)
    except (model.DoesNotExist, ValueError, TypeError):
        errors[field] = [f"{model.__name__} not found in this workspace"]
        return None


def _positive_rate(value, field, errors):
    if _is_blank(value):
        return None
    rate, error = parse_rate(value)
    if error:
        errors[field] = [error]
    return rate


def _clean_tags(value, errors):
    if value is None:
        return None
    if isinstance(value, str) or not isinstance(value, (list, tuple, set)):
        errors["tags"] = ["Tags must be a list of names"]
        return None
    names = [str(name).strip() for name in value if str(name).strip()]
    too_long = [name for name in names if len(name) > MAX_TAG_LENGTH]
    if too_long:
        errors["tags"] = [f"Tag name cannot exceed {MAX_TAG_LENGTH} characters"]
        return None
    return names


def clean_operation_data(data: dict, workspace) -> dict:
    """
    Validate and normalize one operation write.

    Args:
        data: Raw fields; related objects may be ids or instances.
        workspace: Workspace every referenced object must belong to.

    Returns:
        dict: ``type``, ``amount``, ``currency``, ``operation_date``,
        ``exchange_rate``, ``description``, ``tags`` and, per type, either
        ``account``/``category``/``debt``/``debt_applied_amount`` or
        ``from_account``/``to_account``/``to_currency``/``transfer_rate``.

    Raises:
        ValidationError: dict of field -> messages
    """
    errors = {}
    cleaned = {}

    unknown = set(data) - OPERATION_FIELDS
    for field in sorted(unknown):
        errors[field] = ["Unknown field"]

    op_type = data.get("type")
    if op_type not in OPERATION_TYPES:
        errors["type"] = [f"Type must be one of: {', '.join(OPERATION_TYPES)}"]
    cleaned["type"] = op_type

    amount, amount_error = parse_money(data.get("amount"))
    if amount_error:
        errors["amount"] = [amount_error]
    cleaned["amount"] = amount

    currency = normalize_currency(
        data.get("currency") if not _is_blank(data.get("currency")) else workspace.base_currency
    )
    if currency is None:
        errors["currency"] = ["Currency code must be 3 letters"]
    cleaned["currency"] = currency

    raw_date = data.get("operation_date")
    operation_date = timezone.localdate() if _is_blank(raw_date) else parse_date(raw_date)
    if operation_date is None:
        errors["operation_date"] = ["Invalid date"]
    cleaned["operation_date"] = operation_date

    cleaned["exchange_rate"] = _positive_rate(data.get("exchange_rate"), "exchange_rate", errors)
    cleaned["description"] = (data.get("description") or "").strip()
    cleaned["tags"] = _clean_tags(data.get("tags"), errors)

    if op_type == "transfer":
        for field in ("category", "debt", "debt_applied_amount"):
            if not _is_blank(data.get(field)):
                errors[field] = ["Transfer cannot carry a category or debt"]

        from_account = _workspace_object(Account, data.get("from_account"), workspace, "from_account", errors)
        to_account = _workspace_object(Account, data.get("to_account"), workspace, "to_account", errors)
        if _is_blank(data.get("from_account")):
            errors["from_account"] = ["Transfer requires a source account"]
        if _is_blank(data.get("to_account")):
            errors["to_account"] = ["Transfer requires a destination account"]
        if from_account and to_account and from_account.pk == to_account.pk:
            errors["to_account"] = ["Source and destination accounts must differ"]

        to_currency = normalize_currency(
            data.get("to_currency") if not _is_blank(data.get("to_currency")) else currency
        )
        if to_currency is None:
            errors["to_currency"] = ["Currency code must be 3 letters"]

        cleaned.update(
            {
                "from_account": from_account,
                "to_account": to_account,
                "to_currency": to_currency,
                "transfer_rate": _positive_rate(data.get("transfer_rate"), "transfer_rate", errors),
            }
        )
    else:
        for field in ("from_account", "to_account", "to_currency", "transfer_rate"):
            if not _is_blank(data.get(field)):
                errors[field] = ["Only transfers accept this field"]

        account = _workspace_object(Account, data.get("account"), workspace, "account", errors)
        category = _workspace_object(Category, data.get("category"), workspace, "category", errors)
        if category and op_type in CATEGORY_TYPE_FOR_OPERATION:
            expected = CATEGORY_TYPE_FOR_OPERATION[op_type]
            if category.type != expected:
                errors["category"] = [f"A {op_type} operation needs an {expected} category"]

        debt = _workspace_object(Debt, data.get("debt"), workspace, "debt", errors)
        applied = None
        raw_applied = data.get("debt_applied_amount")
        if debt is not None:
            if _is_blank(raw_applied):
                errors["debt_applied_amount"] = ["Applied amount is required when a debt is linked"]
            else:
                applied, applied_error = parse_money(raw_applied)
                if applied_error:
                    errors["debt_applied_amount"] = [applied_error]
                elif amount is not None and applied > amount:
                    errors["debt_applied_amount"] = ["Applied amount cannot exceed the operation amount"]
            if op_type in OPERATION_TYPES and op_type != debt.settling_operation_type:
                errors["debt"] = [
                    f"Debts of direction '{debt.direction}' are settled by "
                    f"'{debt.settling_operation_type}' operations"
                ]
        elif not _is_blank(raw_applied) and "debt" not in errors:
            errors["debt"] = ["Applied amount requires a linked debt"]

        cleaned.update(
            {
                "account": account,
                "category": category,
                "debt": debt,
                "debt_applied_amount": applied,
            }
        )

    if errors:
        logger.warning(
            "Operation validation failed",
            extra={
                "workspace_id": workspace.id,
                "operation_type": op_type,
                "error_fields": sorted(errors.keys()),
                "action": "operation_validation_failed",
                "component": "clean_operation_data",
                "severity": "medium",
            },
        )
        raise ValidationError(errors)

    return cleaned
