"""
Service for exchange-rate storage and currency conversion.

Wraps the pure resolver in ``utils.currency_utils`` with workspace-scoped
store access, and owns the write paths for rate observations (manual
entry and bulk refresh from the external feeds).
"""

import logging
from datetime import date
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction as db_transaction
from django.db.models import Q

from ..exceptions import RateUnresolvedError
from ..models import ExchangeRate
from ..utils.currency_utils import (
    STRATEGY_EXPLICIT,
    STRATEGY_IDENTITY,
    ResolvedRate,
    convert_amount,
    find_rate,
    normalize_currency,
    parse_rate,
)
from ..utils.date_utils import parse_date

# Get structured logger for this module
logger = logging.getLogger(__name__)


class ExchangeRateService:
    """
    Workspace-scoped rate lookups and rate upserts.

    Resolution follows ``find_rate`` priorities; identical currencies
    short-circuit to 1 before any query.
    """

    @staticmethod
    def observations_for_pair(workspace, from_currency, to_currency):
        """Both directions of a currency pair in one query, newest first."""
        return list(
            ExchangeRate.objects.filter(workspace=workspace)
            .filter(
                Q(from_currency=from_currency, to_currency=to_currency)
                | Q(from_currency=to_currency, to_currency=from_currency)
            )
            .only("from_currency", "to_currency", "rate_date", "rate")
            .order_by("-rate_date")
        )

    @staticmethod
    def resolve_rate(workspace, from_currency, to_currency, on_date):
        """
        Resolve a conversion rate for ``on_date``.

        Args:
            workspace: Workspace owning the rate observations
            from_currency: Source currency code
            to_currency: Target currency code
            on_date: Calendar date of the conversion

        Returns:
            ResolvedRate or None when no observation matches
        """
        if from_currency == to_currency:
            return ResolvedRate(rate=Decimal("1"), strategy=STRATEGY_IDENTITY)

        observations = ExchangeRateService.observations_for_pair(
            workspace, from_currency, to_currency
        )
        resolved = find_rate(observations, from_currency, to_currency, on_date)

        if resolved is None:
            logger.info(
                "Exchange rate unresolved",
                extra={
                    "workspace_id": workspace.id,
                    "from_currency": from_currency,
                    "to_currency": to_currency,
                    "on_date": on_date.isoformat(),
                    "action": "rate_unresolved",
                    "component": "ExchangeRateService",
                },
            )
        elif resolved.is_approximate:
            logger.info(
                "Approximate exchange rate used",
                extra={
                    "workspace_id": workspace.id,
                    "from_currency": from_currency,
                    "to_currency": to_currency,
                    "on_date": on_date.isoformat(),
                    "rate_date": resolved.rate_date.isoformat(),
                    "strategy": resolved.strategy,
                    "action": "rate_resolved_approximate",
                    "component": "ExchangeRateService",
                },
            )
        return resolved

    @staticmethod
    def convert_to_base(workspace, amount, currency, on_date, base_currency=None):
        """
        Convert ``amount`` into the workspace base currency.

        Returns:
            dict: ``base_amount``, ``rate``, ``rate_date``, ``strategy`` and
            ``is_approximate``. ``base_amount`` and ``rate`` are None when
            no rate resolves; callers must then block the write or ask
            for an explicit rate.
        """
        base_currency = base_currency or workspace.base_currency
        resolved = ExchangeRateService.resolve_rate(
            workspace, currency, base_currency, on_date
        )
        if resolved is None:
            return {
                "base_amount": None,
                "rate": None,
                "rate_date": None,
                "strategy": None,
                "is_approximate": False,
            }
        try:
            base_amount = convert_amount(amount, resolved.rate)
        except ValueError as exc:
            raise ValidationError({"amount": [str(exc)]}) from exc
        return {
            "base_amount": base_amount,
            "rate": resolved.rate,
            "rate_date": resolved.rate_date,
            "strategy": resolved.strategy,
            "is_approximate": resolved.is_approximate,
        }

    @staticmethod
    def conversion_fields(workspace, amount, currency, on_date, explicit_rate=None):
        """
        Conversion columns for an operation row.

        Rows in the base currency carry no rate. An explicit rate wins over
        stored observations.

        Raises:
            RateUnresolvedError: when neither an explicit nor a stored rate exists
        """
        base_currency = workspace.base_currency
        if currency == base_currency:
            return {
                "exchange_rate": None,
                "base_amount": None,
                "rate_is_approximate": False,
            }

        if explicit_rate is not None:
            resolved = ResolvedRate(rate=explicit_rate, strategy=STRATEGY_EXPLICIT)
        else:
            resolved = ExchangeRateService.resolve_rate(
                workspace, currency, base_currency, on_date
            )
            if resolved is None:
                logger.warning(
                    "Operation blocked - no conversion rate",
                    extra={
                        "workspace_id": workspace.id,
                        "currency": currency,
                        "base_currency": base_currency,
                        "on_date": on_date.isoformat(),
                        "action": "conversion_blocked_no_rate",
                        "component": "ExchangeRateService",
                        "severity": "medium",
                    },
                )
                raise RateUnresolvedError(currency, base_currency, on_date)

        stored_rate, rate_error = parse_rate(resolved.rate)
        if rate_error:
            raise ValidationError({"exchange_rate": [rate_error]})
        try:
            base_amount = convert_amount(amount, stored_rate)
        except ValueError as exc:
            raise ValidationError({"amount": [str(exc)]}) from exc
        return {
            "exchange_rate": stored_rate,
            "base_amount": base_amount,
            "rate_is_approximate": resolved.is_approximate,
        }

    @staticmethod
    def _clean_rate_input(from_currency, to_currency, rate_date, rate):
        errors = {}
        from_code = normalize_currency(from_currency)
        to_code = normalize_currency(to_currency)
        if from_code is None:
            errors["from_currency"] = ["Currency code must be 3 letters"]
        if to_code is None:
            errors["to_currency"] = ["Currency code must be 3 letters"]
        if from_code and to_code and from_code == to_code:
            errors["to_currency"] = ["Exchange rate currencies must differ"]

        parsed_date = parse_date(rate_date)
        if parsed_date is None:
            errors["rate_date"] = ["Invalid date"]

        parsed_rate, rate_error = parse_rate(rate)
        if rate_error:
            errors["rate"] = [rate_error]

        if errors:
            raise ValidationError(errors)
        return from_code, to_code, parsed_date, parsed_rate

    @staticmethod
    @db_transaction.atomic
    def set_rate(workspace, from_currency, to_currency, rate_date, rate, source="manual"):
        """
        Upsert one observation on (workspace, from, to, date).

        Returns:
            tuple: (ExchangeRate, created)
        """
        if source not in dict(ExchangeRate.SOURCE_CHOICES):
            raise ValidationError({"source": f"Unknown rate source: {source}"})

        from_code, to_code, parsed_date, parsed_rate = (
            ExchangeRateService._clean_rate_input(
                from_currency, to_currency, rate_date, rate
            )
        )

        exchange_rate, created = ExchangeRate.objects.update_or_create(
            workspace=workspace,
            from_currency=from_code,
            to_currency=to_code,
            rate_date=parsed_date,
            defaults={"rate": parsed_rate, "source": source},
        )

        logger.info(
            "Exchange rate stored",
            extra={
                "workspace_id": workspace.id,
                "rate_id": exchange_rate.id,
                "from_currency": from_code,
                "to_currency": to_code,
                "rate_date": parsed_date.isoformat(),
                "rate": str(parsed_rate),
                "source": source,
                "was_created": created,
                "action": "exchange_rate_upserted",
                "component": "ExchangeRateService",
            },
        )
        return exchange_rate, created

    @staticmethod
    @db_transaction.atomic
    def bulk_upsert_rates(workspace, rows, source):
        """
        Upsert many observations from a refresh job.

        Args:
            workspace: Workspace receiving the rates
            rows: Iterable of dicts with from_currency, to_currency, rate_date, rate
            source: Feed identifier ('cbr' or 'openexchangerates')

        Returns:
            dict: created and updated counts
        """
        created_count = 0
        updated_count = 0
        for index, row in enumerate(rows):
            try:
                _, created = ExchangeRateService.set_rate(
                    workspace,
                    row.get("from_currency"),
                    row.get("to_currency"),
                    row.get("rate_date"),
                    row.get("rate"),
                    source=source,
                )
            except ValidationError as e:
                logger.error(
                    "Bulk rate upsert rejected row",
                    extra={
                        "workspace_id": workspace.id,
                        "row_index": index,
                        "source": source,
                        "errors": e.messages,
                        "action": "bulk_rate_row_invalid",
                        "component": "ExchangeRateService",
                        "severity": "high",
                    },
                )
                raise ValidationError(f"Row {index}: {'; '.join(e.messages)}")
            if created:
                created_count += 1
            else:
                updated_count += 1

        logger.info(
            "Bulk rate upsert completed",
            extra={
                "workspace_id": workspace.id,
                "source": source,
                "created_count": created_count,
                "updated_count": updated_count,
                "action": "bulk_rate_upsert_completed",
                "component": "ExchangeRateService",
            },
        )
        return {"created": created_count, "updated": updated_count}

    @staticmethod
    def delete_rate(exchange_rate):
        """Remove one observation; stored operations keep the rate they were posted with."""
        rate_id = exchange_rate.id
        workspace_id = exchange_rate.workspace_id
        exchange_rate.delete()

        logger.info(
            "Exchange rate deleted",
            extra={
                "workspace_id": workspace_id,
                "rate_id": rate_id,
                "action": "exchange_rate_deleted",
                "component": "ExchangeRateService",
            },
        )

    @staticmethod
    def latest_rates(workspace, on_date: date = None):
        """Most recent observation per currency pair, optionally up to ``on_date``."""
        qs = ExchangeRate.objects.filter(workspace=workspace)
        if on_date:
            qs = qs.filter(rate_date__lte=on_date)

        latest = {}
        for rate in qs.order_by("-rate_date"):
            latest.setdefault((rate.from_currency, rate.to_currency), rate)
        return list(latest.values())
