import csv
import io
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union

from pydantic import ValidationError

from .errors import InvalidDistributionError, InvalidQueryError, NotAuthenticatedError
from .models import (
    AdminIdentity,
    DistributionRequest,
    Transaction,
    TransactionDraft,
    TransactionFilter,
    TransactionPage,
)
from .storage import TransactionStore

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
CSV_HEADERS = ["Timestamp", "User UID", "PUBG UC", "Pool Coins", "Admin User", "Status"]


def require_identity(identity: Optional[AdminIdentity]) -> AdminIdentity:
    if identity is None:
        raise NotAuthenticatedError("Authentication required")
    return identity


def field_errors(errors: list[dict], skip_source: bool = False, root_field: str = "amounts") -> list[dict]:
    result = []
    for error in errors:
        loc = list(error.get("loc", ()))
        if skip_source and loc and loc[0] in ("body", "query", "path", "cookie", "header"):
            loc = loc[1:]
        result.append({
            "field": ".".join(str(part) for part in loc) or root_field,
            "message": error.get("msg", "Invalid value"),
            "type": error.get("type", "value_error"),
        })
    return result


def _to_int(value: Union[int, str, None]) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def page_bounds(
    limit: Union[int, str, None] = None,
    offset: Union[int, str, None] = None,
) -> tuple[int, int]:
    # Missing, malformed or out-of-range values fall back to the defaults.
    limit = _to_int(limit)
    offset = _to_int(offset)
    if limit is None or limit < 1:
        limit = DEFAULT_PAGE_SIZE
    if offset is None or offset < 0:
        offset = 0
    return limit, offset


def build_filter(
    user_uid: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> TransactionFilter:
    if date_from and date_to and date_from > date_to:
        raise InvalidQueryError("Validation error", [{
            "field": "dateFrom",
            "message": "Start date must not be after end date",
            "type": "date_range",
        }])

    created_from = datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None
    created_before = (
        datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=timezone.utc) if date_to else None
    )
    return TransactionFilter(user_uid=user_uid or None, created_from=created_from, created_before=created_before)


def render_csv(transactions: list[Transaction]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for t in transactions:
        writer.writerow([
            t.created_at.isoformat(),
            t.user_uid,
            t.uc_amount,
            t.coins_amount,
            t.admin_username,
            t.status.value,
        ])
    return buffer.getvalue()


class DistributionService:
    def __init__(self, store: TransactionStore):
        self.store = store

    def distribute(
        self,
        identity: Optional[AdminIdentity],
        uid: Optional[str],
        uc_amount: Optional[int] = None,
        coins_amount: Optional[int] = None,
    ) -> Transaction:
        admin = require_identity(identity)

        fields = {"userUID": uid, "ucAmount": uc_amount, "coinsAmount": coins_amount}
        try:
            request = DistributionRequest(**{k: v for k, v in fields.items() if v is not None})
        except ValidationError as e:
            errors = field_errors(e.errors())
            logger.info(f"Distribution rejected for admin {admin.username}: {errors}")
            raise InvalidDistributionError("Validation error", errors) from e

        transaction = self.store.append(TransactionDraft(
            user_uid=request.user_uid,
            uc_amount=request.uc_amount,
            coins_amount=request.coins_amount,
            admin_id=admin.id,
            admin_username=admin.username,
        ))
        logger.info(
            f"Distribution {transaction.id}: {transaction.uc_amount} UC / {transaction.coins_amount} coins "
            f"to UID {transaction.user_uid} by {admin.username}"
        )
        return transaction


class QueryService:
    def __init__(self, store: TransactionStore):
        self.store = store

    def get_page(
        self,
        identity: Optional[AdminIdentity],
        limit: Union[int, str, None] = DEFAULT_PAGE_SIZE,
        offset: Union[int, str, None] = 0,
        user_uid: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> TransactionPage:
        require_identity(identity)
        limit, offset = page_bounds(limit, offset)

        filters = build_filter(user_uid, date_from, date_to)
        transactions, total = self.store.list_recent(limit, offset, filters)
        return TransactionPage(transactions=transactions, total=total, limit=limit, offset=offset)

    def get_by_uid(self, identity: Optional[AdminIdentity], uid: str) -> list[Transaction]:
        require_identity(identity)
        return self.store.list_by_uid(uid)

    def export_csv(
        self,
        identity: Optional[AdminIdentity],
        user_uid: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> str:
        admin = require_identity(identity)
        filters = build_filter(user_uid, date_from, date_to)
        transactions, total = self.store.list_recent(self.store.count(), 0, filters)
        logger.info(f"CSV export of {total} transactions by {admin.username}")
        return render_csv(transactions)
