from __future__ import annotations

import re
from collections.abc import Mapping

from ...logging_setup import get_logger
from ...secret_store import API_AUTH_KEY, SecretProvider
from ...storage.backends import DateRange
from ...storage.database import DEFAULT_FIND_LIMIT
from ..dependencies import DatabaseProvider
from ..responses import HandlerResult, check_shared_secret, first_value

logger = get_logger(__name__)

AUTH_PARAM = "auth-token"
MAX_LIMIT = 1000
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_limit(value: str | None) -> int:
    """Falls back to the default for anything that is not a positive integer."""
    if value is None or not value.isdigit() or int(value) == 0:
        return DEFAULT_FIND_LIMIT
    return min(int(value), MAX_LIMIT)


def parse_date_range(start_date: str | None, end_date: str | None) -> DateRange | None:
    if not start_date or not end_date:
        return None
    if not DATE_RE.match(start_date) or not DATE_RE.match(end_date):
        raise ValueError("startDate and endDate must use the format YYYY-MM-DD")
    return DateRange(start_date=start_date, end_date=end_date)


async def list_transactions(
    query: Mapping[str, object],
    *,
    secrets: SecretProvider,
    database: DatabaseProvider,
) -> HandlerResult:
    try:
        if not await check_shared_secret(query, AUTH_PARAM, API_AUTH_KEY, secrets):
            logger.warning("Invalid or missing auth token")
            return HandlerResult(401, {"error": "Unauthorized"})

        try:
            date_range = parse_date_range(first_value(query.get("startDate")), first_value(query.get("endDate")))
        except ValueError as exc:
            return HandlerResult(400, {"error": "Bad Request", "message": str(exc)})
        limit = parse_limit(first_value(query.get("limit")))

        logger.info(
            "Listing transactions",
            extra={
                "start_date": date_range.start_date if date_range else None,
                "end_date": date_range.end_date if date_range else None,
                "limit": limit,
            },
        )
        db = await database()
        transactions = await db.transactions.find(date_range, limit=limit)
        return HandlerResult(200, transactions)
    except Exception:
        logger.exception("Error fetching transactions")
        return HandlerResult(500, {"error": "Internal server error", "message": "Unexpected error"})
