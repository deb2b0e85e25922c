"""Shared request helpers for blueprints.

get_or_404:    tuple-return lookup, NOT abort
parse_date:    returns None on bad input
current_actor: actor id from the X-User header
"""
import logging
from datetime import date, datetime

from flask import request

from portfolio.models import db
from portfolio.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (response, 404))

        obj, err = get_or_404(Project, pid)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, api_error(E.NOT_FOUND, f"{label} not found")
    return obj, None


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def current_actor() -> str | None:
    """Authenticated actor id, passed explicitly to every mutating operation."""
    actor = (request.headers.get("X-User") or "").strip()
    return actor or None
