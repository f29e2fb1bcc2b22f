# Overview: Atomic document numbering for sales, expenses and revenues.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from .concurrency import unit_of_work


def _allocate(document_type: str) -> int:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        # First number for this type; the savepoint keeps a lost insert race
        # from aborting the caller's unit of work.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            return 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    pad: int = 4,
    date_part: str | None = None,
) -> str:
    """
    Atomically allocate the next document number for a type.

    Runs inside the caller's unit of work when there is one, so a rolled-back
    sale also gives its number back.
    """
    if not document_type:
        raise ValueError("document_type is required")

    with unit_of_work():
        number = _allocate(document_type)

    if date_part:
        return f"{prefix}-{date_part}-{str(number).zfill(pad)}"
    return f"{prefix}-{str(number).zfill(pad)}"
