"""
Table Store Operations
======================

Generic get / query / add / update / delete over keyed table entities.

Every record is addressed by (partition_key, row_key). The functions here know
nothing about customers, products or orders; the workflow and service layers
decide what to read and write.

Pattern:
def operation_name(db: Session, model_or_entity, keys...) -> ReturnType:
    # One storage round trip, committed immediately
    return result

Each write commits on its own. Two writes issued one after the other are two
independent commits; nothing here groups them.
"""

from typing import Any, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from retail.errors import InvalidOperation, NotFound, PreconditionFailed

EntityT = TypeVar("EntityT")


# ============================================================================
# READS
# ============================================================================


def find_entity(
    db: Session, model: Type[EntityT], partition_key: str, row_key: str
) -> Optional[EntityT]:
    """
    Retrieve a single record by its two-part key.

    Args:
        db: Database session
        model: Entity class (Customer, Product, Order)
        partition_key: Category label
        row_key: Unique id within the partition

    Returns:
        The record if found, None otherwise

    SQL generated:
        SELECT * FROM <table> WHERE partition_key = ? AND row_key = ?
    """
    if not row_key:
        return None
    return db.get(model, (partition_key, row_key))


def get_entity(db: Session, model: Type[EntityT], partition_key: str, row_key: str) -> EntityT:
    """
    Same as find_entity, but a missing record is an error.

    Raises:
        NotFound: no record under (partition_key, row_key)
    """
    entity = find_entity(db, model, partition_key, row_key)
    if entity is None:
        raise NotFound(f"{model.__tablename__} entity '{partition_key}/{row_key}' not found")
    return entity


def query_entities(
    db: Session,
    model: Type[EntityT],
    *criteria: Any,
    order_by: Any = None,
    skip: int = 0,
    limit: Optional[int] = None,
) -> List[EntityT]:
    """
    Retrieve records matching a filter expression.

    Args:
        db: Database session
        model: Entity class
        criteria: SQLAlchemy filter expressions, ANDed together
            e.g. Order.partition_key == "orders", Order.status == "Completed"
        order_by: Optional ordering expression
        skip: Number of records to skip (offset)
        limit: Maximum number of records to return (None = all)

    SQL generated:
        SELECT * FROM <table> WHERE <criteria> ORDER BY ... OFFSET skip LIMIT limit
    """
    stmt = select(model).where(*criteria)
    if order_by is not None:
        stmt = stmt.order_by(order_by)
    if skip:
        stmt = stmt.offset(skip)
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.scalars(stmt).all())


# ============================================================================
# WRITES
# ============================================================================


def add_entity(db: Session, entity: EntityT) -> EntityT:
    """
    Insert a new record.

    Returns:
        The stored record, refreshed (etag and timestamp populated)

    Raises:
        InvalidOperation: a record with the same key already exists
    """
    db.add(entity)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise InvalidOperation(
            f"{type(entity).__tablename__} entity "
            f"'{entity.partition_key}/{entity.row_key}' already exists"
        ) from exc
    db.refresh(entity)
    return entity


def update_entity(db: Session, entity: EntityT, if_match: Optional[str] = None) -> EntityT:
    """
    Persist changes made to a record.

    Args:
        db: Database session
        entity: A record previously read through this session and modified
        if_match: Etag the caller read the record with. When given, it must
            still be the record's etag or nothing is written.

    Returns:
        The updated record with its new etag

    Raises:
        PreconditionFailed: if_match is stale, or another writer changed the
            row between our read and this write

    SQL generated:
        UPDATE <table> SET ..., etag = <new>
        WHERE partition_key = ? AND row_key = ? AND etag = <read etag>
    """
    if if_match is not None and if_match != entity.etag:
        db.rollback()
        raise PreconditionFailed(
            f"{type(entity).__tablename__} entity '{entity.partition_key}/{entity.row_key}' "
            f"was modified (etag {if_match} is stale)"
        )

    db.add(entity)
    try:
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        raise PreconditionFailed(
            f"{type(entity).__tablename__} entity '{entity.partition_key}/{entity.row_key}' "
            "was modified by another writer"
        ) from exc
    db.refresh(entity)
    return entity


def delete_entity(db: Session, model: Type[EntityT], partition_key: str, row_key: str) -> None:
    """
    Delete a record by its two-part key.

    Raises:
        NotFound: no record under (partition_key, row_key)

    Note:
        There are no foreign keys between tables. Deleting a product or
        customer leaves orders that reference it untouched.
    """
    entity = get_entity(db, model, partition_key, row_key)
    db.delete(entity)
    db.commit()
