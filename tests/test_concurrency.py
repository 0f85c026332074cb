import os
import sqlite3
import sys
import threading
from pathlib import Path

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("DATA_DIR", str(ROOT / "data"))

from stockledger.core.exceptions import InsufficientStockError, TransactionTimeoutError
from stockledger.crud.products import create_product
from stockledger.crud.users import create_user
from stockledger.db.session import build_engine, init_db
from stockledger.db.unit_of_work import UnitOfWork
from stockledger.models.inventory_log import InventoryLog
from stockledger.models.product import Product
from stockledger.services.ledger import apply_movement, audit_product_ledger


@pytest.fixture()
def session_factory(tmp_path):
    # A file database so each thread gets its own connection.
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.db'}", lock_wait_seconds=10)
    init_db(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        engine.dispose()


@pytest.fixture()
def seeded(session_factory):
    db = session_factory()
    try:
        actor = create_user(db, {"username": "clerk"})
        with UnitOfWork(db) as uow:
            product = create_product(uow, {"sku": "C-1", "name": "Crate", "category": "Bulk", "stock": 40}, actor)
        return product.id, actor.id
    finally:
        db.close()


def _remove_concurrently(session_factory, product_id, actor_id, quantity, workers=2):
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def worker():
        db = session_factory()
        try:
            barrier.wait()
            with UnitOfWork(db, timeout=10, lock_wait=10) as uow:
                entry = apply_movement(
                    uow,
                    product_id=product_id,
                    action="Remove",
                    quantity=quantity,
                    actor_id=actor_id,
                )
                result = ("ok", entry.previous_stock, entry.new_stock)
        except InsufficientStockError as exc:
            result = ("insufficient", exc.current_stock, exc.requested_quantity)
        finally:
            db.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_two_removes_race_for_the_same_units(session_factory, seeded):
    product_id, actor_id = seeded

    outcomes = _remove_concurrently(session_factory, product_id, actor_id, 30)

    assert sorted(outcome[0] for outcome in outcomes) == ["insufficient", "ok"]
    assert ("ok", 40, 10) in outcomes
    assert ("insufficient", 10, 30) in outcomes

    db = session_factory()
    try:
        assert db.get(Product, product_id).stock == 10
        removes = db.execute(
            select(func.count(InventoryLog.id)).where(InventoryLog.product_id == product_id)
        ).scalar_one()
        assert removes == 2
        assert audit_product_ledger(db, product_id).consistent
    finally:
        db.close()


def test_many_small_removes_never_oversell(session_factory, seeded):
    product_id, actor_id = seeded

    outcomes = _remove_concurrently(session_factory, product_id, actor_id, 7, workers=8)

    succeeded = [outcome for outcome in outcomes if outcome[0] == "ok"]
    assert len(outcomes) == 8
    assert len(succeeded) == 5

    db = session_factory()
    try:
        assert db.get(Product, product_id).stock == 40 - 5 * 7
        assert audit_product_ledger(db, product_id).consistent
    finally:
        db.close()


def test_held_write_lock_times_out_the_unit_of_work(tmp_path, session_factory, seeded):
    product_id, actor_id = seeded
    path = tmp_path / "ledger.db"
    engine = build_engine(f"sqlite:///{path}", lock_wait_seconds=0.2)
    impatient = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    holder = sqlite3.connect(str(path), isolation_level=None)
    holder.execute("BEGIN IMMEDIATE")
    db = impatient()
    try:
        # A plain read does not wait for the writer.
        assert db.get(Product, product_id).stock == 40
        with pytest.raises(TransactionTimeoutError):
            with UnitOfWork(db, timeout=5, lock_wait=0.2) as uow:
                apply_movement(uow, product_id=product_id, action="Add", quantity=1, actor_id=actor_id)
    finally:
        holder.execute("ROLLBACK")
        holder.close()
        db.close()
        engine.dispose()

    db = session_factory()
    try:
        assert db.get(Product, product_id).stock == 40
        assert audit_product_ledger(db, product_id).entry_count == 1
    finally:
        db.close()


def test_open_read_does_not_block_a_movement(session_factory, seeded):
    product_id, actor_id = seeded
    reader = session_factory()
    writer = session_factory()
    try:
        assert reader.get(Product, product_id).stock == 40
        assert reader.in_transaction()
        with UnitOfWork(writer, timeout=5, lock_wait=1) as uow:
            entry = apply_movement(uow, product_id=product_id, action="Remove", quantity=5, actor_id=actor_id)
        assert entry.new_stock == 35
    finally:
        reader.close()
        writer.close()
