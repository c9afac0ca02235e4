import threading

import pytest

from storefront.extensions import db
from storefront.models import Product, ProductVariant
from storefront.services import stock_service
from storefront.services.stock_service import StockError


def test_decrement_within_stock(db_session, variant):
    assert stock_service.decrement_stock_now(variant.id, 4) is True
    assert stock_service.get_stock(variant.id) == 6


def test_decrement_beyond_stock_changes_nothing(db_session, variant):
    assert stock_service.decrement_stock_now(variant.id, 11) is False
    assert stock_service.get_stock(variant.id) == 10


def test_decrement_to_exactly_zero(db_session, variant):
    assert stock_service.decrement_stock_now(variant.id, 10) is True
    assert stock_service.get_stock(variant.id) == 0
    assert stock_service.decrement_stock_now(variant.id, 1) is False


def test_decrement_missing_variant_returns_false(db_session):
    assert stock_service.decrement_stock_now(999999, 1) is False


def test_increment_missing_variant_raises(db_session):
    with pytest.raises(StockError):
        stock_service.increment_stock_now(999999, 1)


@pytest.mark.parametrize("qty", [0, -1, True, "2"])
def test_quantity_must_be_positive_int(db_session, variant, qty):
    with pytest.raises(StockError):
        stock_service.decrement_stock(variant.id, qty)


def test_has_stock(db_session, variant):
    assert stock_service.has_stock(variant.id, 10) is True
    assert stock_service.has_stock(variant.id, 11) is False
    assert stock_service.has_stock(999999, 1) is False


def test_decrement_is_not_committed_until_caller_commits(db_session, variant):
    assert stock_service.decrement_stock(variant.id, 3) is True
    db_session.rollback()
    assert stock_service.get_stock(variant.id) == 10


def test_adjust_stock(db_session, variant):
    assert stock_service.adjust_stock(variant.id, 5) == 15
    assert stock_service.adjust_stock(variant.id, -15) == 0
    with pytest.raises(StockError):
        stock_service.adjust_stock(variant.id, -1)
    with pytest.raises(StockError):
        stock_service.adjust_stock(variant.id, 0)


# =============================================================================
# CONCURRENCY
# =============================================================================

def test_concurrent_decrements_never_oversell(file_app):
    with file_app.app_context():
        product = Product(name="Limited Poster", is_active=True)
        db.session.add(product)
        db.session.flush()
        v = ProductVariant(product_id=product.id, sku="POSTER-1", price_cents=30000, stock=5)
        db.session.add(v)
        db.session.commit()
        variant_id = v.id

    workers = 12
    barrier = threading.Barrier(workers)
    results = []
    lock = threading.Lock()

    def buy_one():
        with file_app.app_context():
            barrier.wait()
            ok = stock_service.decrement_stock_now(variant_id, 1)
            with lock:
                results.append(ok)
            db.session.remove()

    threads = [threading.Thread(target=buy_one) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    with file_app.app_context():
        assert stock_service.get_stock(variant_id) == 0

    assert results.count(True) == 5
    assert results.count(False) == workers - 5
