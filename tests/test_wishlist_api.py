import pytest

from conftest import create_product
from marketplace.errors import Conflict
from marketplace.models import WishlistEntry
from marketplace.services.wishlist_service import WishlistService


def test_add_and_check_wishlist(client, db_session, seller, buyer_headers):
    product = create_product(db_session, seller)

    added = client.post("/api/wishlist", json={"productId": product.productID}, headers=buyer_headers)
    check = client.get(f"/api/wishlist/check/{product.productID}", headers=buyer_headers)

    assert added.status_code == 201
    assert check.get_json()["inWishlist"] is True


def test_duplicate_wishlist_add_is_conflict_and_count_stays_one(client, db_session, seller, buyer, buyer_headers):
    product = create_product(db_session, seller)

    first = client.post("/api/wishlist", json={"productId": product.productID}, headers=buyer_headers)
    second = client.post("/api/wishlist", json={"productId": product.productID}, headers=buyer_headers)

    assert first.status_code == 201
    assert first.get_json()["count"] == 1
    assert second.status_code == 409
    assert second.get_json()["error"]["kind"] == "Conflict"
    assert db_session.query(WishlistEntry).filter_by(accountID=buyer.accountID).count() == 1


def test_unique_constraint_backs_the_service(db_session, seller, buyer):
    product = create_product(db_session, seller)
    service = WishlistService(db_session)
    service.add(buyer, product.productID)

    with pytest.raises(Conflict):
        service.add(buyer, product.productID)
    assert service.count(buyer) == 1


def test_wishlist_add_for_missing_product_is_404(client, buyer_headers):
    response = client.post("/api/wishlist", json={"productId": 4242}, headers=buyer_headers)
    assert response.status_code == 404


def test_remove_from_wishlist(client, db_session, seller, buyer_headers):
    product = create_product(db_session, seller)
    client.post("/api/wishlist", json={"productId": product.productID}, headers=buyer_headers)

    removed = client.delete(f"/api/wishlist/{product.productID}", headers=buyer_headers)
    removed_again = client.delete(f"/api/wishlist/{product.productID}", headers=buyer_headers)
    check = client.get(f"/api/wishlist/check/{product.productID}", headers=buyer_headers)

    assert removed.status_code == 200
    assert removed_again.status_code == 404
    assert check.get_json()["inWishlist"] is False


def test_wishlist_listing_embeds_products(client, db_session, seller, buyer_headers):
    product = create_product(db_session, seller, name="Bookshelf")
    client.post("/api/wishlist", json={"productId": product.productID}, headers=buyer_headers)

    items = client.get("/api/wishlist", headers=buyer_headers).get_json()["items"]

    assert len(items) == 1
    assert items[0]["product"]["name"] == "Bookshelf"


def test_wishlist_requires_authentication(client):
    assert client.get("/api/wishlist/check/1").status_code == 401
