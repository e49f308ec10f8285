"""
Tests for API endpoints
"""

import pytest
from datetime import datetime
from unittest.mock import MagicMock, patch

from fastapi import HTTPException
from fastapi.testclient import TestClient

from app.api.v1.routes import admin, catalogue, checkout, messages, products, profile, settings as settings_routes
from app.core.database import get_db
from app.core.middleware import get_current_profile, get_current_user, require_admin, require_not_banned
from app.main import app
from app.models.message import Message
from app.services.product_service import ListingValidationError


CURRENT_USER = {
    "uid": "test_user_123",
    "email": "test@example.com",
    "token": {"uid": "test_user_123"}
}


@pytest.fixture
def mock_db():
    return MagicMock()


@pytest.fixture
def client(mock_db):
    """Test client with the database and the caller replaced"""
    def override_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_current_user] = lambda: CURRENT_USER
    app.dependency_overrides[require_not_banned] = lambda: CURRENT_USER
    app.dependency_overrides[get_current_profile] = lambda: MagicMock(id=CURRENT_USER['uid'])

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def override_service():
    """Replace a route module's service dependency with a mock"""
    def _override(getter):
        service = MagicMock()
        app.dependency_overrides[getter] = lambda: service
        return service
    return _override


class TestHealthEndpoint:
    """Test health check endpoint"""

    def test_health_check(self, client):
        """Test health check returns 200"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestAuthentication:
    """Endpoints behind Firebase authentication"""

    def test_profile_requires_token(self):
        """No bearer token means no access"""
        response = TestClient(app).get("/api/v1/profile")
        assert response.status_code in (401, 403)

    def test_invalid_token_rejected(self, mock_firebase_admin):
        mock_firebase_admin.verify_id_token.side_effect = Exception("bad token")
        from app.core.firebase_service import FirebaseService, set_firebase_service
        set_firebase_service(FirebaseService(auth_provider=mock_firebase_admin, firestore_provider=MagicMock()))
        try:
            response = TestClient(app).get(
                "/api/v1/profile/entitlement", headers={"Authorization": "Bearer nope"}
            )
        finally:
            set_firebase_service(None)

        assert response.status_code == 401


class TestProductEndpoints:
    """Listing endpoints"""

    def test_browse_is_public(self, client, override_service):
        service = override_service(products.get_product_service)
        service.list_products.return_value = [{"id": "prod_1"}]

        response = client.get("/api/v1/products?category=Books")

        assert response.status_code == 200
        assert response.json() == {"products": [{"id": "prod_1"}]}
        assert service.list_products.call_args.kwargs['category'] == "Books"

    def test_browse_with_search(self, client, override_service):
        service = override_service(products.get_product_service)
        service.search_products.return_value = []

        response = client.get("/api/v1/products?q=lamp")

        assert response.status_code == 200
        service.search_products.assert_called_once()
        service.list_products.assert_not_called()

    def test_create_product_validation_errors(self, client, override_service):
        service = override_service(products.get_product_service)
        service.create_product.side_effect = ListingValidationError({'title': "Title is required"})

        response = client.post(
            "/api/v1/products",
            data={"title": " ", "description": "d", "price": "10", "category": "Books"},
            files=[("images", ("a.jpg", b"jpeg", "image/jpeg"))],
        )

        assert response.status_code == 422
        assert response.json()["detail"] == {"errors": {'title': "Title is required"}}

    def test_create_product_without_entitlement(self, client, override_service):
        service = override_service(products.get_product_service)
        service.create_product.side_effect = HTTPException(status_code=403, detail="no slots")

        response = client.post(
            "/api/v1/products",
            data={"title": "Lamp", "description": "d" * 60, "price": "10", "category": "Books"},
            files=[("images", ("a.jpg", b"jpeg", "image/jpeg"))],
        )

        assert response.status_code == 403

    def test_get_missing_product(self, client, override_service):
        service = override_service(products.get_product_service)
        service.get_product.side_effect = ValueError("Product not found")

        response = client.get("/api/v1/products/missing")

        assert response.status_code == 404


class TestCheckoutEndpoint:
    """Order placement"""

    def test_checkout_success(self, client, override_service):
        service = override_service(checkout.get_checkout_service)
        service.checkout.return_value = {"order_id": "order_1", "total": 5.0}

        response = client.post("/api/v1/checkout", json={
            "items": [{"type": "package", "id": "pkg_1"}],
            "email": "buyer@example.com",
            "email_confirm": "buyer@example.com",
        })

        assert response.status_code == 200
        assert response.json()["order_id"] == "order_1"
        items = service.checkout.call_args.args[2]
        assert items[0].type == "package"
        assert items[0].quantity == 1

    def test_checkout_rejected(self, client, override_service):
        service = override_service(checkout.get_checkout_service)
        service.checkout.side_effect = ValueError("Email addresses do not match")

        response = client.post("/api/v1/checkout", json={
            "items": [{"type": "package", "id": "pkg_1"}],
            "email": "a@example.com",
            "email_confirm": "b@example.com",
        })

        assert response.status_code == 400

    def test_checkout_unknown_item_type(self, client):
        response = client.post("/api/v1/checkout", json={
            "items": [{"type": "gift", "id": "x"}],
            "email": "a@example.com",
            "email_confirm": "a@example.com",
        })

        assert response.status_code == 422


class TestSettingsEndpoints:
    """Public site settings"""

    def test_unknown_grid_key(self, client, override_service):
        service = override_service(settings_routes.get_settings_service)
        service.get_grid_settings.side_effect = ValueError("Unknown grid setting: x")

        response = client.get("/api/v1/settings/grid/x")

        assert response.status_code == 404

    def test_grid(self, client, override_service):
        service = override_service(settings_routes.get_settings_service)
        service.get_grid_settings.return_value = {'lg': 3, 'md': 2, 'sm': 1}

        response = client.get("/api/v1/settings/grid/subscription_packages_grid")

        assert response.json()["grid"] == {'lg': 3, 'md': 2, 'sm': 1}


class TestAdminEndpoints:
    """Admin console"""

    def test_non_admin_is_forbidden(self, client, mock_db):
        mock_db.query.return_value.filter.return_value.first.return_value = MagicMock(role='user')

        response = client.get("/api/v1/admin/users")

        assert response.status_code == 403

    def test_list_users_as_admin(self, client, override_service):
        app.dependency_overrides[require_admin] = lambda: CURRENT_USER
        service = override_service(admin.get_profile_service)
        service.list_users.return_value = [{"id": "user_1"}]

        response = client.get("/api/v1/admin/users")

        assert response.status_code == 200
        assert response.json() == {"count": 1, "users": [{"id": "user_1"}]}

    def test_service_errors_map_to_status(self, client, override_service):
        app.dependency_overrides[require_admin] = lambda: CURRENT_USER
        service = override_service(admin.get_profile_service)
        service.set_role.side_effect = ValueError("Administrators cannot remove their own admin role")

        response = client.patch("/api/v1/admin/users/role", json={"user_id": "test_user_123", "role": "user"})

        assert response.status_code == 400

    def test_missing_package_is_404(self, client, override_service):
        app.dependency_overrides[require_admin] = lambda: CURRENT_USER
        service = override_service(admin.get_catalogue_service)
        service.update_package.side_effect = ValueError("Package not found")

        response = client.patch("/api/v1/admin/packages/missing", json={"price": "5"})

        assert response.status_code == 404

    def test_payout_over_balance_is_400(self, client, override_service):
        app.dependency_overrides[require_admin] = lambda: CURRENT_USER
        service = override_service(admin.get_payout_service)
        service.create_payout.side_effect = ValueError("Payout exceeds the available balance of 10.00")

        response = client.post("/api/v1/admin/payouts", json={"user_id": "seller_1", "amount": "25"})

        assert response.status_code == 400
        assert "available balance" in response.json()["detail"]

    def test_payout_amount_must_be_positive(self, client):
        app.dependency_overrides[require_admin] = lambda: CURRENT_USER

        response = client.post("/api/v1/admin/payouts", json={"user_id": "seller_1", "amount": "0"})

        assert response.status_code == 422

    def test_credit_package_null_fields_are_passed_through(self, client, override_service):
        app.dependency_overrides[require_admin] = lambda: CURRENT_USER
        service = override_service(admin.get_catalogue_service)
        service.update_credit_package.side_effect = ValueError("Credit package not found")

        response = client.patch("/api/v1/admin/credit-packages/cp_1", json={"is_active": None, "credits": 20})

        assert response.status_code == 404
        data = service.update_credit_package.call_args.args[2]
        assert data == {"is_active": None, "credits": 20}


class TestListingEdits:
    """Listing edit requests"""

    @patch("app.api.v1.routes.products.serialize_product", return_value={"id": "prod_1"})
    def test_status_is_not_editable(self, mock_serialize, client, override_service):
        service = override_service(products.get_product_service)

        response = client.patch("/api/v1/products/prod_1", json={"title": "Lamp", "status": "active"})

        assert response.status_code == 200
        assert service.update_product.call_args.kwargs["updates"] == {"title": "Lamp"}


class TestCatalogueEndpoints:
    """Public catalogue"""

    def test_credit_packages_are_public(self, client, override_service):
        service = override_service(catalogue.get_catalogue_service)
        service.list_credit_packages.return_value = [{"id": "cp_1", "credits": 50}]

        response = client.get("/api/v1/catalogue/credit-packages")

        assert response.status_code == 200
        assert response.json() == {"credit_packages": [{"id": "cp_1", "credits": 50}]}


class TestProfileEndpoints:
    """Seller dashboard"""

    def test_payouts_with_balance(self, client, override_service):
        service = override_service(profile.get_payout_service)
        service.get_balance.return_value = {"available": 12.0}
        service.list_payouts.return_value = [{"id": "po_1"}]

        response = client.get("/api/v1/profile/payouts?limit=5")

        assert response.status_code == 200
        assert response.json()["balance"] == {"available": 12.0}
        service.list_payouts.assert_called_once()
        assert service.list_payouts.call_args.args[1:] == ("test_user_123", 5)


class TestMessageEndpoints:
    """Buyer and seller messages"""

    def test_send_message(self, client, override_service):
        service = override_service(messages.get_message_service)
        service.send_message.return_value = Message(
            id="msg_1", sender_id="test_user_123", receiver_id="seller_1",
            content="Hello", read=False, created_at=datetime(2026, 5, 1),
        )

        response = client.post("/api/v1/messages", json={"receiver_id": "seller_1", "content": "Hello"})

        assert response.status_code == 201
        assert response.json()["message"]["id"] == "msg_1"

    def test_empty_message_is_422(self, client):
        response = client.post("/api/v1/messages", json={"receiver_id": "seller_1", "content": ""})

        assert response.status_code == 422

    def test_unknown_receiver_is_404(self, client, override_service):
        service = override_service(messages.get_message_service)
        service.send_message.side_effect = ValueError("Receiver not found")

        response = client.post("/api/v1/messages", json={"receiver_id": "ghost", "content": "Hello"})

        assert response.status_code == 404

    def test_list_messages(self, client, override_service):
        service = override_service(messages.get_message_service)
        service.list_messages.return_value = []
        service.count_unread.return_value = 2

        response = client.get("/api/v1/messages")

        assert response.json() == {"messages": [], "unread_count": 2}
