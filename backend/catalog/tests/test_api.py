import pytest

from catalog.models import Service


@pytest.mark.django_db
class TestServicesApi:
    def test_provider_creates_service(self, api_client, provider):
        api_client.force_authenticate(provider)

        response = api_client.post(
            "/api/services/",
            {"name": "Colour", "price_cents": 3000, "duration_minutes": 30},
            format="json",
        )

        assert response.status_code == 201, response.content
        assert response.data["provider"] == provider.id
        assert response.data["provider_name"] == "Pat's Studio"

    def test_rejects_zero_price(self, api_client, provider):
        api_client.force_authenticate(provider)

        response = api_client.post(
            "/api/services/",
            {"name": "Free", "price_cents": 0, "duration_minutes": 30},
            format="json",
        )

        assert response.status_code == 400
        assert "price_cents" in response.data

    def test_filter_by_provider(self, api_client, customer, service, other_customer):
        Service.objects.create(provider=other_customer, name="Yoga", price_cents=1500, duration_minutes=60)
        api_client.force_authenticate(customer)

        response = api_client.get("/api/services/", {"provider": service.provider_id})

        assert [row["name"] for row in response.data] == ["Haircut"]

    def test_only_owner_can_edit(self, api_client, customer, provider, service):
        api_client.force_authenticate(customer)
        forbidden = api_client.patch(f"/api/services/{service.id}/", {"price_cents": 1}, format="json")

        api_client.force_authenticate(provider)
        allowed = api_client.patch(f"/api/services/{service.id}/", {"active": False}, format="json")

        assert forbidden.status_code == 403
        assert allowed.status_code == 200
        service.refresh_from_db()
        assert service.active is False
        assert service.price_cents == 5000

    def test_services_cannot_be_deleted(self, api_client, provider, service):
        api_client.force_authenticate(provider)

        response = api_client.delete(f"/api/services/{service.id}/")

        assert response.status_code == 405
