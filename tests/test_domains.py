"""
Tests for the domain, email-order and customer services.
The client is mocked; one end-to-end availability test runs over MockTransport.

Run:
    python -m pytest tests/test_domains.py -v
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from resellersync.api import (
    CustomerService,
    DomainService,
    EmailOrderService,
    PricingService,
    ResellerClubClient,
    get_resource_service,
)
from resellersync.api.exceptions import (
    CustomerNotFoundError,
    DomainExpiredError,
    DomainNotAvailableError,
    InvalidParameterError,
    PurchasesDisabledError,
)
from resellersync.models import AvailabilityStatus
from resellersync.utils.config import Settings


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _settings(**overrides) -> Settings:
    values = {
        "resellerclub_reseller_id": "12345",
        "resellerclub_api_key": "test-key",
        "max_requests_per_second": 1000,
        "retry_delay": 0.01,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _mock_client(get=None, post=None):
    client = MagicMock()
    client.get = AsyncMock(return_value=get if get is not None else {})
    client.post = AsyncMock(return_value=post if post is not None else {})
    return client


def _details_payload(**overrides):
    payload = {
        "entityid": "555",
        "domainname": "example.com",
        "currentstatus": "Active",
        "creationtime": "1700000000",
        "endtime": "1800000000",
        "isrecurring": "false",
        "isprivacyprotected": "true",
        "istransferlocked": True,
        "ns1": "ns1.example.net",
        "ns2": "ns2.example.net",
        "registrantcontactid": "11",
        "admincontactid": "12",
        "techcontactid": "13",
        "billingcontactid": "14",
    }
    payload.update(overrides)
    return payload


# ===========================================================================
# 1. Availability
# ===========================================================================

class TestAvailability:

    def _check(self, response, domain="example.com"):
        client = _mock_client(get=response)
        service = DomainService(client, _settings())
        return asyncio.run(service.check_availability(domain)), client

    def test_available(self):
        result, _ = self._check({"example.com": {"status": "available", "classkey": "domcno"}})
        assert result.status == AvailabilityStatus.AVAILABLE
        assert result.is_available

    def test_no_dot_key(self):
        result, _ = self._check({"examplecom": {"status": "available"}})
        assert result.status == AvailabilityStatus.AVAILABLE

    def test_mixed_case_key(self):
        result, _ = self._check({"Example.COM": {"status": "available"}})
        assert result.status == AvailabilityStatus.AVAILABLE

    @pytest.mark.parametrize("status", ["regthroughus", "regthroughothers", "unavailable"])
    def test_unavailable(self, status):
        result, _ = self._check({"example.com": {"status": status}})
        assert result.status == AvailabilityStatus.UNAVAILABLE

    def test_premium_by_class_key(self):
        result, _ = self._check({"example.com": {"status": "available", "classkey": "premium_tier2"}})
        assert result.status == AvailabilityStatus.PREMIUM

    def test_missing_entry_is_unknown_not_unavailable(self):
        result, _ = self._check({"other.com": {"status": "regthroughothers"}})
        assert result.status == AvailabilityStatus.UNKNOWN
        assert not result.is_available

    def test_multiple_uses_repeated_keys_and_check_host(self):
        settings = _settings(resellerclub_sandbox=False)
        client = _mock_client(get={
            "example.com": {"status": "available"},
            "example.net": {"status": "regthroughothers"},
        })
        service = DomainService(client, settings)

        results = asyncio.run(service.check_multiple_availability(["example.com", "Example.NET"]))

        assert [r.domain for r in results] == ["example.com", "example.net"]
        assert [r.status for r in results] == [AvailabilityStatus.AVAILABLE, AvailabilityStatus.UNAVAILABLE]
        endpoint, params, base_url = client.get.call_args.args
        assert endpoint == "domains/available.json"
        assert params == {"domain-name": ["example"], "tlds": ["com", "net"]}
        assert base_url == "https://domaincheck.httpapi.com/api"

    def test_invalid_domain_makes_no_call(self):
        client = _mock_client()
        service = DomainService(client, _settings())

        with pytest.raises(InvalidParameterError):
            asyncio.run(service.check_availability("not a domain"))

        client.get.assert_not_awaited()

    def test_suggest_domains_uses_supported_tlds(self):
        client = _mock_client(get={})
        service = DomainService(client, _settings(supported_tlds=[".com", ".io"]))

        results = asyncio.run(service.suggest_domains("Acme"))

        assert [r.domain for r in results] == ["acme.com", "acme.io"]

    def test_end_to_end_over_transport(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"example.com": {"status": "available"}})

        async def check():
            client = ResellerClubClient(_settings(), transport=httpx.MockTransport(handler))
            try:
                return await DomainService(client).check_availability("example.com")
            finally:
                await client.aclose()

        result = asyncio.run(check())

        assert result.status == AvailabilityStatus.AVAILABLE
        assert len(requests) == 1
        assert requests[0].url.params.get_list("tlds") == ["com"]


# ===========================================================================
# 2. Purchase guard
# ===========================================================================

class TestPurchaseGuard:

    @pytest.mark.parametrize("operation", [
        lambda s: s.register("example.com", 1, "1", "2", "2", "2", "2"),
        lambda s: s.renew("555", 1),
        lambda s: s.transfer("example.com", "secret", "1", "2", "2", "2", "2"),
        lambda s: s.enable_privacy("555"),
    ])
    def test_domain_purchases_disabled_make_zero_calls(self, operation):
        client = _mock_client()
        service = DomainService(client, _settings(purchases_enabled=False))

        with pytest.raises(PurchasesDisabledError):
            asyncio.run(operation(service))

        client.get.assert_not_awaited()
        client.post.assert_not_awaited()

    @pytest.mark.parametrize("operation", [
        lambda s: s.create_order("example.com", "1", 5, 12),
        lambda s: s.renew_order("777", 12),
        lambda s: s.add_accounts("777", 2),
    ])
    def test_email_purchases_disabled_make_zero_calls(self, operation):
        client = _mock_client()
        service = EmailOrderService(client, _settings(purchases_enabled=False))

        with pytest.raises(PurchasesDisabledError):
            asyncio.run(operation(service))

        client.get.assert_not_awaited()
        client.post.assert_not_awaited()

    def test_deleting_seats_is_not_guarded(self):
        client = _mock_client(post={"status": "Success"})
        service = EmailOrderService(client, _settings(purchases_enabled=False))

        assert asyncio.run(service.delete_accounts("777", 1)) is True
        client.post.assert_awaited_once()


# ===========================================================================
# 3. Registration / renewal
# ===========================================================================

class TestRegistration:

    def test_register_refuses_unavailable_domain(self):
        client = _mock_client(get={"example.com": {"status": "regthroughothers"}})
        service = DomainService(client, _settings(purchases_enabled=True))

        with pytest.raises(DomainNotAvailableError):
            asyncio.run(service.register("example.com", 1, "1", "2", "2", "2", "2"))

        client.post.assert_not_awaited()

    def test_register_sends_numbered_nameservers(self):
        client = _mock_client(
            get={"example.com": {"status": "available"}},
            post={"entityid": "900", "invoiceid": "42"},
        )
        service = DomainService(client, _settings(purchases_enabled=True))

        result = asyncio.run(service.register(
            "example.com", 2, "1", "2", "3", "4", "5",
            nameservers=["ns1.host.net", "ns2.host.net"],
        ))

        assert result.order_id == "900"
        assert result.invoice_id == "42"
        endpoint, params = client.post.call_args.args
        assert endpoint == "domains/register.json"
        assert params["ns1"] == "ns1.host.net"
        assert params["ns2"] == "ns2.host.net"
        assert params["years"] == 2
        assert params["reg-contact-id"] == "2"

    def test_renew_refuses_expired_domain(self):
        client = _mock_client(get=_details_payload(currentstatus="Expired"))
        service = DomainService(client, _settings(purchases_enabled=True))

        with pytest.raises(DomainExpiredError):
            asyncio.run(service.renew("555", 1))

        client.post.assert_not_awaited()

    def test_renew_sends_expiry_as_epoch(self):
        client = _mock_client(get=_details_payload(), post={"entityid": "555"})
        service = DomainService(client, _settings(purchases_enabled=True))

        asyncio.run(service.renew("555", 1))

        endpoint, params = client.post.call_args.args
        assert endpoint == "domains/renew.json"
        assert params["exp-date"] == 1800000000


# ===========================================================================
# 4. Details mapping and management calls
# ===========================================================================

class TestDomainDetails:

    def test_details_are_decoded_field_by_field(self):
        client = _mock_client(get=_details_payload())
        service = DomainService(client, _settings())

        details = asyncio.run(service.get_details("555"))

        assert details.order_id == "555"
        assert details.domain_name == "example.com"
        assert details.current_status == "Active"
        assert details.expiry_date == datetime.fromtimestamp(1800000000, tz=timezone.utc)
        assert details.auto_renew is False
        assert details.privacy_protection is True
        assert details.transfer_lock is True
        assert details.nameservers == ["ns1.example.net", "ns2.example.net"]
        assert details.registrant_contact_id == "11"
        assert client.get.call_args.args == ("domains/details.json", {"order-id": "555", "options": "All"})

    def test_update_nameservers_requires_one(self):
        service = DomainService(_mock_client(), _settings())
        with pytest.raises(InvalidParameterError):
            asyncio.run(service.update_nameservers("555", []))

    def test_auth_code_unlocks_first(self):
        client = _mock_client(get={"domsecret": "s3cret"}, post={"status": "Success"})
        service = DomainService(client, _settings())

        code = asyncio.run(service.get_auth_code("555"))

        assert code == "s3cret"
        assert client.post.call_args.args[0] == "domains/disable-theft-protection.json"

    def test_search_domains(self):
        client = _mock_client(get={"recsonpage": "1", "recsindb": "3", "result": [{"orders.orderid": "1"}]})
        service = DomainService(client, _settings())

        result = asyncio.run(service.search_domains("1", page=2, limit=10))

        assert result["total"] == 3
        assert len(result["domains"]) == 1
        params = client.get.call_args.args[1]
        assert params["page-no"] == 2
        assert params["no-of-records"] == 10

    def test_validate_domain_name(self):
        service = DomainService(_mock_client(), _settings())
        assert service.validate_domain_name("example.com") == {"valid": True, "error": None}
        assert service.validate_domain_name("-bad-.com")["valid"] is False


# ===========================================================================
# 5. Email orders and customers
# ===========================================================================

class TestEmailOrders:

    def test_details_mapping(self):
        client = _mock_client(get={
            "entityid": "777",
            "domainname": "example.com",
            "currentstatus": "Active",
            "endtime": "1800000000",
            "noofaccounts": "5",
        })
        service = EmailOrderService(client, _settings())

        details = asyncio.run(service.get_details("777"))

        assert details.number_of_accounts == 5
        assert details.expiry_date.year == 2027
        assert client.get.call_args.args[0] == "eelite/us/details.json"

    def test_create_order(self):
        client = _mock_client(post={"entityid": "778"})
        service = EmailOrderService(client, _settings(purchases_enabled=True))

        result = asyncio.run(service.create_order("example.com", "1", 5, 12))

        assert result.order_id == "778"
        params = client.post.call_args.args[1]
        assert params["no-of-accounts"] == 5
        assert params["months"] == 12


class TestCustomers:

    def test_create_customer_returns_bare_id(self):
        client = _mock_client(post=31337)
        service = CustomerService(client, _settings())

        customer_id = asyncio.run(service.create_customer(
            "Owner@Example.com", "pw", "Owner", "Acme", "1 Road", "Lusaka", "Lusaka", "ZM",
            "10101", "260", "955 000 000",
        ))

        assert customer_id == "31337"
        params = client.post.call_args.args[1]
        assert params["username"] == "owner@example.com"
        assert params["phone"] == "955000000"

    def test_find_customer_by_email_not_found(self):
        client = _mock_client()
        client.get.side_effect = CustomerNotFoundError("Customer not found")
        service = CustomerService(client, _settings())

        assert asyncio.run(service.find_customer_by_email("nobody@example.com")) is None


class TestServiceFactory:

    @pytest.mark.parametrize("name, expected", [
        ("DOMAIN", DomainService),
        ("pricing", PricingService),
        ("Email", EmailOrderService),
        ("CUSTOMER", CustomerService),
    ])
    def test_creates_services(self, name, expected):
        client = _mock_client()
        service = get_resource_service(name, client, _settings())
        assert isinstance(service, expected)
        assert service.client is client

    def test_unknown_service(self):
        with pytest.raises(ValueError):
            get_resource_service("DNS", _mock_client(), _settings())
