"""
Domain Service
Request builders and response mappers for the ResellerClub domain endpoints
"""

from typing import Any, Dict, List, Optional, Sequence

from resellersync.api.base_service import BaseResourceService
from resellersync.api.exceptions import (
    DomainExpiredError,
    DomainNotAvailableError,
    DomainNotFoundError,
    InvalidParameterError,
)
from resellersync.models import (
    AvailabilityStatus,
    DomainAvailability,
    DomainDetails,
    OrderResult,
)
from resellersync.utils.logger import get_logger
from resellersync.utils.validators import (
    ValidationError,
    split_domain,
    to_bool,
    to_instant,
    to_int,
    validate_domain,
)

logger = get_logger(__name__)

MAX_NAMESERVERS = 13

UNAVAILABLE_STATUSES = {"regthroughus", "regthroughothers", "unavailable"}


def lookup_domain_entry(response: Dict[str, Any], sld: str, tld: str) -> Optional[Dict[str, Any]]:
    """
    Find the result for one domain in an availability response.

    Results may be keyed by the dotted name ("example.com"), a no-dot
    concatenation ("examplecom"), or either in mixed case.
    """
    if not isinstance(response, dict):
        return None

    lowered = {str(key).lower(): value for key, value in response.items()}
    for candidate in (f"{sld}.{tld}", f"{sld}{tld}", f"{sld}{tld.replace('.', '')}"):
        entry = lowered.get(candidate.lower())
        if isinstance(entry, dict):
            return entry
    return None


def classify_availability(entry: Optional[Dict[str, Any]]) -> AvailabilityStatus:
    if entry is None:
        return AvailabilityStatus.UNKNOWN

    status = str(entry.get("status", "")).strip().lower()
    class_key = str(entry.get("classkey", "")).lower()

    if status in UNAVAILABLE_STATUSES:
        return AvailabilityStatus.UNAVAILABLE
    if "premium" in class_key:
        return AvailabilityStatus.PREMIUM
    if status == "available":
        return AvailabilityStatus.AVAILABLE
    return AvailabilityStatus.UNKNOWN


class DomainService(BaseResourceService):
    """
    Domain operations: availability, registration, renewal, transfer,
    nameservers, locks, privacy and auto-renewal.
    """

    # ============================================================================
    # Availability
    # ============================================================================

    async def check_availability(self, domain_name: str) -> DomainAvailability:
        """Check availability for a single domain"""
        results = await self.check_multiple_availability([domain_name])
        return results[0]

    async def check_multiple_availability(self, domain_names: Sequence[str]) -> List[DomainAvailability]:
        """
        Check availability for several domains in one call.

        Uses the dedicated availability host with repeated keys:
            domain-name=test&tlds=com&tlds=net

        Returns:
            One DomainAvailability per input, in input order
        """
        if not domain_names:
            return []

        parsed = []
        for name in domain_names:
            domain = self._validated(name)
            sld, tld = split_domain(domain)
            parsed.append((domain, sld, tld))

        slds = list(dict.fromkeys(sld for _, sld, _ in parsed))
        tlds = list(dict.fromkeys(tld for _, _, tld in parsed))

        logger.info(f"Checking availability for: {', '.join(d for d, _, _ in parsed)}")

        response = await self.client.get(
            "domains/available.json",
            {"domain-name": slds, "tlds": tlds},
            self.config.domain_check_url
        )

        results = []
        for domain, sld, tld in parsed:
            entry = lookup_domain_entry(response, sld, tld)
            status = classify_availability(entry)
            if status == AvailabilityStatus.UNKNOWN:
                logger.warning(f"No availability entry for {domain} in response")
            results.append(DomainAvailability(
                domain=domain,
                status=status,
                class_key=entry.get("classkey") if entry else None,
            ))

        return results

    async def suggest_domains(self, keyword: str, tlds: Optional[Sequence[str]] = None) -> List[DomainAvailability]:
        """Check a keyword against a list of TLDs (defaults to the supported set)"""
        keyword = keyword.strip().lower()
        tlds = tlds or self.config.supported_tlds
        names = [f"{keyword}.{tld.strip().lstrip('.')}" for tld in tlds]
        return await self.check_multiple_availability(names)

    # ============================================================================
    # Registration / renewal / transfer (money-spending)
    # ============================================================================

    async def register(
        self,
        domain_name: str,
        years: int,
        customer_id: str,
        registrant_contact_id: str,
        admin_contact_id: str,
        tech_contact_id: str,
        billing_contact_id: str,
        nameservers: Optional[Sequence[str]] = None,
        purchase_privacy: bool = True,
        invoice_option: str = "NoInvoice"
    ) -> OrderResult:
        """
        Register a new domain.

        Raises:
            PurchasesDisabledError: If purchases are switched off (no call is made)
            DomainNotAvailableError: If the pre-check says the name is taken
        """
        self.require_purchases("domain registration")

        domain = self._validated(domain_name)
        availability = await self.check_availability(domain)
        if availability.status != AvailabilityStatus.AVAILABLE:
            raise DomainNotAvailableError(
                f"Domain {domain} is not available ({availability.status.value})"
            )

        params: Dict[str, Any] = {
            "domain-name": domain,
            "years": years,
            "customer-id": customer_id,
            "reg-contact-id": registrant_contact_id,
            "admin-contact-id": admin_contact_id,
            "tech-contact-id": tech_contact_id,
            "billing-contact-id": billing_contact_id,
            "purchase-privacy": purchase_privacy,
            "protect-privacy": purchase_privacy,
            "invoice-option": invoice_option,
        }
        params.update(self._nameserver_params(nameservers))

        logger.warning(f"Registering {domain} for {years} year(s) - this spends money")
        response = await self.client.post("domains/register.json", params)

        result = self._order_result(response)
        logger.info(f"Domain {domain} registered. Order ID: {result.order_id}")
        return result

    async def renew(self, order_id: str, years: int, invoice_option: str = "NoInvoice") -> OrderResult:
        """
        Renew a domain.

        Raises:
            PurchasesDisabledError: If purchases are switched off (no call is made)
            DomainExpiredError: If the registrar reports the domain as expired
        """
        self.require_purchases("domain renewal")

        details = await self.get_details(order_id)
        if details.current_status.lower() == "expired":
            raise DomainExpiredError(f"Domain {details.domain_name} has expired")
        if details.expiry_date is None:
            raise InvalidParameterError(f"Order {order_id} has no expiry date to renew from")

        response = await self.client.post(
            "domains/renew.json",
            {
                "order-id": order_id,
                "years": years,
                "exp-date": int(details.expiry_date.timestamp()),
                "invoice-option": invoice_option,
            }
        )
        return self._order_result(response)

    async def transfer(
        self,
        domain_name: str,
        auth_code: str,
        customer_id: str,
        registrant_contact_id: str,
        admin_contact_id: str,
        tech_contact_id: str,
        billing_contact_id: str,
        invoice_option: str = "NoInvoice"
    ) -> OrderResult:
        """Initiate a transfer in"""
        self.require_purchases("domain transfer")

        domain = self._validated(domain_name)
        response = await self.client.post(
            "domains/transfer.json",
            {
                "domain-name": domain,
                "auth-code": auth_code,
                "customer-id": customer_id,
                "reg-contact-id": registrant_contact_id,
                "admin-contact-id": admin_contact_id,
                "tech-contact-id": tech_contact_id,
                "billing-contact-id": billing_contact_id,
                "invoice-option": invoice_option,
            }
        )
        return self._order_result(response)

    async def enable_privacy(self, order_id: str) -> bool:
        """Purchase/enable privacy protection"""
        self.require_purchases("privacy protection purchase")

        await self.client.post(
            "domains/purchase-privacy.json",
            {"order-id": order_id, "invoice-option": "NoInvoice"}
        )
        return True

    async def cancel_transfer(self, order_id: str) -> bool:
        await self.client.post("domains/cancel-transfer.json", {"order-id": order_id})
        return True

    async def resend_transfer_approval_email(self, order_id: str) -> bool:
        await self.client.post("domains/resend-transfer-approval-mail.json", {"order-id": order_id})
        return True

    # ============================================================================
    # Details
    # ============================================================================

    async def get_details(self, order_id: str) -> DomainDetails:
        """Get domain details by order ID"""
        response = await self.client.get(
            "domains/details.json",
            {"order-id": order_id, "options": "All"}
        )
        return self.map_domain_details(response)

    async def get_details_by_domain(self, domain_name: str) -> DomainDetails:
        """Get domain details by domain name"""
        domain = self._validated(domain_name)
        response = await self.client.get(
            "domains/details-by-name.json",
            {"domain-name": domain, "options": "All"}
        )
        if not response:
            raise DomainNotFoundError(f"Domain {domain} not found")
        return self.map_domain_details(response)

    async def search_domains(
        self,
        customer_id: str,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 50
    ) -> Dict[str, Any]:
        """
        Search domains belonging to a customer.

        Returns:
            {"domains": [raw result dicts], "total": int}
        """
        response = await self.client.get(
            "domains/search.json",
            {
                "customer-id": customer_id,
                "no-of-records": limit,
                "page-no": page,
                "status": status,
            }
        )
        return {
            "domains": list(response.get("result") or []),
            "total": to_int(response.get("recsindb"), 0),
        }

    def map_domain_details(self, data: Dict[str, Any]) -> DomainDetails:
        order_id = self._first(data, "entityid", "order-id", "orderid")
        if order_id is None:
            raise DomainNotFoundError("Domain details response has no order ID", response_data=data)

        return DomainDetails(
            order_id=str(order_id),
            domain_name=str(self._first(data, "domainname", "domain-name", default="")),
            current_status=str(self._first(data, "currentstatus", "status", default="")),
            creation_date=to_instant(self._first(data, "creationtime", "creationdt", "creationdate")),
            expiry_date=to_instant(self._first(data, "endtime", "expirydate")),
            auto_renew=to_bool(data.get("isrecurring")),
            privacy_protection=to_bool(data.get("isprivacyprotected")),
            transfer_lock=to_bool(data.get("istransferlocked")),
            registrant_contact_id=str(self._first(data, "registrantcontactid", "registrant-contact-id", default="")),
            admin_contact_id=str(self._first(data, "admincontactid", "admin-contact-id", default="")),
            tech_contact_id=str(self._first(data, "techcontactid", "tech-contact-id", default="")),
            billing_contact_id=str(self._first(data, "billingcontactid", "billing-contact-id", default="")),
            nameservers=self._extract_nameservers(data),
        )

    @staticmethod
    def _extract_nameservers(data: Dict[str, Any]) -> List[str]:
        nameservers = []
        for i in range(1, MAX_NAMESERVERS + 1):
            ns = data.get(f"ns{i}")
            if isinstance(ns, str) and ns:
                nameservers.append(ns)
        return nameservers

    # ============================================================================
    # Nameservers / locks / auto-renew / contacts
    # ============================================================================

    async def update_nameservers(self, order_id: str, nameservers: Sequence[str]) -> bool:
        if not nameservers:
            raise InvalidParameterError("At least one nameserver is required")
        await self.client.post("domains/modify-ns.json", {"order-id": order_id, "ns": list(nameservers)})
        return True

    async def get_nameservers(self, order_id: str) -> List[str]:
        details = await self.get_details(order_id)
        return details.nameservers

    async def enable_transfer_lock(self, order_id: str) -> bool:
        await self.client.post("domains/enable-theft-protection.json", {"order-id": order_id})
        return True

    async def disable_transfer_lock(self, order_id: str) -> bool:
        await self.client.post("domains/disable-theft-protection.json", {"order-id": order_id})
        return True

    async def enable_auto_renew(self, order_id: str) -> bool:
        await self.client.post("domains/enable-recurring.json", {"order-id": order_id})
        return True

    async def disable_auto_renew(self, order_id: str) -> bool:
        await self.client.post("domains/disable-recurring.json", {"order-id": order_id})
        return True

    async def get_auth_code(self, order_id: str) -> str:
        """Unlock the domain and fetch its transfer-out auth code"""
        await self.disable_transfer_lock(order_id)
        response = await self.client.get("domains/get-domsecret.json", {"order-id": order_id})
        if isinstance(response, dict):
            return str(response.get("domsecret", ""))
        return str(response)

    async def modify_contacts(
        self,
        order_id: str,
        registrant_contact_id: Optional[str] = None,
        admin_contact_id: Optional[str] = None,
        tech_contact_id: Optional[str] = None,
        billing_contact_id: Optional[str] = None
    ) -> bool:
        await self.client.post(
            "domains/modify-contact.json",
            {
                "order-id": order_id,
                "reg-contact-id": registrant_contact_id,
                "admin-contact-id": admin_contact_id,
                "tech-contact-id": tech_contact_id,
                "billing-contact-id": billing_contact_id,
            }
        )
        return True

    # ============================================================================
    # Helpers
    # ============================================================================

    def validate_domain_name(self, domain_name: str) -> Dict[str, Any]:
        """
        Validate domain name format without raising.

        Returns:
            {"valid": bool, "error": str | None}
        """
        try:
            validate_domain(domain_name)
            return {"valid": True, "error": None}
        except ValidationError as e:
            return {"valid": False, "error": str(e)}

    @staticmethod
    def _validated(domain_name: str) -> str:
        try:
            return validate_domain(domain_name)
        except ValidationError as e:
            raise InvalidParameterError(str(e)) from e

    @staticmethod
    def _nameserver_params(nameservers: Optional[Sequence[str]]) -> Dict[str, Any]:
        return {f"ns{i}": ns for i, ns in enumerate(nameservers or [], start=1)}

    @staticmethod
    def _order_result(response: Any) -> OrderResult:
        if isinstance(response, dict):
            order_id = response.get("entityid") or response.get("orderid")
            invoice_id = response.get("invoiceid")
            return OrderResult(
                order_id=str(order_id),
                invoice_id=str(invoice_id) if invoice_id else None,
            )
        return OrderResult(order_id=str(response))
