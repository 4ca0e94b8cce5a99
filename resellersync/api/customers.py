"""
Customer Service
Customers and contacts on the ResellerClub API
"""

from typing import Any, Dict, Optional

from resellersync.api.base_service import BaseResourceService
from resellersync.api.exceptions import (
    ContactNotFoundError,
    CustomerNotFoundError,
    InvalidParameterError,
)
from resellersync.models import ContactDetails, CustomerDetails
from resellersync.utils.logger import get_logger
from resellersync.utils.validators import (
    ValidationError,
    validate_email,
    validate_phone,
)

logger = get_logger(__name__)


class CustomerService(BaseResourceService):
    """Customer accounts and the contacts attached to them"""

    async def create_customer(
        self,
        username: str,
        password: str,
        name: str,
        company: str,
        address_line_1: str,
        city: str,
        state: str,
        country: str,
        zipcode: str,
        phone_country_code: str,
        phone: str,
        lang_pref: str = "en"
    ) -> str:
        """
        Create a customer account.

        Returns:
            The new customer ID (the endpoint answers with a bare ID)
        """
        email = self._checked(validate_email, username)
        phone = self._checked(validate_phone, phone)

        response = await self.client.post(
            "customers/v2/signup.json",
            {
                "username": email,
                "passwd": password,
                "name": name,
                "company": company,
                "address-line-1": address_line_1,
                "city": city,
                "state": state,
                "country": country,
                "zipcode": zipcode,
                "phone-cc": phone_country_code,
                "phone": phone,
                "lang-pref": lang_pref,
            }
        )
        customer_id = str(response.get("entityid") if isinstance(response, dict) else response)
        logger.info(f"Created customer {customer_id} for {email}")
        return customer_id

    async def get_customer(self, customer_id: str) -> CustomerDetails:
        response = await self.client.get("customers/details-by-id.json", {"customer-id": customer_id})
        return self._map_customer(response)

    async def find_customer_by_email(self, email: str) -> Optional[CustomerDetails]:
        """
        Look up a customer by login email.

        Returns:
            CustomerDetails or None when no such customer exists
        """
        email = self._checked(validate_email, email)
        try:
            response = await self.client.get("customers/details.json", {"username": email})
        except CustomerNotFoundError:
            return None
        return self._map_customer(response)

    async def create_contact(
        self,
        customer_id: str,
        name: str,
        company: str,
        email: str,
        address_line_1: str,
        city: str,
        state: str,
        country: str,
        zipcode: str,
        phone_country_code: str,
        phone: str,
        contact_type: str = "Contact"
    ) -> str:
        """Create a contact. Returns the contact ID."""
        email = self._checked(validate_email, email)
        phone = self._checked(validate_phone, phone)

        response = await self.client.post(
            "contacts/add.json",
            {
                "customer-id": customer_id,
                "name": name,
                "company": company,
                "email": email,
                "address-line-1": address_line_1,
                "city": city,
                "state": state,
                "country": country,
                "zipcode": zipcode,
                "phone-cc": phone_country_code,
                "phone": phone,
                "type": contact_type,
            }
        )
        return str(response.get("entityid") if isinstance(response, dict) else response)

    async def get_contact(self, contact_id: str) -> ContactDetails:
        response = await self.client.get("contacts/details.json", {"contact-id": contact_id})
        contact_id = self._first(response, "contactid", "entityid")
        if contact_id is None:
            raise ContactNotFoundError("Contact details response has no contact ID", response_data=response)
        return ContactDetails(
            contact_id=str(contact_id),
            name=str(response.get("name", "")),
            email=str(response.get("emailaddr", response.get("email", ""))),
            contact_type=str(response.get("type", "")),
            customer_id=str(self._first(response, "customerid", "customer-id", default="")),
        )

    async def get_default_contacts(self, customer_id: str, contact_type: str = "Contact") -> Dict[str, Any]:
        """Default registrant/admin/tech/billing contacts for a customer"""
        response = await self.client.post(
            "contacts/default.json",
            {"customer-id": customer_id, "type": contact_type}
        )
        return response if isinstance(response, dict) else {}

    def _map_customer(self, data: Any) -> CustomerDetails:
        if not isinstance(data, dict):
            raise CustomerNotFoundError("Customer details response is empty")
        customer_id = self._first(data, "customerid", "entityid")
        if customer_id is None:
            raise CustomerNotFoundError("Customer details response has no customer ID", response_data=data)
        return CustomerDetails(
            customer_id=str(customer_id),
            username=str(data.get("username", "")),
            name=str(data.get("name", "")),
            company=str(data.get("company", "")),
            status=str(self._first(data, "customerstatus", "status", default="")),
        )

    @staticmethod
    def _checked(validator, value: str) -> str:
        try:
            return validator(value)
        except ValidationError as e:
            raise InvalidParameterError(str(e)) from e
