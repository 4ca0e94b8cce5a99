"""
Email Order Service
Business email orders (seat-based plans) on the ResellerClub API
"""

from typing import Any, Dict, Optional

from resellersync.api.base_service import BaseResourceService
from resellersync.api.exceptions import InvalidParameterError, OrderNotFoundError
from resellersync.api.client import ResellerClubClient
from resellersync.models import EmailOrderDetails, OrderResult
from resellersync.utils.config import Settings
from resellersync.utils.logger import get_logger
from resellersync.utils.validators import ValidationError, to_instant, to_int, validate_domain

logger = get_logger(__name__)

DEFAULT_ENDPOINT_PREFIX = "eelite/us"


class EmailOrderService(BaseResourceService):
    """
    Business email order operations.

    Creating, renewing and adding seats spend money and are guarded by the
    purchases flag. Deleting seats and lookups are not.
    """

    def __init__(
        self,
        client: Optional[ResellerClubClient] = None,
        config: Optional[Settings] = None,
        endpoint_prefix: str = DEFAULT_ENDPOINT_PREFIX
    ):
        super().__init__(client, config)
        self.endpoint_prefix = endpoint_prefix.strip("/")

    def _endpoint(self, action: str) -> str:
        return f"{self.endpoint_prefix}/{action}.json"

    async def create_order(
        self,
        domain_name: str,
        customer_id: str,
        number_of_accounts: int,
        months: int,
        invoice_option: str = "NoInvoice"
    ) -> OrderResult:
        """
        Create a business email order for a domain.

        Args:
            domain_name: Domain the mailboxes belong to
            customer_id: ResellerClub customer ID
            number_of_accounts: Seats to purchase (>= 1)
            months: Term length in months

        Raises:
            PurchasesDisabledError: If purchases are switched off (no call is made)
            InvalidParameterError: If the seat count or domain is invalid
        """
        self.require_purchases("email order")

        if number_of_accounts < 1:
            raise InvalidParameterError("At least one email account is required")
        try:
            domain = validate_domain(domain_name)
        except ValidationError as e:
            raise InvalidParameterError(str(e)) from e

        logger.warning(f"Creating email order for {domain}: {number_of_accounts} account(s), {months} month(s)")
        response = await self.client.post(
            self._endpoint("add"),
            {
                "domain-name": domain,
                "customer-id": customer_id,
                "no-of-accounts": number_of_accounts,
                "months": months,
                "invoice-option": invoice_option,
            }
        )
        return self._order_result(response)

    async def renew_order(
        self,
        order_id: str,
        months: int,
        number_of_accounts: Optional[int] = None,
        invoice_option: str = "NoInvoice"
    ) -> OrderResult:
        """Renew an email order, optionally changing the seat count"""
        self.require_purchases("email order renewal")

        if number_of_accounts is None:
            details = await self.get_details(order_id)
            number_of_accounts = details.number_of_accounts

        response = await self.client.post(
            self._endpoint("renew"),
            {
                "order-id": order_id,
                "months": months,
                "no-of-accounts": number_of_accounts,
                "invoice-option": invoice_option,
            }
        )
        return self._order_result(response, default_order_id=order_id)

    async def add_accounts(self, order_id: str, number_of_accounts: int, invoice_option: str = "NoInvoice") -> bool:
        """Purchase additional seats on an existing order"""
        self.require_purchases("email seat purchase")

        if number_of_accounts < 1:
            raise InvalidParameterError("Number of accounts to add must be at least 1")

        await self.client.post(
            self._endpoint("add-email-account"),
            {
                "order-id": order_id,
                "no-of-accounts": number_of_accounts,
                "invoice-option": invoice_option,
            }
        )
        return True

    async def delete_accounts(self, order_id: str, number_of_accounts: int) -> bool:
        if number_of_accounts < 1:
            raise InvalidParameterError("Number of accounts to delete must be at least 1")

        await self.client.post(
            self._endpoint("delete-email-account"),
            {"order-id": order_id, "no-of-accounts": number_of_accounts}
        )
        return True

    async def get_details(self, order_id: str) -> EmailOrderDetails:
        response = await self.client.get(self._endpoint("details"), {"order-id": order_id})
        return self.map_order_details(response)

    async def search_orders(
        self,
        customer_id: str,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 50
    ) -> Dict[str, Any]:
        """
        Search email orders belonging to a customer.

        Returns:
            {"orders": [raw result dicts], "total": int}
        """
        response = await self.client.get(
            self._endpoint("search"),
            {
                "customer-id": customer_id,
                "no-of-records": limit,
                "page-no": page,
                "status": status,
            }
        )
        return {
            "orders": list(response.get("result") or []),
            "total": to_int(response.get("recsindb"), 0),
        }

    def map_order_details(self, data: Dict[str, Any]) -> EmailOrderDetails:
        if not isinstance(data, dict):
            raise OrderNotFoundError("Email order details response is empty")

        order_id = self._first(data, "entityid", "orderid", "order-id")
        if order_id is None:
            raise OrderNotFoundError("Email order details response has no order ID", response_data=data)

        return EmailOrderDetails(
            order_id=str(order_id),
            domain_name=str(self._first(data, "domainname", "description", default="")),
            product_key=self._first(data, "productkey", "product-key"),
            current_status=str(self._first(data, "currentstatus", "status", default="")),
            creation_date=to_instant(self._first(data, "creationtime", "creationdt")),
            expiry_date=to_instant(self._first(data, "endtime", "expirydate")),
            number_of_accounts=to_int(self._first(data, "noofaccounts", "numaccounts", "no-of-accounts"), 0),
        )

    @staticmethod
    def _order_result(response: Any, default_order_id: Optional[str] = None) -> OrderResult:
        if isinstance(response, dict):
            order_id = response.get("entityid") or response.get("orderid") or default_order_id
            invoice_id = response.get("invoiceid")
            return OrderResult(order_id=str(order_id), invoice_id=str(invoice_id) if invoice_id else None)
        return OrderResult(order_id=str(response))
