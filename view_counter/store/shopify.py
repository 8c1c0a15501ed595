"""
Shopify Metaobject Store

This module implements the RecordStore interface on top of the Shopify
Admin GraphQL API. View counters live in metaobjects whose fields are
exposed as [{key, value}] lists; this adapter is the only place that knows
about that shape.

Key characteristics:
- Listing is type-scoped and cursor paginated (no lookup by field value)
- Several updates are sent as one document with aliased metaobjectUpdate
  mutations, executed in a single round trip
- No retries: throttling and transport failures surface as BackingStoreError
"""

import logging
from typing import Any, Optional, Sequence

import httpx

from view_counter.core.exceptions import BackingStoreError
from view_counter.store.interface import RecordStore
from view_counter.store.models import (
    Record,
    RecordPage,
    RecordUpdate,
    UpdateOutcome,
    UserError,
)

logger = logging.getLogger(__name__)

LIST_METAOBJECTS_QUERY = """
query ListMetaobjects($type: String!, $first: Int!, $after: String) {
  metaobjects(type: $type, first: $first, after: $after) {
    nodes {
      id
      fields { key value }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

UPDATE_SELECTION = "metaobject { id } userErrors { field message code }"


def fields_from_graphql(fields: Optional[list[dict[str, Any]]]) -> dict[str, Optional[str]]:
    """Convert a [{key, value}] list into a field mapping."""
    return {
        field["key"]: field.get("value")
        for field in fields or []
        if field.get("key")
    }


def fields_to_graphql(fields: dict[str, Optional[str]]) -> list[dict[str, str]]:
    """Convert a field mapping into a [{key, value}] list, nulls sent as ''."""
    return [
        {"key": key, "value": value if value is not None else ""}
        for key, value in fields.items()
    ]


def build_update_mutation(updates: Sequence[RecordUpdate]) -> tuple[str, dict[str, Any]]:
    """
    Build one mutation document carrying an aliased update per record.

    Args:
        updates: Updates to combine

    Returns:
        Tuple of (document, variables); aliases are u0..uN in update order
    """
    declarations = []
    operations = []
    variables: dict[str, Any] = {}

    for index, update in enumerate(updates):
        declarations.append(f"$id{index}: ID!, $fields{index}: [MetaobjectFieldInput!]!")
        operations.append(
            f"  u{index}: metaobjectUpdate(id: $id{index}, "
            f"metaobject: {{fields: $fields{index}}}) {{ {UPDATE_SELECTION} }}"
        )
        variables[f"id{index}"] = update.record_id
        variables[f"fields{index}"] = fields_to_graphql(update.fields)

    document = (
        f"mutation UpdateViewCounts({', '.join(declarations)}) {{\n"
        + "\n".join(operations)
        + "\n}"
    )
    return document, variables


def _error_messages(errors: list[dict[str, Any]]) -> str:
    return "; ".join(str(error.get("message", error)) for error in errors)


class ShopifyMetaobjectStore(RecordStore):
    """
    Record store backed by Shopify metaobjects.

    Args:
        shop_domain: Shop domain, e.g. my-shop.myshopify.com
        access_token: Admin API access token
        api_version: Admin API version used in the endpoint path
        timeout: Timeout in seconds applied to every request
        http_client: Preconfigured client (tests inject a MockTransport)
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = "2024-10",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        if not shop_domain:
            raise ValueError("shop_domain must be provided")
        if not access_token:
            raise ValueError("access_token must be provided")

        domain = shop_domain.strip().rstrip("/")
        if "://" in domain:
            domain = domain.split("://", 1)[1]

        self.endpoint = f"https://{domain}/admin/api/{api_version}/graphql.json"
        self._headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def _execute(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """
        Send one GraphQL request and return the decoded body.

        Raises:
            BackingStoreError: On network failure, timeout, HTTP error status,
                or a body that is not a JSON object
        """
        try:
            response = await self._client.post(
                self.endpoint,
                json={"query": query, "variables": variables},
                headers=self._headers,
            )
        except httpx.TimeoutException as e:
            raise BackingStoreError("request timed out", original_error=e)
        except httpx.HTTPError as e:
            raise BackingStoreError(f"request failed: {e}", original_error=e)

        if response.status_code >= 400:
            raise BackingStoreError(
                f"HTTP {response.status_code} from {self.endpoint}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise BackingStoreError("response is not valid JSON", original_error=e)

        if not isinstance(body, dict):
            raise BackingStoreError("unexpected response shape")

        return body

    async def list_records(
        self,
        record_type: str,
        page_size: int,
        cursor: Optional[str] = None
    ) -> RecordPage:
        body = await self._execute(
            LIST_METAOBJECTS_QUERY,
            {"type": record_type, "first": page_size, "after": cursor},
        )

        if body.get("errors"):
            raise BackingStoreError(
                f"listing '{record_type}' failed: {_error_messages(body['errors'])}"
            )

        connection = (body.get("data") or {}).get("metaobjects")
        if connection is None:
            raise BackingStoreError(f"listing '{record_type}' returned no data")

        records = [
            Record(id=node["id"], fields=fields_from_graphql(node.get("fields")))
            for node in connection.get("nodes") or []
        ]
        page_info = connection.get("pageInfo") or {}

        return RecordPage(
            records=records,
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )

    async def update_records(
        self,
        updates: Sequence[RecordUpdate]
    ) -> list[UpdateOutcome]:
        if not updates:
            return []

        document, variables = build_update_mutation(updates)
        body = await self._execute(document, variables)

        data = body.get("data")
        errors = body.get("errors") or []
        if not data:
            # Whole request rejected (throttled, invalid document, access denied)
            raise BackingStoreError(
                f"combined update failed: {_error_messages(errors) or 'no data returned'}"
            )

        outcomes = []
        for index, update in enumerate(updates):
            alias = f"u{index}"
            payload = data.get(alias)

            if payload is None:
                alias_errors = [
                    UserError(
                        message=str(error.get("message", "unknown error")),
                        code=(error.get("extensions") or {}).get("code"),
                    )
                    for error in errors
                    if (error.get("path") or [None])[0] == alias
                ]
                outcomes.append(UpdateOutcome(
                    record_id=update.record_id,
                    alias=alias,
                    errors=alias_errors or [UserError(message="No result returned")],
                ))
                continue

            outcomes.append(UpdateOutcome(
                record_id=update.record_id,
                alias=alias,
                errors=[
                    UserError(
                        message=str(error.get("message", "unknown error")),
                        field=error.get("field"),
                        code=error.get("code"),
                    )
                    for error in payload.get("userErrors") or []
                ],
            ))

        return outcomes

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def get_backend_name(self) -> str:
        return "shopify"
