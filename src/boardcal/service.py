"""Data service boundary and its GraphQL-over-HTTP implementation.

The orchestrator only depends on ``BoardDataService``. ``GraphQLBoardService``
talks to a monday.com-style GraphQL endpoint with httpx; tests substitute
in-memory doubles.
"""

from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any

import httpx

from boardcal.config import DEFAULT_API_URL, DEFAULT_PAGE_SIZE, ConfigError, RemoteConfig
from boardcal.errors import RemoteRequestError, sanitize_error_message
from boardcal.models import BoardUser, FieldValue, RawFieldSchema, Record, WritePayload

logger = logging.getLogger(__name__)

# Retry on 429 Too Many Requests and 503 Service Unavailable with exponential backoff.
RATE_LIMIT_RETRY_STATUS_CODES = {429, 503}
RATE_LIMIT_MAX_RETRIES = 3
RATE_LIMIT_BASE_BACKOFF_SECONDS = 1.0

ITEMS_PAGE_QUERY = """
query ($boardId: [ID!], $limit: Int!) {
  boards(ids: $boardId) {
    items_page(limit: $limit) {
      cursor
      items { id name column_values { id text value } }
    }
  }
}
"""

NEXT_ITEMS_PAGE_QUERY = """
query ($cursor: String!, $limit: Int!) {
  next_items_page(cursor: $cursor, limit: $limit) {
    cursor
    items { id name column_values { id text value } }
  }
}
"""

COLUMNS_QUERY = """
query ($boardId: [ID!]) {
  boards(ids: $boardId) {
    columns { id title type settings_str }
  }
}
"""

USERS_QUERY = "query { users { id name } }"

UPDATE_MUTATION = """
mutation ($itemId: ID!, $boardId: ID!, $columnValues: JSON!) {
  change_multiple_column_values(item_id: $itemId, board_id: $boardId, column_values: $columnValues) {
    id
  }
}
"""

CREATE_MUTATION = """
mutation ($boardId: ID!, $itemName: String!, $columnValues: JSON) {
  create_item(board_id: $boardId, item_name: $itemName, column_values: $columnValues) {
    id
  }
}
"""

# Column key used by change_multiple_column_values to rename an item.
TITLE_COLUMN_KEY = "name"


class BoardDataService(abc.ABC):
    """Remote source of truth for board records, schema and users."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Service identifier (e.g., ``graphql``)."""
        ...

    @abc.abstractmethod
    async def read_records(self, board_id: str) -> list[Record]:
        """Return every record of the board."""
        ...

    @abc.abstractmethod
    async def read_schema(self, board_id: str) -> list[RawFieldSchema]:
        """Return the board's field schema with undecoded settings."""
        ...

    @abc.abstractmethod
    async def read_users(self) -> list[BoardUser]:
        """Return the users that can be assigned in people fields."""
        ...

    @abc.abstractmethod
    async def write_fields(self, payload: WritePayload) -> str:
        """Create or update a record and return its id.

        A payload without ``record_id`` creates a record.
        """
        ...

    async def shutdown(self) -> None:
        """Release service resources."""
        return None


def _safe_graphql_error_message(payload: Any, response: httpx.Response | None = None) -> str:
    if isinstance(payload, dict):
        errors = payload.get("errors")
        if isinstance(errors, list):
            messages = [
                entry.get("message")
                for entry in errors
                if isinstance(entry, dict) and isinstance(entry.get("message"), str)
            ]
            if messages:
                return sanitize_error_message("; ".join(messages))
        for key in ("error_message", "error"):
            message = payload.get(key)
            if isinstance(message, str) and message.strip():
                return sanitize_error_message(message)

    if response is not None:
        raw_text = response.text.strip()
        if raw_text:
            return sanitize_error_message(raw_text)
    return "Request failed without an error payload"


def _record_from_item(item: dict[str, Any]) -> Record:
    column_values = item.get("column_values") or []
    field_values: list[FieldValue] = []
    for column in column_values:
        if not isinstance(column, dict) or not isinstance(column.get("id"), str):
            continue
        field_values.append(
            FieldValue(
                field_id=column["id"],
                raw_encoded=column.get("value"),
                display_text=column.get("text"),
            )
        )
    return Record(
        record_id=str(item.get("id", "")),
        title=item.get("name") or "",
        field_values=tuple(field_values),
    )


class GraphQLBoardService(BoardDataService):
    """Board data service over a GraphQL HTTP API, authenticated with an API token."""

    def __init__(
        self,
        api_token: str,
        *,
        api_url: str = DEFAULT_API_URL,
        page_size: int = DEFAULT_PAGE_SIZE,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not api_token or not api_token.strip():
            raise ValueError("api_token must be a non-empty string")
        self._api_token = api_token.strip()
        self._api_url = api_url
        self._page_size = page_size
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(
        cls, remote: RemoteConfig, *, http_client: httpx.AsyncClient | None = None
    ) -> GraphQLBoardService:
        """Build the service from the [remote] config section."""
        if not remote.api_token:
            raise ConfigError("remote.api_token is required for the GraphQL board service")
        return cls(
            remote.api_token,
            api_url=remote.api_url,
            page_size=remote.page_size,
            http_client=http_client,
            timeout=remote.request_timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "graphql"

    async def _execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._post_with_retry({"query": query, "variables": variables or {}})

        try:
            payload = response.json()
        except ValueError as exc:
            if response.status_code < 200 or response.status_code >= 300:
                raise RemoteRequestError(
                    status_code=response.status_code,
                    message=_safe_graphql_error_message(None, response),
                ) from exc
            raise RemoteRequestError(
                status_code=response.status_code,
                message="Board API returned invalid JSON for a successful response",
            ) from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise RemoteRequestError(
                status_code=response.status_code,
                message=_safe_graphql_error_message(payload, response),
            )

        if not isinstance(payload, dict):
            raise RemoteRequestError(
                status_code=response.status_code,
                message="Board API returned an unexpected JSON payload shape",
            )
        if payload.get("errors") or payload.get("error_message"):
            raise RemoteRequestError(
                status_code=response.status_code,
                message=_safe_graphql_error_message(payload),
            )

        data = payload.get("data")
        if not isinstance(data, dict):
            raise RemoteRequestError(
                status_code=response.status_code,
                message="Board API response is missing a data object",
            )
        return data

    async def _post_with_retry(self, body: dict[str, Any]) -> httpx.Response:
        response = await self._post_once(body)

        retry = 0
        while (
            response.status_code in RATE_LIMIT_RETRY_STATUS_CODES and retry < RATE_LIMIT_MAX_RETRIES
        ):
            backoff = RATE_LIMIT_BASE_BACKOFF_SECONDS * (2**retry)
            if response.status_code == 429:
                retry_after_header = response.headers.get("Retry-After")
                if retry_after_header is not None:
                    try:
                        backoff = float(retry_after_header)
                    except ValueError:
                        pass
            logger.warning(
                "Board API rate-limited (status=%d), retrying in %.1fs (attempt %d/%d)",
                response.status_code,
                backoff,
                retry + 1,
                RATE_LIMIT_MAX_RETRIES,
            )
            await asyncio.sleep(backoff)
            response = await self._post_once(body)
            retry += 1

        return response

    async def _post_once(self, body: dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": self._api_token,
            "Content-Type": "application/json",
        }
        try:
            return await self._http_client.post(self._api_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise RemoteRequestError(
                status_code=0,
                message=sanitize_error_message(f"Board API request failed: {exc}"),
            ) from exc

    @staticmethod
    def _first_board(data: dict[str, Any], board_id: str) -> dict[str, Any]:
        boards = data.get("boards")
        if not isinstance(boards, list) or not boards or not isinstance(boards[0], dict):
            raise RemoteRequestError(status_code=404, message=f"Board {board_id} was not found")
        return boards[0]

    async def read_records(self, board_id: str) -> list[Record]:
        data = await self._execute(ITEMS_PAGE_QUERY, {"boardId": [board_id], "limit": self._page_size})
        page = self._first_board(data, board_id).get("items_page")
        if not isinstance(page, dict):
            raise RemoteRequestError(status_code=200, message="Board response is missing items_page")

        records: list[Record] = []
        while True:
            items = page.get("items")
            if not isinstance(items, list):
                raise RemoteRequestError(status_code=200, message="Items page is missing items array")
            for item in items:
                if not isinstance(item, dict) or item.get("id") in (None, ""):
                    continue
                records.append(_record_from_item(item))

            cursor = page.get("cursor")
            if not isinstance(cursor, str) or not cursor:
                break
            data = await self._execute(
                NEXT_ITEMS_PAGE_QUERY, {"cursor": cursor, "limit": self._page_size}
            )
            page = data.get("next_items_page")
            if not isinstance(page, dict):
                raise RemoteRequestError(
                    status_code=200, message="Board response is missing next_items_page"
                )

        logger.debug("Read %d records from board %s", len(records), board_id)
        return records

    async def read_schema(self, board_id: str) -> list[RawFieldSchema]:
        data = await self._execute(COLUMNS_QUERY, {"boardId": [board_id]})
        columns = self._first_board(data, board_id).get("columns")
        if not isinstance(columns, list):
            raise RemoteRequestError(status_code=200, message="Board response is missing columns")
        schema: list[RawFieldSchema] = []
        for column in columns:
            if not isinstance(column, dict) or not isinstance(column.get("id"), str):
                continue
            schema.append(
                RawFieldSchema(
                    field_id=column["id"],
                    title=column.get("title") or "",
                    kind=column.get("type") or "",
                    settings_encoding=column.get("settings_str"),
                )
            )
        return schema

    async def read_users(self) -> list[BoardUser]:
        data = await self._execute(USERS_QUERY)
        users = data.get("users")
        if not isinstance(users, list):
            raise RemoteRequestError(status_code=200, message="Users response is missing users")
        return [
            BoardUser(user_id=user["id"], name=user.get("name") or "")
            for user in users
            if isinstance(user, dict) and user.get("id") is not None
        ]

    async def write_fields(self, payload: WritePayload) -> str:
        if payload.intent == "create":
            data = await self._execute(
                CREATE_MUTATION,
                {
                    "boardId": payload.board_id,
                    "itemName": payload.title or "",
                    "columnValues": payload.encoded_fields(),
                },
            )
            result = data.get("create_item")
        else:
            column_values = dict(payload.field_values)
            if payload.title is not None:
                column_values[TITLE_COLUMN_KEY] = payload.title
            data = await self._execute(
                UPDATE_MUTATION,
                {
                    "itemId": payload.record_id,
                    "boardId": payload.board_id,
                    "columnValues": payload.model_copy(
                        update={"field_values": column_values}
                    ).encoded_fields(),
                },
            )
            result = data.get("change_multiple_column_values")

        if not isinstance(result, dict) or result.get("id") in (None, ""):
            raise RemoteRequestError(
                status_code=200, message=f"Board API did not confirm the {payload.intent}"
            )
        return str(result["id"])

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()
