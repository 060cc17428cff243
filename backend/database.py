"""
Azure Cosmos DB access for the assessment stores.

CosmosDBService is the only place that talks to the SDK. Every request goes
through `run_request`, which retries throttling and transient service errors
with exponential backoff and records the request charge. Answers the stores
care about (missing item, id already taken, ETag mismatch) are passed back as
values or specific exceptions instead of being retried.
"""

import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from azure.core import MatchConditions
from azure.cosmos import ContainerProxy, DatabaseProxy, PartitionKey
from azure.cosmos.exceptions import (
    CosmosAccessConditionFailedError,
    CosmosHttpResponseError,
    CosmosResourceExistsError,
    CosmosResourceNotFoundError,
)
import logging

from constants import COLLECTIONS

logger = logging.getLogger(__name__)

# RU charge above which a single request is worth a warning
EXPENSIVE_REQUEST_RU = 50.0

# Per-container indexing; containers not listed use the account default
INDEXING_POLICIES: Dict[str, Dict[str, Any]] = {
    "TEST_SESSIONS": {
        "indexingMode": "consistent",
        "includedPaths": [{"path": "/status/?"}, {"path": "/*"}],
        "excludedPaths": [{"path": "/_etag/?"}],
    },
    # Overwritten every few seconds and only ever read by id
    "DRAFT_ANSWERS": {
        "indexingMode": "consistent",
        "includedPaths": [{"path": "/session_id/?"}],
        "excludedPaths": [{"path": "/*"}],
    },
    "SUBMISSIONS": {
        "indexingMode": "consistent",
        "includedPaths": [{"path": "/*"}],
        "excludedPaths": [{"path": "/answers/*"}],
    },
    "CODING_SUBMISSIONS": {
        "indexingMode": "consistent",
        "includedPaths": [{"path": "/*"}],
        "excludedPaths": [{"path": "/code/?"}, {"path": "/output/?"}],
    },
}


class RequestStats:
    """Request charge and latency totals, overall and per operation type."""

    def __init__(self):
        self.total_request_charge = 0.0
        self.operation_count = 0
        self.total_duration_ms = 0.0
        self.by_operation: Dict[str, int] = defaultdict(int)
        self.throttled = 0

    def record(self, operation_type: str, request_charge: float, duration_ms: float) -> None:
        self.total_request_charge += request_charge
        self.operation_count += 1
        self.total_duration_ms += duration_ms
        self.by_operation[operation_type.split(":", 1)[0]] += 1
        logger.debug(f"Cosmos DB {operation_type}: {request_charge} RU, {duration_ms:.2f}ms")
        if request_charge > EXPENSIVE_REQUEST_RU:
            logger.warning(f"High RU operation: {operation_type} consumed {request_charge} RU")

    def snapshot(self) -> Dict[str, Any]:
        count = self.operation_count
        return {
            "total_request_charge": round(self.total_request_charge, 2),
            "operation_count": count,
            "average_ru_per_operation": self.total_request_charge / count if count else 0.0,
            "average_duration_ms": self.total_duration_ms / count if count else 0.0,
            "throttled_requests": self.throttled,
            "operations": dict(self.by_operation),
        }


# Process-wide, exposed on /metrics
cosmos_metrics = RequestStats()


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 10.0     # seconds
    backoff_multiplier: float = 2.0
    retryable_status_codes: FrozenSet[int] = field(default_factory=lambda: frozenset({408, 429, 500, 502, 503, 504}))

    def delay_for(self, attempt: int, error: CosmosHttpResponseError) -> float:
        delay = min(self.initial_delay * (self.backoff_multiplier ** attempt), self.max_delay)
        # Throttled responses say how long to back off
        if error.status_code == 429 and error.headers:
            retry_after_ms = error.headers.get("x-ms-retry-after-ms")
            if retry_after_ms:
                delay = max(delay, float(retry_after_ms) / 1000.0)
        return delay


def _request_charge(container: ContainerProxy) -> float:
    headers = getattr(container.client_connection, "last_response_headers", None) or {}
    try:
        return float(headers.get("x-ms-request-charge", 0.0))
    except (TypeError, ValueError):
        return 0.0


class CosmosDBService:
    """Async facade over the Cosmos containers used by the stores."""

    def __init__(self, database_client: DatabaseProxy, retry_policy: Optional[RetryPolicy] = None,
                 stats: Optional[RequestStats] = None):
        self.database_client = database_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.stats = stats or cosmos_metrics
        self._containers: Dict[str, ContainerProxy] = {}

    def get_container(self, container_name: str) -> ContainerProxy:
        if container_name not in self._containers:
            self._containers[container_name] = self.database_client.get_container_client(container_name)
        return self._containers[container_name]

    async def ensure_containers_exist(self) -> None:
        """Create any missing container with its partition key and indexing policy."""
        for logical_name, meta in COLLECTIONS.items():
            container_name = meta["name"]
            pk_path = f"/{meta['pk_field']}"
            try:
                self.database_client.get_container_client(container_name).read()
                logger.info(f"Container '{container_name}' already exists")
                continue
            except CosmosResourceNotFoundError:
                pass

            create_kwargs: Dict[str, Any] = {"id": container_name, "partition_key": PartitionKey(path=pk_path)}
            if logical_name in INDEXING_POLICIES:
                create_kwargs["indexing_policy"] = INDEXING_POLICIES[logical_name]
            try:
                self.database_client.create_container(**create_kwargs)
            except CosmosResourceExistsError:
                # another instance created it between read and create
                logger.info(f"Container '{container_name}' was created concurrently")
            except CosmosHttpResponseError as e:
                logger.error(f"Failed to create container '{container_name}': {e}")
                raise
            else:
                logger.info(f"Created container '{container_name}' with pk '{pk_path}'")

    async def run_request(self, container_name: str, operation_type: str,
                          request: Callable[[ContainerProxy], Any]) -> Any:
        """Run one SDK call against a container, retrying transient failures."""
        container = self.get_container(container_name)
        policy = self.retry_policy
        label = f"{operation_type}:{container_name}"

        for attempt in range(policy.max_retries + 1):
            started = time.monotonic()
            try:
                result = request(container)
            except CosmosHttpResponseError as e:
                if e.status_code not in policy.retryable_status_codes:
                    raise
                if e.status_code == 429:
                    self.stats.throttled += 1
                if attempt == policy.max_retries:
                    logger.error(f"Cosmos DB {label} failed after {attempt + 1} attempts: {e}")
                    raise
                delay = policy.delay_for(attempt, e)
                logger.warning(
                    f"Cosmos DB {label} failed (attempt {attempt + 1}/{policy.max_retries + 1}): "
                    f"{e.status_code}. Retrying in {delay}s"
                )
                await asyncio.sleep(delay)
                continue

            self.stats.record(label, _request_charge(container), (time.monotonic() - started) * 1000)
            return result

    async def create_item(self, container_name: str, item: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a new document; CosmosResourceExistsError if the id is taken."""
        created = await self.run_request(container_name, "create", lambda c: c.create_item(body=item))
        logger.debug(f"Created item in '{container_name}': {created.get('id')}")
        return created

    async def read_item(self, container_name: str, item_id: str, partition_key: str) -> Optional[Dict[str, Any]]:
        try:
            return await self.run_request(
                container_name, "read", lambda c: c.read_item(item=item_id, partition_key=partition_key)
            )
        except CosmosResourceNotFoundError:
            return None

    async def upsert_item(self, container_name: str, item: Dict[str, Any]) -> Dict[str, Any]:
        return await self.run_request(container_name, "upsert", lambda c: c.upsert_item(body=item))

    async def replace_item_if_unchanged(self, container_name: str, item: Dict[str, Any],
                                        etag: str) -> Optional[Dict[str, Any]]:
        """Replace a document only while its ETag still matches.

        Returns None when another writer changed the document since it was read.
        """
        try:
            return await self.run_request(
                container_name, "replace",
                lambda c: c.replace_item(item=item["id"], body=item, etag=etag,
                                         match_condition=MatchConditions.IfNotModified),
            )
        except CosmosAccessConditionFailedError:
            logger.info(f"ETag mismatch replacing '{item['id']}' in '{container_name}'")
            return None

    async def delete_item(self, container_name: str, item_id: str, partition_key: str) -> bool:
        """Delete a document. False if it was already gone."""
        try:
            await self.run_request(
                container_name, "delete", lambda c: c.delete_item(item=item_id, partition_key=partition_key)
            )
        except CosmosResourceNotFoundError:
            return False
        logger.debug(f"Deleted item '{item_id}' from '{container_name}'")
        return True

    async def query_items(self, container_name: str, query: str, parameters: Optional[List[Dict[str, Any]]] = None,
                          partition_key: Optional[str] = None) -> List[Dict[str, Any]]:
        """SQL query; cross-partition unless a partition key is given."""
        scope: Dict[str, Any] = (
            {"partition_key": partition_key} if partition_key is not None
            else {"enable_cross_partition_query": True}
        )
        return await self.run_request(
            container_name, "query",
            lambda c: list(c.query_items(query=query, parameters=parameters or [], **scope)),
        )

    async def find_one(self, container_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        found = await self.find_many(container_name, filter_dict, limit=1)
        return found[0] if found else None

    async def find_many(self, container_name: str, filter_dict: Dict[str, Any], limit: Optional[int] = None,
                        order_by: Optional[str] = None, descending: bool = False) -> List[Dict[str, Any]]:
        """Equality filter on top-level fields."""
        clauses = [f"c.{key} = @{key}" for key in filter_dict]
        parameters = [{"name": f"@{key}", "value": value} for key, value in filter_dict.items()]

        query = "SELECT * FROM c"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        if order_by:
            query += f" ORDER BY c.{order_by} {'DESC' if descending else 'ASC'}"
        if limit:
            query += f" OFFSET 0 LIMIT {int(limit)}"
        return await self.query_items(container_name, query, parameters)


async def get_cosmosdb_service(database_client: DatabaseProxy) -> CosmosDBService:
    """CosmosDBService with every container provisioned."""
    service = CosmosDBService(database_client)
    await service.ensure_containers_exist()
    return service
