"""
Builds the service graph the routers work with.

Production uses Cosmos DB stores; without COSMOS_DB_ENDPOINT (or if the
connection fails) the service runs in development mode on in-memory stores.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from azure.cosmos import CosmosClient
from azure.cosmos.cosmos_client import ConnectionPolicy
from azure.identity import DefaultAzureCredential
from fastapi import HTTPException, Request

from code_execution import CodeExecutor, get_executor
from coding_lab import CodingLabService
from constants import COSMOS_DB_ENDPOINT, COSMOS_DB_KEY, DATABASE_NAME
from cosmos_stores import (
    CosmosAssessmentStore,
    CosmosCodingStore,
    CosmosDraftAnswerStore,
    CosmosSessionStore,
    CosmosSubmissionStore,
    CosmosUserStore,
)
from database import get_cosmosdb_service
from datetime_utils import Clock, SystemClock
from finalizer import SubmissionFinalizer
from session_manager import SessionManager
from stores import (
    AssessmentStore,
    CodingStore,
    DraftAnswerStore,
    InMemoryAssessmentStore,
    InMemoryCodingStore,
    InMemoryDraftAnswerStore,
    InMemorySessionStore,
    InMemorySubmissionStore,
    InMemoryUserStore,
    SessionStore,
    SubmissionStore,
    UserStore,
)
from users import UserDirectory

logger = logging.getLogger(__name__)


@dataclass
class Services:
    sessions: SessionManager
    assessments: AssessmentStore
    submissions: SubmissionStore
    drafts: DraftAnswerStore
    finalizer: SubmissionFinalizer
    coding: CodingLabService
    users: UserDirectory
    mode: str = "development"


def assemble_services(session_store: SessionStore, assessments: AssessmentStore, submissions: SubmissionStore,
                      drafts: DraftAnswerStore, coding_store: CodingStore, user_store: UserStore,
                      executor: CodeExecutor, clock: Optional[Clock] = None,
                      mode: str = "development") -> Services:
    clock = clock or SystemClock()
    sessions = SessionManager(session_store, clock)
    return Services(
        sessions=sessions,
        assessments=assessments,
        submissions=submissions,
        drafts=drafts,
        finalizer=SubmissionFinalizer(sessions, assessments, submissions, drafts, clock),
        coding=CodingLabService(coding_store, executor, clock),
        users=UserDirectory(user_store, clock),
        mode=mode,
    )


def build_in_memory_services(clock: Optional[Clock] = None, executor: Optional[CodeExecutor] = None) -> Services:
    return assemble_services(
        InMemorySessionStore(),
        InMemoryAssessmentStore(),
        InMemorySubmissionStore(),
        InMemoryDraftAnswerStore(),
        InMemoryCodingStore(),
        InMemoryUserStore(),
        executor or get_executor(),
        clock=clock,
    )


def create_optimized_cosmos_client(endpoint: str) -> CosmosClient:
    """Create Cosmos DB client with performance optimizations"""

    connection_policy = ConnectionPolicy()
    connection_policy.request_timeout = 30  # seconds

    # Configure preferred locations for multi-region accounts
    preferred_locations = os.getenv("COSMOS_DB_PREFERRED_LOCATIONS", "").split(",")
    if preferred_locations and preferred_locations[0]:
        connection_policy.preferred_locations = [loc.strip() for loc in preferred_locations]

    # SDK-level retries for throttling; CosmosDBService.run_request handles the rest
    connection_policy.retry_options.max_retry_attempt_count = 3
    connection_policy.retry_options.fixed_retry_interval_in_milliseconds = 1000
    connection_policy.retry_options.max_wait_time_in_seconds = 10

    credential = COSMOS_DB_KEY or DefaultAzureCredential()

    return CosmosClient(
        url=endpoint,
        credential=credential,
        connection_policy=connection_policy,
        consistency_level=os.getenv("COSMOS_DB_CONSISTENCY_LEVEL", "Session")
    )


async def build_cosmos_services(endpoint: str, database_name: str = DATABASE_NAME,
                                executor: Optional[CodeExecutor] = None) -> Services:
    cosmos_client = create_optimized_cosmos_client(endpoint)
    database_client = cosmos_client.get_database_client(database_name)
    db = await get_cosmosdb_service(database_client)
    logger.info(f"Connected to Cosmos DB: {database_name}")
    return assemble_services(
        CosmosSessionStore(db),
        CosmosAssessmentStore(db),
        CosmosSubmissionStore(db),
        CosmosDraftAnswerStore(db),
        CosmosCodingStore(db),
        CosmosUserStore(db),
        executor or get_executor(),
        mode="cosmos",
    )


async def build_services_from_env() -> Services:
    if not COSMOS_DB_ENDPOINT:
        logger.warning("COSMOS_DB_ENDPOINT not provided, running in development mode with in-memory stores")
        return build_in_memory_services()
    try:
        return await build_cosmos_services(COSMOS_DB_ENDPOINT)
    except Exception as e:
        logger.error(f"Cosmos DB connection failed: {e}")
        logger.warning("Running in development mode with in-memory stores")
        return build_in_memory_services()


def get_services(request: Request) -> Services:
    """Services dependency for routers"""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return services
