"""Request-scoped access to the services the app owns (see server.lifespan)."""
import os
import uuid

from fastapi import HTTPException, Request

from services.chain_client import ChainClient
from services.statement_classifier import StatementClassifier
from services.unlock_service import UnlockService

TRUST_FORWARDED_FOR = os.getenv("TRUST_FORWARDED_FOR", "false").strip().lower() == "true"


def get_unlock_service(request: Request) -> UnlockService:
    return request.app.state.unlock_service


def get_statement_classifier(request: Request) -> StatementClassifier:
    return request.app.state.statement_classifier


def get_chain_client(request: Request) -> ChainClient:
    return request.app.state.chain_client


def client_ip(request: Request) -> str:
    """Rate-limit key. X-Forwarded-For is client-controlled, so it is read only behind a trusted proxy."""
    if TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # The proxy appends the address it saw; earlier entries are whatever the client sent
            return forwarded.split(",")[-1].strip()
    return request.client.host if request.client else "unknown"


def api_error(status_code: int, error_code: str, message: str) -> HTTPException:
    """HTTPException with the structured detail every route returns on failure."""
    return HTTPException(
        status_code=status_code,
        detail={
            "error_code": error_code,
            "message": message,
            "request_id": str(uuid.uuid4()),
        },
    )
