"""HTTP route definitions for the service."""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.schemas import (
    IngestResponse,
    LoginResponse,
    ProofResponse,
    ReadingIn,
    ReadingList,
    ReadingOut,
    SensorOut,
    StatusResponse,
    UserForm,
)
from models.records import Claims
from models.time_range import TimeRange
from services.errors import (
    ClientError,
    Forbidden,
    InvalidCredentials,
    ReadingNotFound,
    ServiceError,
    Unauthenticated,
    UsernameConflict,
)
from services.runtime import Services, build_default_services

logger = logging.getLogger(__name__)

router = APIRouter()
_bearer = HTTPBearer(auto_error=False)

_INTERNAL_ERROR = "Internal server error"


def get_services() -> Services:
    return build_default_services()


def _to_http(exc: ServiceError) -> HTTPException:
    """Map a service failure to a response; internal detail stays in the log."""
    if isinstance(exc, (Unauthenticated, InvalidCredentials)):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        )
    if isinstance(exc, Forbidden):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, ReadingNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, UsernameConflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ClientError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.error("Request failed", extra={"reason": f"{type(exc).__name__}: {exc}"})
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=_INTERNAL_ERROR,
    )


def get_claims(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    services: Services = Depends(get_services),
) -> Claims:
    """Verify the bearer token and attach its claims to the request."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise _to_http(Unauthenticated())
    try:
        claims = services.tokens.verify(credentials.credentials)
    except Unauthenticated as exc:
        raise _to_http(exc) from exc
    request.state.claims = claims
    return claims


@router.get("/", summary="Welcome message.", response_model=StatusResponse)
async def root() -> StatusResponse:
    return StatusResponse(detail="Welcome to the Pollution Tracker API")


@router.get("/health", summary="Database health check.", response_model=StatusResponse)
def healthcheck(services: Services = Depends(get_services)) -> StatusResponse:
    try:
        services.store.health_check()
    except ServiceError as exc:
        raise _to_http(exc) from exc
    return StatusResponse(detail="Database is up and running")


@router.post(
    "/users/register",
    status_code=status.HTTP_201_CREATED,
    response_model=StatusResponse,
    summary="Create a user account.",
)
def register_user(
    form: UserForm,
    services: Services = Depends(get_services),
) -> StatusResponse:
    try:
        services.accounts.register(form.username, form.password)
    except ServiceError as exc:
        raise _to_http(exc) from exc
    return StatusResponse(status="created")


@router.post("/users/login", response_model=LoginResponse, summary="Exchange credentials for a token.")
def login_user(
    form: UserForm,
    services: Services = Depends(get_services),
) -> LoginResponse:
    try:
        result = services.accounts.login(form.username, form.password)
    except ServiceError as exc:
        raise _to_http(exc) from exc
    return LoginResponse(token=result.token, username=result.username, role=result.role)


@router.post(
    "/sensors/ingest",
    response_model=IngestResponse,
    summary="Store a reading and anchor its fingerprint on the ledger.",
)
def ingest_reading(
    payload: ReadingIn,
    services: Services = Depends(get_services),
) -> IngestResponse:
    try:
        receipt = services.ingestion.ingest(payload.to_payload())
    except ServiceError as exc:
        raise _to_http(exc) from exc
    return IngestResponse(
        reading_id=receipt.reading_id,
        fingerprint=receipt.fingerprint,
        signature=receipt.signature,
    )


@router.get("/sensors", response_model=List[SensorOut], summary="Sensors owned by the caller.")
def list_sensors(
    claims: Claims = Depends(get_claims),
    services: Services = Depends(get_services),
) -> List[SensorOut]:
    try:
        sensors = services.ingestion.list_sensors(claims)
    except ServiceError as exc:
        raise _to_http(exc) from exc
    return [SensorOut.from_sensor(sensor) for sensor in sensors]


@router.get(
    "/sensors/{sensor_id}/readings",
    response_model=ReadingList,
    summary="Readings of an owned sensor within a time window, oldest first.",
)
def list_readings(
    sensor_id: int,
    range_: Optional[TimeRange] = Query(None, alias="range"),
    claims: Claims = Depends(get_claims),
    services: Services = Depends(get_services),
) -> ReadingList:
    try:
        readings = services.ingestion.list_readings(claims, sensor_id, range_)
    except ServiceError as exc:
        raise _to_http(exc) from exc
    return ReadingList(
        sensor_id=sensor_id,
        readings=[ReadingOut.from_reading(reading) for reading in readings],
    )


@router.get(
    "/sensors/{sensor_id}/readings/{reading_id}/proof",
    response_model=ProofResponse,
    summary="Check a stored reading against its ledger transaction.",
)
def reading_proof(
    sensor_id: int,
    reading_id: int,
    claims: Claims = Depends(get_claims),
    services: Services = Depends(get_services),
) -> ProofResponse:
    try:
        check = services.ingestion.verify_reading(claims, sensor_id, reading_id)
    except ServiceError as exc:
        raise _to_http(exc) from exc
    return ProofResponse(
        reading=ReadingOut.from_reading(check.reading),
        fingerprint=check.fingerprint,
        signature=check.signature,
        verified=check.verified,
        state=check.state,
    )
