"""Rotation endpoints.

Endpoints:
    GET   /api/rotation/accounts                      - Live accounts with usage
    GET   /api/rotation/candidates                    - Best target and alternatives
    POST  /api/rotation/refresh                       - Start a refresh cycle
    POST  /api/rotation/switch                        - Activate an account
    PUT   /api/rotation/accounts/{account_id}/priority - Set pool priority
    GET   /api/rotation/settings                      - Rotation settings
    PATCH /api/rotation/settings                      - Update rotation settings
"""

from typing import cast

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from starlette import status
from structlog import get_logger

from code_revolver.config.rotation import AutoSwitchConfig, RotationConfig
from code_revolver.exceptions import (
    AccountNotFoundError,
    ActivationError,
    ConfigurationError,
)
from code_revolver.rotation.controller import RotationController
from code_revolver.rotation.models import Account


logger = get_logger(__name__)

router = APIRouter(prefix="/api/rotation", tags=["rotation"])


# ============================================================================
# Request/Response Models
# ============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UsageWindowResponse(_CamelModel):
    used_percent: float
    resets_at: int | None = None
    window_minutes: int | None = None


class UsageResponse(_CamelModel):
    primary_window: UsageWindowResponse | None = None
    secondary_window: UsageWindowResponse | None = None
    plan_type: str | None = None


class AccountResponse(_CamelModel):
    """One account in the live set."""

    id: str
    name: str
    file_path: str
    email: str
    plan_type: str
    subscription_end: str | None = None
    is_active: bool
    is_token_expired: bool
    priority: int
    usage: UsageResponse | None = None
    last_usage_update: int | None = Field(
        default=None, description="Unix ms of the last fetch attempt or cache seed"
    )

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        data = account.to_dict()
        data["priority"] = account.priority
        return cls.model_validate(data)


class AccountsResponse(_CamelModel):
    phase: str
    cycle: int
    accounts_dir: str
    accounts: list[AccountResponse]


class CandidatesResponse(_CamelModel):
    best: AccountResponse | None = None
    ranked: list[AccountResponse]


class SwitchRequest(_CamelModel):
    file_path: str = Field(min_length=1)


class SwitchResponse(_CamelModel):
    success: bool
    message: str
    account: AccountResponse


class PriorityRequest(_CamelModel):
    priority: float


class PriorityResponse(_CamelModel):
    account_id: str
    priority: int


class SettingsResponse(_CamelModel):
    auto_check: bool
    check_interval: int
    auto_switch: AutoSwitchConfig

    @classmethod
    def from_config(cls, config: RotationConfig) -> "SettingsResponse":
        return cls(
            auto_check=config.auto_check,
            check_interval=config.check_interval,
            auto_switch=config.auto_switch,
        )


class SettingsUpdate(_CamelModel):
    auto_check: bool | None = None
    check_interval: int | None = Field(default=None, ge=0)
    enable_auto_switch: bool | None = None
    auto_switch_threshold: float | None = None


# ============================================================================
# Helpers
# ============================================================================


def get_controller_from_request(request: Request) -> RotationController:
    """Get the rotation controller from app state.

    Raises:
        HTTPException: If the controller is not available
    """
    controller = getattr(request.app.state, "rotation_controller", None)
    if controller is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Rotation controller not initialized",
        )
    return cast(RotationController, controller)


def _accounts_response(controller: RotationController) -> AccountsResponse:
    return AccountsResponse(
        phase=controller.phase.value,
        cycle=controller.cycle,
        accounts_dir=controller.accounts_dir,
        accounts=[AccountResponse.from_account(a) for a in controller.accounts],
    )


# ============================================================================
# API Endpoints
# ============================================================================


@router.get("/accounts", response_model=AccountsResponse)
async def list_accounts(request: Request) -> AccountsResponse:
    """List the live account set in display order."""
    return _accounts_response(get_controller_from_request(request))


@router.get("/candidates", response_model=CandidatesResponse)
async def get_candidates(request: Request, limit: int = 4) -> CandidatesResponse:
    """Best switch target plus the top alternatives to the active account."""
    controller = get_controller_from_request(request)
    best = controller.best_switch_target()
    return CandidatesResponse(
        best=AccountResponse.from_account(best) if best else None,
        ranked=[
            AccountResponse.from_account(a) for a in controller.ranked_candidates(limit)
        ],
    )


@router.post(
    "/refresh",
    response_model=AccountsResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def refresh_accounts(request: Request) -> AccountsResponse:
    """Start a refresh cycle; usage continues to load in the background."""
    controller = get_controller_from_request(request)
    await controller.refresh()
    return _accounts_response(controller)


@router.post("/switch", response_model=SwitchResponse)
async def switch_account(request: Request, body: SwitchRequest) -> SwitchResponse:
    """Activate an account.

    Raises:
        HTTPException 404: Unknown account
        HTTPException 502: The account store failed to activate it
    """
    controller = get_controller_from_request(request)
    try:
        target = await controller.switch_account(body.file_path)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    except ActivationError as e:
        logger.warning("switch_request_failed", file_path=body.file_path, error=str(e))
        raise HTTPException(status_code=e.status_code, detail=e.message) from e

    current = controller.get_account(target.key) or target
    return SwitchResponse(
        success=True,
        message="Account switched",
        account=AccountResponse.from_account(current),
    )


@router.put("/accounts/{account_id}/priority", response_model=PriorityResponse)
async def set_priority(
    request: Request, account_id: str, body: PriorityRequest
) -> PriorityResponse:
    """Set an account's pool priority. Values are clamped to 1-10."""
    controller = get_controller_from_request(request)
    metadata = controller.set_priority(account_id, body.priority)
    return PriorityResponse(account_id=account_id, priority=metadata.priority)


@router.get("/settings", response_model=SettingsResponse)
async def get_settings(request: Request) -> SettingsResponse:
    """Current rotation settings."""
    return SettingsResponse.from_config(get_controller_from_request(request).config)


@router.patch("/settings", response_model=SettingsResponse)
async def update_settings(request: Request, body: SettingsUpdate) -> SettingsResponse:
    """Update auto-check and auto-switch settings."""
    controller = get_controller_from_request(request)

    changes: dict[str, object] = {}
    if body.auto_check is not None:
        changes["auto_check"] = body.auto_check
    if body.check_interval is not None:
        changes["check_interval"] = body.check_interval
    auto_switch: dict[str, object] = {}
    if body.enable_auto_switch is not None:
        auto_switch["enabled"] = body.enable_auto_switch
    if body.auto_switch_threshold is not None:
        auto_switch["threshold_percent"] = body.auto_switch_threshold
    if auto_switch:
        changes["auto_switch"] = auto_switch

    if changes:
        try:
            controller.update_config(**changes)
        except ConfigurationError as e:
            raise HTTPException(status_code=e.status_code, detail=e.message) from e
    return SettingsResponse.from_config(controller.config)
