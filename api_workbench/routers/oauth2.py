"""
OAuth2 token flow API routes.

Each route returns the token set; storing it (for example with
``OAuth2Config.with_tokens``) is left to the caller.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..schemas.auth import OAuth2TokenResponse
from ..schemas.oauth2 import OAuth2FlowRequest
from ..services.environment_store import load_environment
from ..workbench import Workbench, get_workbench


router = APIRouter(prefix="/api/oauth2", tags=["oauth2"])


@router.post("/authorize", response_model=OAuth2TokenResponse)
async def authorize(
    payload: OAuth2FlowRequest,
    db: Session = Depends(get_db),
    workbench: Workbench = Depends(get_workbench),
):
    """Run the authorization code flow; opens the user's browser."""
    environment = load_environment(db, payload.environment, payload.environment_id)
    return await workbench.start_auth_code_flow(payload.config, environment)


@router.post("/client-credentials", response_model=OAuth2TokenResponse)
async def client_credentials(
    payload: OAuth2FlowRequest,
    db: Session = Depends(get_db),
    workbench: Workbench = Depends(get_workbench),
):
    environment = load_environment(db, payload.environment, payload.environment_id)
    return await workbench.client_credentials_flow(payload.config, environment)


@router.post("/refresh", response_model=OAuth2TokenResponse)
async def refresh(
    payload: OAuth2FlowRequest,
    db: Session = Depends(get_db),
    workbench: Workbench = Depends(get_workbench),
):
    environment = load_environment(db, payload.environment, payload.environment_id)
    return await workbench.refresh_token(payload.config, environment)
