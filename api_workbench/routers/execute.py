"""
Request execution API routes.

Runs HTTP, GraphQL and gRPC requests through the pipeline and exposes
cancellation, GraphQL introspection and proto schema loading.
"""

import httpx
from fastapi import APIRouter, Depends, status
from fastapi.responses import Response as RawResponse
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import WorkbenchError
from ..schemas.execute import ExecuteRequest, IntrospectRequest, Response
from ..schemas.grpc import LoadSchemaRequest, SchemaInfo
from ..services.environment_store import load_environment, save_environment_updates
from ..workbench import Workbench, get_workbench


router = APIRouter(prefix="/api", tags=["execute"])


@router.post("/execute", response_model=Response)
async def execute_request(
    payload: ExecuteRequest,
    db: Session = Depends(get_db),
    workbench: Workbench = Depends(get_workbench),
):
    """
    Execute a request and return the response.

    When the environment comes from ``environment_id``, environment updates
    made by the scripts are written back to the stored environment.

    Raises:
        RequestCancelledError: 499 if the request was cancelled while in flight
    """
    environment = load_environment(db, payload.environment, payload.environment_id)
    response = await workbench.send(payload.request, environment)

    if payload.environment is None and payload.environment_id is not None:
        updates: dict[str, str] = {}
        for result in (response.pre_request_script_result, response.test_script_result):
            if result is not None:
                updates.update(result.environment_updates)
        save_environment_updates(db, payload.environment_id, updates)

    return response


@router.post("/execute/{request_id}/cancel")
async def cancel_request(request_id: str, workbench: Workbench = Depends(get_workbench)):
    """Cancel an in-flight request. ``cancelled`` is false if nothing was running."""
    return {"cancelled": workbench.cancel(request_id)}


@router.post("/graphql/introspect")
async def introspect_schema(
    payload: IntrospectRequest,
    db: Session = Depends(get_db),
    workbench: Workbench = Depends(get_workbench),
):
    """Run the GraphQL introspection query against ``url`` and return the result."""
    environment = load_environment(db, payload.environment, payload.environment_id)
    try:
        text = await workbench.introspect(payload.url, payload.headers, environment)
    except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
        raise WorkbenchError(
            detail=f"Introspection failed: {e}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="INTROSPECTION_FAILED",
        ) from e
    return RawResponse(content=text, media_type="application/json")


@router.post("/grpc/schemas", response_model=SchemaInfo)
def load_proto_schema(payload: LoadSchemaRequest, workbench: Workbench = Depends(get_workbench)):
    """
    Compile a .proto file and list its services and methods.

    Raises:
        SchemaLoadError: 400 if the file is missing or does not compile
    """
    return workbench.load_schema(payload.path)


@router.delete("/grpc/schemas", status_code=status.HTTP_204_NO_CONTENT)
def clear_proto_schemas(workbench: Workbench = Depends(get_workbench)):
    """Drop every cached schema."""
    workbench.clear_schema_cache()
    return None
