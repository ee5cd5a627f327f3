"""
Environment management API routes.

Provides CRUD operations for environments and variables. At most one
environment is active at any time: activating one deactivates all others.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import ResourceNotFoundError
from ..models.environment import Environment, Variable
from ..schemas.environment import (
    EnvironmentCreate,
    EnvironmentUpdate,
    EnvironmentWithVariables,
    VariableCreate,
    VariableUpdate,
    VariableResponse,
)
from ..services.environment_store import get_environment_or_404


router = APIRouter(prefix="/api/environments", tags=["environments"])


def deactivate_all(db: Session, except_id: int | None = None) -> None:
    query = db.query(Environment).filter(Environment.is_active == True)  # noqa: E712
    if except_id is not None:
        query = query.filter(Environment.id != except_id)
    query.update({"is_active": False})


def get_variable_or_404(db: Session, variable_id: int) -> Variable:
    db_variable = db.query(Variable).filter(Variable.id == variable_id).first()
    if db_variable is None:
        raise ResourceNotFoundError("Variable", variable_id)
    return db_variable


# Environment endpoints

@router.post("", response_model=EnvironmentWithVariables, status_code=status.HTTP_201_CREATED)
def create_environment(environment_data: EnvironmentCreate, db: Session = Depends(get_db)):
    """
    Create a new environment with optional initial variables.

    If is_active is True, all other environments will be deactivated.

    Args:
        environment_data: Environment data including optional variables
        db: Database session

    Returns:
        The created environment with assigned ID, timestamps, and variables
    """
    if environment_data.is_active:
        deactivate_all(db)

    db_environment = Environment(
        name=environment_data.name,
        is_active=environment_data.is_active,
    )
    db.add(db_environment)
    db.flush()  # Get the ID before adding variables

    for var_data in environment_data.variables:
        db.add(Variable(
            environment_id=db_environment.id,
            key=var_data.key,
            value=var_data.value,
            enabled=var_data.enabled,
        ))

    db.commit()
    db.refresh(db_environment)
    return db_environment


@router.get("", response_model=list[EnvironmentWithVariables])
def list_environments(db: Session = Depends(get_db)):
    """List all environments with their variables."""
    return db.query(Environment).order_by(Environment.id).all()


@router.get("/{environment_id}", response_model=EnvironmentWithVariables)
def get_environment(environment_id: int, db: Session = Depends(get_db)):
    """
    Get an environment by ID with all its variables.

    Raises:
        ResourceNotFoundError: 404 if environment not found
    """
    return get_environment_or_404(db, environment_id)


@router.put("/{environment_id}", response_model=EnvironmentWithVariables)
def update_environment(
    environment_id: int,
    environment_data: EnvironmentUpdate,
    db: Session = Depends(get_db)
):
    """
    Update an existing environment.

    If is_active is set to True, all other environments will be deactivated.

    Raises:
        ResourceNotFoundError: 404 if environment not found
    """
    db_environment = get_environment_or_404(db, environment_id)

    update_data = environment_data.model_dump(exclude_unset=True)
    if update_data.get("is_active") is True:
        deactivate_all(db, except_id=environment_id)

    for field, value in update_data.items():
        setattr(db_environment, field, value)

    db.commit()
    db.refresh(db_environment)
    return db_environment


@router.delete("/{environment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_environment(environment_id: int, db: Session = Depends(get_db)):
    """Delete an environment and, by cascade, its variables."""
    db.delete(get_environment_or_404(db, environment_id))
    db.commit()
    return None


@router.post("/{environment_id}/activate", response_model=EnvironmentWithVariables)
def activate_environment(environment_id: int, db: Session = Depends(get_db)):
    """
    Set an environment as the active environment.

    Every other environment is deactivated in the same transaction.

    Raises:
        ResourceNotFoundError: 404 if environment not found
    """
    db_environment = get_environment_or_404(db, environment_id)

    deactivate_all(db)
    db_environment.is_active = True
    db.commit()
    db.refresh(db_environment)
    return db_environment


# Variable endpoints

@router.post("/{environment_id}/variables", response_model=VariableResponse, status_code=status.HTTP_201_CREATED)
def add_variable(
    environment_id: int,
    variable_data: VariableCreate,
    db: Session = Depends(get_db)
):
    """
    Append a variable to an environment.

    Raises:
        ResourceNotFoundError: 404 if environment not found
    """
    get_environment_or_404(db, environment_id)

    db_variable = Variable(
        environment_id=environment_id,
        key=variable_data.key,
        value=variable_data.value,
        enabled=variable_data.enabled,
    )
    db.add(db_variable)
    db.commit()
    db.refresh(db_variable)
    return db_variable


@router.put("/variables/{variable_id}", response_model=VariableResponse)
def update_variable(
    variable_id: int,
    variable_data: VariableUpdate,
    db: Session = Depends(get_db)
):
    """Update the key, value or enabled flag of a variable."""
    db_variable = get_variable_or_404(db, variable_id)

    update_data = variable_data.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        setattr(db_variable, field, value)

    db.commit()
    db.refresh(db_variable)
    return db_variable


@router.delete("/variables/{variable_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_variable(variable_id: int, db: Session = Depends(get_db)):
    db.delete(get_variable_or_404(db, variable_id))
    db.commit()
    return None
