"""
Bridge between stored environments and the execution pipeline.

The pipeline only works on ``schemas.Environment`` values; these helpers load
them from the database and write script updates back.
"""

from sqlalchemy.orm import Session

from ..exceptions import ResourceNotFoundError
from ..models.environment import Environment as EnvironmentModel, Variable as VariableModel
from ..schemas.environment import Environment


def get_environment_or_404(db: Session, environment_id: int) -> EnvironmentModel:
    db_environment = db.query(EnvironmentModel).filter(EnvironmentModel.id == environment_id).first()
    if db_environment is None:
        raise ResourceNotFoundError("Environment", environment_id)
    return db_environment


def load_environment(
    db: Session,
    environment: Environment | None = None,
    environment_id: int | None = None,
) -> Environment | None:
    """
    Pick the environment for a request.

    An inline environment wins, then ``environment_id``, then the active
    stored environment. Returns None when there is none.
    """
    if environment is not None:
        return environment
    if environment_id is not None:
        return Environment.model_validate(get_environment_or_404(db, environment_id))

    active = db.query(EnvironmentModel).filter(EnvironmentModel.is_active == True).first()  # noqa: E712
    return Environment.model_validate(active) if active is not None else None


def save_environment_updates(db: Session, environment_id: int, updates: dict[str, str]) -> None:
    """
    Persist script environment updates.

    Existing variables take the new value and are disabled when it is empty;
    unknown keys with a value are appended.
    """
    if not updates:
        return

    db_environment = get_environment_or_404(db, environment_id)
    for key, value in updates.items():
        existing = next((v for v in db_environment.variables if v.key == key), None)
        if existing is not None:
            existing.value = value
            existing.enabled = value != ""
        elif value != "":
            db_environment.variables.append(VariableModel(key=key, value=value, enabled=True))
    db.commit()
