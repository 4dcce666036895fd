"""Edit operation log.

Append-only, per-project ledger of operation batches. Each accepted batch
bumps the project's ``current_version`` by one and is stored under that
version; render workers replay the ledger to rebuild the effect chain.
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import exc as sa_exc
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from hybridedit.exceptions import (
    ConcurrentModificationError,
    IntegrityError,
    InvalidVersionError,
    ProjectNotFoundError,
    ValidationError,
)
from hybridedit.models.edit_operation import EditOperation
from hybridedit.models.project import Project
from hybridedit.services.project_service import ProjectService

logger = logging.getLogger(__name__)


def validate_ops(ops: Any) -> list[dict[str, Any]]:
    """Check that ``ops`` is a non-empty list of ``{type, ...}`` descriptors."""
    if not isinstance(ops, list) or not ops:
        raise ValidationError("ops must be a non-empty array", field="ops")

    for index, op in enumerate(ops):
        if not isinstance(op, dict):
            raise ValidationError(f"ops[{index}] must be an object", field=f"ops[{index}]")
        op_type = op.get("type")
        if not isinstance(op_type, str) or not op_type:
            raise ValidationError(
                f"ops[{index}].type must be a non-empty string", field=f"ops[{index}].type"
            )
        if op_type == "effect":
            effect = op.get("effect")
            if not isinstance(effect, str) or not effect:
                raise ValidationError(
                    f"ops[{index}].effect must be a non-empty string", field=f"ops[{index}].effect"
                )
        # "params" is the legacy spelling of "parameters"
        for key in ("parameters", "params"):
            value = op.get(key)
            if value is not None and not isinstance(value, dict):
                raise ValidationError(
                    f"ops[{index}].{key} must be an object", field=f"ops[{index}].{key}"
                )
    return ops


class EditLog:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.projects = ProjectService(db)

    async def append(self, project_id: UUID, ops: Any, user_id: str) -> EditOperation:
        """Append one batch of operations as the project's next version.

        The version bump is a single ``UPDATE ... RETURNING`` executed in the
        same transaction as the insert, so concurrent appenders serialize on
        the project row and always get distinct, gapless versions.

        Raises:
            ValidationError: If ``ops`` is empty or malformed
            ProjectNotFoundError: If the project does not exist
            AuthorizationError: If the caller does not own the project
            ConcurrentModificationError: If the version was claimed concurrently
        """
        ops = validate_ops(ops)
        project = await self.projects.get_owned_project(project_id, user_id)

        result = await self.db.execute(
            update(Project)
            .where(Project.id == project_id)
            .values(current_version=Project.current_version + 1)
            .returning(Project.current_version)
            .execution_options(synchronize_session=False)
        )
        version = result.scalar_one_or_none()
        if version is None:
            raise ProjectNotFoundError(project_id)
        set_committed_value(project, "current_version", version)

        operation = EditOperation(
            project_id=project_id,
            version=version,
            ops=ops,
            user_id=user_id,
        )
        self.db.add(operation)
        try:
            await self.db.flush()
        except sa_exc.IntegrityError as e:
            logger.warning(f"Version {version} already taken for project {project_id}: {e}")
            raise ConcurrentModificationError(
                f"Version {version} of project {project_id} was claimed by another request"
            ) from e

        logger.info(f"Appended {len(ops)} ops to project {project_id} as version {version}")
        return operation

    async def get_operations_up_to_version(
        self, project_id: UUID, version: int
    ) -> list[EditOperation]:
        """Return every batch with ``version <= version`` in ascending order.

        Raises:
            IntegrityError: If the stored prefix has a gap or a duplicate
        """
        if version < 0:
            raise InvalidVersionError()
        project = await self.projects.get_project(project_id)

        result = await self.db.execute(
            select(EditOperation)
            .where(EditOperation.project_id == project_id, EditOperation.version <= version)
            .order_by(EditOperation.version.asc())
        )
        operations = list(result.scalars().all())

        expected = list(range(1, min(version, project.current_version) + 1))
        found = [op.version for op in operations]
        if found != expected:
            logger.error(
                f"Edit log for project {project_id} is corrupt up to v{version}: "
                f"expected {len(expected)} versions, found {found}"
            )
            raise IntegrityError(
                f"Edit log for project {project_id} has a gap or duplicate up to version {version}"
            )
        return operations

    async def get_latest_version(self, project_id: UUID) -> int:
        project = await self.projects.get_project(project_id)
        return project.current_version

    async def list_operations(
        self, project_id: UUID, version: int | None = None
    ) -> tuple[int, list[EditOperation]]:
        """Operations for the query endpoint, optionally truncated to ``version``."""
        current_version = await self.get_latest_version(project_id)
        if version is None:
            version = current_version
        elif version < 0 or version > current_version:
            raise InvalidVersionError(version, current_version)
        return current_version, await self.get_operations_up_to_version(project_id, version)
