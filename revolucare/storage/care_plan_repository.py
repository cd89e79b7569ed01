"""Repository for care plan CRUD, versioning and approval."""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from revolucare.exceptions import ConflictError
from revolucare.models.care_plan import (
    CarePlan,
    CarePlanFilter,
    CarePlanVersion,
    GoalInput,
    InterventionInput,
)
from revolucare.models.enums import PlanStatus
from revolucare.storage.contention import is_write_contention
from revolucare.storage.models import (
    CarePlanModel,
    CarePlanGoalModel,
    CarePlanInterventionModel,
    CarePlanVersionModel,
)
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)


def _conflict(care_plan_id: str, expected_version: int) -> ConflictError:
    return ConflictError(
        "Care plan was modified concurrently; reload and retry",
        details={"care_plan_id": care_plan_id, "expected_version": expected_version},
    )


class CarePlanRepository:
    """
    Repository for care plan database operations.

    Every mutation is a conditional write on ``version`` so two writers
    starting from the same version cannot both succeed.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: SQLAlchemy async session
        """
        self.session = session

    async def create(self, care_plan: CarePlan) -> CarePlan:
        """Persist a new care plan with its goals and interventions."""
        model = CarePlanModel(
            id=care_plan.id,
            client_id=care_plan.client_id,
            created_by_id=care_plan.created_by_id,
            title=care_plan.title,
            description=care_plan.description,
            status=care_plan.status.value,
            confidence_score=care_plan.confidence_score,
            version=care_plan.version,
            created_at=care_plan.created_at,
            updated_at=care_plan.updated_at,
        )
        model.goals = [
            CarePlanGoalModel(
                id=goal.id,
                position=position,
                description=goal.description,
                target_date=goal.target_date,
                status=goal.status.value,
                measures=list(goal.measures),
            )
            for position, goal in enumerate(care_plan.goals)
        ]
        model.interventions = [
            CarePlanInterventionModel(
                id=item.id,
                position=position,
                description=item.description,
                frequency=item.frequency,
                duration=item.duration,
                responsible_party=item.responsible_party,
                status=item.status.value,
            )
            for position, item in enumerate(care_plan.interventions)
        ]
        self.session.add(model)
        await self.session.flush()

        logger.info("Care plan created", care_plan_id=model.id, client_id=model.client_id)
        return await self.find_by_id(model.id)

    async def find_by_id(self, care_plan_id: str) -> Optional[CarePlan]:
        result = await self.session.execute(
            select(CarePlanModel)
            .where(CarePlanModel.id == care_plan_id)
            .options(selectinload(CarePlanModel.goals), selectinload(CarePlanModel.interventions))
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return CarePlan.model_validate(model.to_dict()) if model else None

    async def find_all(self, filter: CarePlanFilter) -> Tuple[List[CarePlan], int]:
        """
        List care plans with filtering and pagination.

        Returns:
            (page of care plans, total matching count)
        """
        conditions = []
        if filter.client_id:
            conditions.append(CarePlanModel.client_id == filter.client_id)
        if filter.status:
            conditions.append(CarePlanModel.status == filter.status.value)
        if filter.created_by_id:
            conditions.append(CarePlanModel.created_by_id == filter.created_by_id)

        count_result = await self.session.execute(
            select(func.count(CarePlanModel.id)).where(*conditions)
        )
        total = count_result.scalar_one()

        result = await self.session.execute(
            select(CarePlanModel)
            .where(*conditions)
            .options(selectinload(CarePlanModel.goals), selectinload(CarePlanModel.interventions))
            .order_by(CarePlanModel.updated_at.desc(), CarePlanModel.id)
            .limit(filter.limit)
            .offset((filter.page - 1) * filter.limit)
            .execution_options(populate_existing=True)
        )
        plans = [CarePlan.model_validate(m.to_dict()) for m in result.scalars().all()]
        return plans, total

    async def update(
        self,
        care_plan_id: str,
        expected_version: int,
        fields: Dict[str, Any],
        changes: Dict[str, Any],
        actor_id: str,
        goals: Optional[Sequence[GoalInput]] = None,
        interventions: Optional[Sequence[InterventionInput]] = None,
    ) -> CarePlan:
        """
        Apply a content update as version ``expected_version + 1``.

        Args:
            care_plan_id: Care plan ID
            expected_version: Version the caller read
            fields: Scalar column values to set
            changes: Diff recorded in the version row
            actor_id: Who made the change
            goals: Full replacement goal set, or None to leave goals alone
            interventions: Full replacement intervention set, or None

        Raises:
            ConflictError: If the stored version is no longer expected_version
        """
        new_version = expected_version + 1
        version_id = str(uuid4())
        values = {key: getattr(value, "value", value) for key, value in fields.items()}
        values.update(
            version=new_version,
            previous_version_id=version_id,
            updated_at=datetime.now(timezone.utc),
        )

        await self._conditional_update(care_plan_id, expected_version, values)

        if goals is not None:
            await self._replace_goals(care_plan_id, goals)
        if interventions is not None:
            await self._replace_interventions(care_plan_id, interventions)

        await self.create_version(
            care_plan_id=care_plan_id,
            version=new_version,
            changes=changes,
            created_by_id=actor_id,
            version_id=version_id,
        )

        logger.info("Care plan updated", care_plan_id=care_plan_id, version=new_version)
        return await self.find_by_id(care_plan_id)

    async def update_status(
        self,
        care_plan_id: str,
        expected_version: int,
        new_status: PlanStatus,
    ) -> CarePlan:
        """Change status without creating a new content version."""
        await self._conditional_update(
            care_plan_id,
            expected_version,
            {"status": new_status.value, "updated_at": datetime.now(timezone.utc)},
        )
        logger.info("Care plan status changed", care_plan_id=care_plan_id, status=new_status.value)
        return await self.find_by_id(care_plan_id)

    async def approve(
        self,
        care_plan_id: str,
        expected_version: int,
        approver_id: str,
        approval_notes: Optional[str],
    ) -> CarePlan:
        """
        Mark a DRAFT or IN_REVIEW plan as APPROVED.

        The status precondition is part of the conditional write, so a plan
        that left the approvable states after it was read is never approved.
        """
        now = datetime.now(timezone.utc)
        await self._conditional_update(
            care_plan_id,
            expected_version,
            {
                "status": PlanStatus.APPROVED.value,
                "approved_by_id": approver_id,
                "approved_at": now,
                "approval_notes": approval_notes,
                "updated_at": now,
            },
            allowed_statuses=(PlanStatus.DRAFT, PlanStatus.IN_REVIEW),
        )
        logger.info("Care plan approved", care_plan_id=care_plan_id, approver_id=approver_id)
        return await self.find_by_id(care_plan_id)

    async def create_version(
        self,
        care_plan_id: str,
        version: int,
        changes: Dict[str, Any],
        created_by_id: str,
        version_id: Optional[str] = None,
    ) -> CarePlanVersion:
        """Append a version record."""
        model = CarePlanVersionModel(
            id=version_id or str(uuid4()),
            care_plan_id=care_plan_id,
            version=version,
            changes=changes,
            created_by_id=created_by_id,
            created_at=datetime.now(timezone.utc),
        )
        self.session.add(model)
        try:
            await self.session.flush()
        except IntegrityError as e:
            raise ConflictError(
                "Version already recorded for this care plan",
                details={"care_plan_id": care_plan_id, "version": version},
            ) from e
        return CarePlanVersion.model_validate(model.to_dict())

    async def get_version_history(self, care_plan_id: str) -> List[CarePlanVersion]:
        """Return version records in ascending version order."""
        result = await self.session.execute(
            select(CarePlanVersionModel)
            .where(CarePlanVersionModel.care_plan_id == care_plan_id)
            .order_by(CarePlanVersionModel.version.asc())
        )
        return [CarePlanVersion.model_validate(m.to_dict()) for m in result.scalars().all()]

    async def delete(self, care_plan_id: str, expected_version: Optional[int] = None) -> bool:
        """
        Hard-delete a care plan with goals, interventions and versions.

        Returns:
            True if deleted, False if not found

        Raises:
            ConflictError: If expected_version is given and no longer current
        """
        try:
            for child in (CarePlanGoalModel, CarePlanInterventionModel, CarePlanVersionModel):
                await self.session.execute(
                    delete(child).where(child.care_plan_id == care_plan_id)
                )
            stmt = delete(CarePlanModel).where(CarePlanModel.id == care_plan_id)
            if expected_version is not None:
                stmt = stmt.where(CarePlanModel.version == expected_version)
            result = await self.session.execute(stmt)
        except OperationalError as e:
            if not is_write_contention(e):
                raise
            raise _conflict(care_plan_id, expected_version or 0) from e

        if result.rowcount == 0:
            if expected_version is not None and await self._exists(care_plan_id):
                raise _conflict(care_plan_id, expected_version)
            return False

        logger.info("Care plan deleted", care_plan_id=care_plan_id)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _exists(self, care_plan_id: str) -> bool:
        result = await self.session.execute(
            select(func.count(CarePlanModel.id)).where(CarePlanModel.id == care_plan_id)
        )
        return result.scalar_one() > 0

    async def _conditional_update(
        self,
        care_plan_id: str,
        expected_version: int,
        values: Dict[str, Any],
        allowed_statuses: Optional[Sequence[PlanStatus]] = None,
    ) -> None:
        """UPDATE ... WHERE id = :id AND version = :expected [AND status IN (...)]."""
        stmt = (
            update(CarePlanModel)
            .where(CarePlanModel.id == care_plan_id)
            .where(CarePlanModel.version == expected_version)
        )
        if allowed_statuses:
            stmt = stmt.where(CarePlanModel.status.in_([s.value for s in allowed_statuses]))
        stmt = stmt.values(**values).execution_options(synchronize_session=False)

        try:
            result = await self.session.execute(stmt)
        except OperationalError as e:
            if not is_write_contention(e):
                raise
            raise _conflict(care_plan_id, expected_version) from e

        if result.rowcount != 1:
            raise _conflict(care_plan_id, expected_version)

    async def _replace_goals(self, care_plan_id: str, goals: Sequence[GoalInput]) -> None:
        """Upsert supplied goals by id and delete the ones left out."""
        result = await self.session.execute(
            select(CarePlanGoalModel).where(CarePlanGoalModel.care_plan_id == care_plan_id)
        )
        existing = {m.id: m for m in result.scalars().all()}
        keep = set()

        for position, goal in enumerate(goals):
            model = existing.get(goal.id) if goal.id else None
            if model is None:
                model = CarePlanGoalModel(id=goal.id or str(uuid4()), care_plan_id=care_plan_id)
                self.session.add(model)
            model.position = position
            model.description = goal.description
            model.target_date = goal.target_date
            model.status = goal.status.value
            model.measures = list(goal.measures)
            keep.add(model.id)

        for goal_id, model in existing.items():
            if goal_id not in keep:
                await self.session.delete(model)
        await self.session.flush()

    async def _replace_interventions(
        self,
        care_plan_id: str,
        interventions: Sequence[InterventionInput],
    ) -> None:
        """Upsert supplied interventions by id and delete the ones left out."""
        result = await self.session.execute(
            select(CarePlanInterventionModel)
            .where(CarePlanInterventionModel.care_plan_id == care_plan_id)
        )
        existing = {m.id: m for m in result.scalars().all()}
        keep = set()

        for position, item in enumerate(interventions):
            model = existing.get(item.id) if item.id else None
            if model is None:
                model = CarePlanInterventionModel(id=item.id or str(uuid4()), care_plan_id=care_plan_id)
                self.session.add(model)
            model.position = position
            model.description = item.description
            model.frequency = item.frequency
            model.duration = item.duration
            model.responsible_party = item.responsible_party
            model.status = item.status.value
            keep.add(model.id)

        for intervention_id, model in existing.items():
            if intervention_id not in keep:
                await self.session.delete(model)
        await self.session.flush()
