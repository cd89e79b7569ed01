"""Care plan service - versioning, approval workflow, access control and cache coherence."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Union

from revolucare.cache.keyed_cache import KeyedCache
from revolucare.exceptions import (
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from revolucare.models.care_plan import (
    ApproveCarePlanRequest,
    CarePlan,
    CarePlanFilter,
    CarePlanGoal,
    CarePlanHistory,
    CarePlanIntervention,
    CarePlanOption,
    CarePlanPage,
    CreateCarePlanRequest,
    GoalInput,
    InterventionInput,
    UpdateCarePlanRequest,
)
from revolucare.models.enums import CarePlanEventType, PlanStatus, UserRole
from revolucare.services.notification_service import NotificationService
from revolucare.services.validation import validate_input
from revolucare.storage.care_plan_repository import CarePlanRepository
from revolucare.storage.database import Database
from revolucare.config.logging_config import get_logger

logger = get_logger(__name__)

# Client ids are non-empty, so the empty segment keys listings not scoped to one client.
ALL_CLIENTS = ""

ALLOWED_TRANSITIONS: Dict[PlanStatus, FrozenSet[PlanStatus]] = {
    PlanStatus.DRAFT: frozenset(
        {PlanStatus.IN_REVIEW, PlanStatus.APPROVED, PlanStatus.REJECTED, PlanStatus.DISCONTINUED}
    ),
    PlanStatus.IN_REVIEW: frozenset(
        {PlanStatus.DRAFT, PlanStatus.APPROVED, PlanStatus.REJECTED, PlanStatus.DISCONTINUED}
    ),
    PlanStatus.APPROVED: frozenset({PlanStatus.ACTIVE, PlanStatus.DISCONTINUED}),
    PlanStatus.ACTIVE: frozenset({PlanStatus.COMPLETED, PlanStatus.DISCONTINUED}),
    PlanStatus.COMPLETED: frozenset(),
    PlanStatus.REJECTED: frozenset(),
    PlanStatus.DISCONTINUED: frozenset(),
}

APPROVABLE_STATUSES = (PlanStatus.DRAFT, PlanStatus.IN_REVIEW)

_SCALAR_FIELDS = ("title", "description", "confidence_score", "status")
_GOAL_FIELDS = ("description", "target_date", "status", "measures")
_INTERVENTION_FIELDS = ("description", "frequency", "duration", "responsible_party", "status")

Role = Union[UserRole, str]


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return getattr(value, "value", value)


def _diff_children(
    kind: str,
    existing: Sequence[Union[CarePlanGoal, CarePlanIntervention]],
    supplied: Sequence[Union[GoalInput, InterventionInput]],
    fields: Sequence[str],
) -> Dict[str, List[Any]]:
    """
    Diff a replacement child set against the stored one.

    Returns:
        {"added": [...], "removed": [...], "modified": [...]}, lists empty when unchanged

    Raises:
        ValidationError: If an item references an id that is not on the plan
    """
    by_id = {child.id: child for child in existing}
    unknown = [item.id for item in supplied if item.id and item.id not in by_id]
    if unknown:
        raise ValidationError(
            f"Unknown {kind} id(s) in update",
            details={"field": f"{kind}s", "unknown_ids": unknown},
        )

    added = [item.description for item in supplied if not item.id]
    kept = {item.id for item in supplied if item.id}
    removed = [
        {"id": child.id, "description": child.description}
        for child in existing
        if child.id not in kept
    ]
    modified = []
    for item in supplied:
        if not item.id:
            continue
        current = by_id[item.id]
        changed = [f for f in fields if getattr(item, f) != getattr(current, f)]
        if changed:
            modified.append(
                {
                    "id": item.id,
                    "fields": {
                        f: {"from": _json_value(getattr(current, f)), "to": _json_value(getattr(item, f))}
                        for f in changed
                    },
                }
            )
    return {"added": added, "removed": removed, "modified": modified}


class CarePlanService:
    """
    Service for the care plan lifecycle once a human selects or writes a plan.

    Every mutation is access-checked, written through a conditional update
    on ``version``, followed by cache invalidation and a domain event.
    """

    def __init__(
        self,
        database: Database,
        plan_cache: KeyedCache[CarePlan],
        list_cache: KeyedCache[CarePlanPage],
        notifications: NotificationService,
    ):
        """
        Initialize care plan service.

        Args:
            database: Database holding care plans
            plan_cache: ``care-plan:{id}`` cache
            list_cache: ``client-care-plans:{clientId}:{filterHash}`` cache
            notifications: Domain event publisher
        """
        self.database = database
        self.plan_cache = plan_cache
        self.list_cache = list_cache
        self.notifications = notifications

    # ------------------------------------------------------------------
    # Access rule
    # ------------------------------------------------------------------

    @staticmethod
    def validate_access(plan: CarePlan, actor_id: str, role: Role) -> bool:
        """
        Decide whether an actor may see or change a plan.

        Administrators and case managers always pass; anyone else passes only
        as the plan's client or its creator.
        """
        try:
            role = UserRole(role)
        except ValueError:
            return False
        if role in (UserRole.ADMINISTRATOR, UserRole.CASE_MANAGER):
            return True
        return actor_id in (plan.client_id, plan.created_by_id)

    def ensure_access(self, plan: CarePlan, actor_id: str, role: Role) -> None:
        if not self.validate_access(plan, actor_id, role):
            logger.warning("Care plan access denied", care_plan_id=plan.id, actor_id=actor_id)
            raise UnauthorizedError("Not authorized to access this care plan")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def _load(self, care_plan_id: str) -> CarePlan:
        async with self.database.session() as session:
            plan = await CarePlanRepository(session).find_by_id(care_plan_id)
        if plan is None:
            raise NotFoundError(f"Care plan {care_plan_id} not found")
        return plan

    async def get_by_id(self, care_plan_id: str, actor_id: str, role: Role) -> CarePlan:
        """
        Get a care plan, read through the cache.

        Raises:
            NotFoundError: If the plan does not exist
            UnauthorizedError: If the actor fails the access rule
        """

        async def _loader() -> Optional[CarePlan]:
            async with self.database.session() as session:
                return await CarePlanRepository(session).find_by_id(care_plan_id)

        plan = await self.plan_cache.get_or_load(_loader, care_plan_id)
        if plan is None:
            raise NotFoundError(f"Care plan {care_plan_id} not found")
        self.ensure_access(plan, actor_id, role)
        return plan

    async def get_care_plans(
        self,
        actor_id: str,
        role: Role,
        filters: Optional[Union[CarePlanFilter, Mapping[str, Any]]] = None,
    ) -> CarePlanPage:
        """
        List care plans visible to the actor.

        Clients only see plans for themselves; providers only see plans they
        created. Pages are cached per (client, filter).
        """
        filters = validate_input(CarePlanFilter, filters or {}, "filter")
        try:
            role = UserRole(role)
        except ValueError:
            raise UnauthorizedError("Unknown role")

        if role == UserRole.CLIENT:
            if filters.client_id and filters.client_id != actor_id:
                raise UnauthorizedError("Clients can only list their own care plans")
            filters = filters.model_copy(update={"client_id": actor_id})
        elif role == UserRole.PROVIDER:
            filters = filters.model_copy(update={"created_by_id": actor_id})

        async def _loader() -> CarePlanPage:
            async with self.database.session() as session:
                items, total = await CarePlanRepository(session).find_all(filters)
            return CarePlanPage(items=items, total=total, page=filters.page, limit=filters.limit)

        return await self.list_cache.get_or_load(
            _loader, filters.client_id or ALL_CLIENTS, filters.fingerprint()
        )

    async def get_history(self, care_plan_id: str, actor_id: str, role: Role) -> CarePlanHistory:
        """Return the plan's version records in ascending version order."""
        async with self.database.session() as session:
            repo = CarePlanRepository(session)
            plan = await repo.find_by_id(care_plan_id)
            if plan is None:
                raise NotFoundError(f"Care plan {care_plan_id} not found")
            self.ensure_access(plan, actor_id, role)
            versions = await repo.get_version_history(care_plan_id)
        return CarePlanHistory(care_plan_id=plan.id, current_version=plan.version, versions=versions)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        created_by_id: str,
        request: Union[CreateCarePlanRequest, Mapping[str, Any]],
    ) -> CarePlan:
        """
        Create a DRAFT care plan at version 1.

        Raises:
            ValidationError: If any field violates its constraints
        """
        request = validate_input(CreateCarePlanRequest, request)
        plan = CarePlan(
            client_id=request.client_id,
            created_by_id=created_by_id,
            title=request.title,
            description=request.description,
            confidence_score=request.confidence_score,
            goals=[CarePlanGoal(**g.model_dump(exclude={"id"})) for g in request.goals],
            interventions=[
                CarePlanIntervention(**i.model_dump(exclude={"id"})) for i in request.interventions
            ],
        )

        async with self.database.session() as session:
            created = await CarePlanRepository(session).create(plan)

        await self._invalidate_lists(created.client_id)
        await self.notifications.publish(
            CarePlanEventType.CARE_PLAN_CREATED,
            {
                "care_plan_id": created.id,
                "client_id": created.client_id,
                "created_by_id": created_by_id,
                "version": created.version,
            },
        )
        logger.info("Care plan created", care_plan_id=created.id, client_id=created.client_id)
        return created

    async def create_from_option(
        self,
        client_id: str,
        created_by_id: str,
        option: CarePlanOption,
        edits: Optional[Mapping[str, Any]] = None,
    ) -> CarePlan:
        """
        Materialize a selected option as a DRAFT plan.

        ``edits`` overrides any top-level create field (title, description,
        goals, interventions). The option's confidence score is carried over.
        """
        now = datetime.now(timezone.utc)
        request: Dict[str, Any] = {
            "client_id": client_id,
            "title": option.title,
            "description": option.description,
            "confidence_score": option.confidence_score.score,
            "goals": [
                {
                    "description": goal.description,
                    "measures": goal.measures,
                    "target_date": now + timedelta(days=goal.target_days) if goal.target_days else None,
                }
                for goal in option.goals
            ],
            "interventions": [i.model_dump() for i in option.interventions],
        }
        request.update(edits or {})
        request["client_id"] = client_id
        plan = await self.create(created_by_id, request)
        logger.info("Care plan created from option", care_plan_id=plan.id, strategy=option.strategy)
        return plan

    async def update(
        self,
        care_plan_id: str,
        actor_id: str,
        role: Role,
        patch: Union[UpdateCarePlanRequest, Mapping[str, Any]],
        expected_version: Optional[int] = None,
    ) -> CarePlan:
        """
        Apply a content update and record it as a new version.

        Args:
            care_plan_id: Care plan ID
            actor_id: Who is making the change
            role: Actor's role
            patch: Fields to change; omitted fields stay as they are
            expected_version: Version the caller read; defaults to the current one

        Raises:
            NotFoundError, UnauthorizedError, InvalidStateError, ValidationError, ConflictError
        """
        patch = validate_input(UpdateCarePlanRequest, patch, "update")
        supplied = {k for k in patch.model_fields_set if getattr(patch, k) is not None}

        plan = await self._load(care_plan_id)
        self.ensure_access(plan, actor_id, role)
        if plan.status.is_terminal:
            raise InvalidStateError(
                f"Care plan in status {plan.status.value} cannot be updated",
                details={"status": plan.status.value},
            )

        changes: Dict[str, Any] = {}
        fields: Dict[str, Any] = {}
        for name in _SCALAR_FIELDS:
            if name not in supplied:
                continue
            new, old = getattr(patch, name), getattr(plan, name)
            if new != old:
                fields[name] = new
                changes[name] = {"from": _json_value(old), "to": _json_value(new)}

        if "status" in fields:
            self._check_transition(plan.status, fields["status"])

        goals = None
        if "goals" in supplied:
            goal_diff = _diff_children("goal", plan.goals, patch.goals, _GOAL_FIELDS)
            if any(goal_diff.values()):
                changes["goals"] = goal_diff
                goals = patch.goals

        interventions = None
        if "interventions" in supplied:
            intervention_diff = _diff_children(
                "intervention", plan.interventions, patch.interventions, _INTERVENTION_FIELDS
            )
            if any(intervention_diff.values()):
                changes["interventions"] = intervention_diff
                interventions = patch.interventions

        if not changes:
            raise ValidationError("Update contains no changes")

        async with self.database.session() as session:
            updated = await CarePlanRepository(session).update(
                care_plan_id,
                expected_version=plan.version if expected_version is None else expected_version,
                fields=fields,
                changes=changes,
                actor_id=actor_id,
                goals=goals,
                interventions=interventions,
            )

        await self._invalidate(updated)
        await self.notifications.publish(
            CarePlanEventType.CARE_PLAN_UPDATED,
            {
                "care_plan_id": updated.id,
                "client_id": updated.client_id,
                "version": updated.version,
                "changed_fields": sorted(changes),
                "updated_by_id": actor_id,
            },
        )
        if "status" in changes:
            await self._publish_status_change(updated, plan.status, actor_id)
        return updated

    async def update_status(
        self,
        care_plan_id: str,
        actor_id: str,
        role: Role,
        status: Union[PlanStatus, str],
    ) -> CarePlan:
        """
        Move a plan along the status table. Does not create a version.

        Raises:
            InvalidStateError: If the transition is not allowed (APPROVED needs ``approve``)
        """
        try:
            status = PlanStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown status: {status}", details={"field": "status"})

        plan = await self._load(care_plan_id)
        self.ensure_access(plan, actor_id, role)
        self._check_transition(plan.status, status)

        async with self.database.session() as session:
            updated = await CarePlanRepository(session).update_status(care_plan_id, plan.version, status)

        await self._invalidate(updated)
        await self._publish_status_change(updated, plan.status, actor_id)
        return updated

    async def approve(
        self,
        care_plan_id: str,
        approver_id: str,
        role: Role,
        approval_notes: Optional[str] = None,
    ) -> CarePlan:
        """
        Approve a DRAFT or IN_REVIEW plan. The version is not bumped.

        Raises:
            InvalidStateError: If the plan is not in an approvable status
            ConflictError: If the plan changed after it was read
        """
        request = validate_input(ApproveCarePlanRequest, {"approval_notes": approval_notes}, "approval")

        plan = await self._load(care_plan_id)
        self.ensure_access(plan, approver_id, role)
        if plan.status not in APPROVABLE_STATUSES:
            raise InvalidStateError(
                f"Care plan in status {plan.status.value} cannot be approved",
                details={"status": plan.status.value},
            )

        async with self.database.session() as session:
            approved = await CarePlanRepository(session).approve(
                care_plan_id,
                expected_version=plan.version,
                approver_id=approver_id,
                approval_notes=request.approval_notes,
            )

        await self._invalidate(approved)
        await self.notifications.publish(
            CarePlanEventType.CARE_PLAN_APPROVED,
            {
                "care_plan_id": approved.id,
                "client_id": approved.client_id,
                "approved_by_id": approver_id,
                "version": approved.version,
            },
        )
        return approved

    async def delete(self, care_plan_id: str, actor_id: str, role: Role) -> bool:
        """
        Hard-delete a plan with its goals, interventions and versions.

        Raises:
            NotFoundError: If the plan does not exist
            ConflictError: If the plan changed after it was read
        """
        plan = await self._load(care_plan_id)
        self.ensure_access(plan, actor_id, role)

        async with self.database.session() as session:
            deleted = await CarePlanRepository(session).delete(care_plan_id, expected_version=plan.version)

        await self._invalidate(plan)
        logger.info("Care plan deleted", care_plan_id=care_plan_id, deleted_by=actor_id)
        return deleted

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_transition(current: PlanStatus, target: PlanStatus) -> None:
        if target == PlanStatus.APPROVED:
            raise InvalidStateError("Use approve to move a care plan to APPROVED")
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(
                f"Cannot move care plan from {current.value} to {target.value}",
                details={"from": current.value, "to": target.value},
            )

    async def _publish_status_change(self, plan: CarePlan, previous: PlanStatus, actor_id: str) -> None:
        await self.notifications.publish(
            CarePlanEventType.CARE_PLAN_STATUS_CHANGED,
            {
                "care_plan_id": plan.id,
                "client_id": plan.client_id,
                "from": previous.value,
                "to": plan.status.value,
                "changed_by_id": actor_id,
            },
        )

    async def _invalidate_lists(self, client_id: str) -> None:
        await self.list_cache.invalidate_prefix(client_id)
        await self.list_cache.invalidate_prefix(ALL_CLIENTS)

    async def _invalidate(self, plan: CarePlan) -> None:
        await self.plan_cache.invalidate(plan.id)
        await self._invalidate_lists(plan.client_id)
