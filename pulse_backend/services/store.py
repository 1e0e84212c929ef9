"""
CRM Store Service

Data access for deals, contacts and tasks behind one async interface, CrmStore,
with two implementations:

- InMemoryCrmStore: demo mode, used when DATABASE_URL is not configured. Each
  instance owns its own collections; nothing is module-global.
- PostgresCrmStore: asyncpg pool from core.database, SQL from
  sql.crm_queries.

core.dependencies picks the implementation from settings and injects it into
the routers and jobs, so the scoring and insight services never know which
backend served the snapshot.

Deal updates are validated the same way by both stores (validate_deal_update):
- closing a deal (Won/Lost) requires a close reason
- moving an open deal to another stage requires a next step and a target
  close date

Errors:
- EntityNotFoundError: unknown id (HTTP 404)
- DealValidationError: rejected deal update, carries a code and the message
  shown to the user (HTTP 422)
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from pulse_backend.core.database import get_db_pool
from pulse_backend.models.enums import (
    DealStatus,
    Priority,
    RiskLevel,
    TaskPriority,
    TaskState,
)
from pulse_backend.models.schemas import (
    Contact,
    ContactCreate,
    ContactUpdate,
    Deal,
    DealCreate,
    DealUpdate,
    QuickMetrics,
    Task,
    TaskCreate,
    TaskUpdate,
)
from pulse_backend.services.normalizers import as_utc, utc_now
from pulse_backend.services.pipeline_insights import compute_inactivity_days
from pulse_backend.services.risk import has_next_step, is_target_overdue
from pulse_backend.services.scoring import recalculate_all_scores
from pulse_backend.sql.crm_queries import (
    CRM_SCHEMA_DDL,
    DELETE_BY_ID,
    SELECT_BY_ID,
    SELECT_CONTACTS,
    SELECT_DEALS,
    SELECT_DIGEST_HISTORY,
    SELECT_DIGEST_SENT,
    SELECT_QUICK_METRICS,
    SELECT_STALLED_DEALS,
    SELECT_TASKS,
    UPDATE_CONTACT_SCORES,
    UPDATE_DEAL_SCORES,
    UPSERT_DIGEST_SENT,
    get_insert_query,
    get_update_query,
)


logger = logging.getLogger(__name__)


# Default number of deals returned by get_stalled_deals()
STALLED_DEALS_LIMIT: int = 5

SLACK_DIGEST_JOB = 'slack_digest'


# =============================================================================
# Errors
# =============================================================================

class EntityNotFoundError(LookupError):
    """Raised when a deal, contact or task id does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class DealValidationError(ValueError):
    """Raised when a deal update breaks a pipeline rule."""

    NEXT_STEP_REQUIRED = 'NEXT_STEP_REQUIRED'
    TARGET_CLOSE_REQUIRED = 'TARGET_CLOSE_REQUIRED'
    CLOSE_REASON_REQUIRED = 'CLOSE_REASON_REQUIRED'

    MESSAGES = {
        NEXT_STEP_REQUIRED: "Debes definir un próximo paso antes de guardar.",
        TARGET_CLOSE_REQUIRED: "La fecha objetivo de cierre es obligatoria.",
        CLOSE_REASON_REQUIRED: "Indica el motivo al cerrar el deal.",
    }

    def __init__(self, code: str):
        self.code = code
        self.message = self.MESSAGES[code]
        super().__init__(self.message)


def validate_deal_update(current: Deal, changes: Dict[str, Any]) -> None:
    """
    Check a partial update against the pipeline rules.

    Args:
        current: The deal as stored.
        changes: Fields being written (already filtered to the ones sent).

    Raises:
        DealValidationError: With the first rule the resulting deal breaks.
    """
    merged = current.model_copy(update=changes)

    if merged.status in (DealStatus.WON, DealStatus.LOST):
        if not (merged.close_reason and merged.close_reason.strip()):
            raise DealValidationError(DealValidationError.CLOSE_REASON_REQUIRED)
        return

    stage_changed = 'stage' in changes and changes['stage'] != current.stage
    if stage_changed:
        if not has_next_step(merged):
            raise DealValidationError(DealValidationError.NEXT_STEP_REQUIRED)
        if merged.target_close_date is None:
            raise DealValidationError(DealValidationError.TARGET_CLOSE_REQUIRED)


def select_stalled_deals(
    deals: Sequence[Deal],
    now: datetime,
    limit: int = STALLED_DEALS_LIMIT,
) -> List[Deal]:
    """Open deals with no next step or a past target date, longest idle first."""
    stalled = [
        deal for deal in deals
        if deal.status == DealStatus.OPEN
        and (not has_next_step(deal) or is_target_overdue(deal, now))
    ]
    stalled.sort(key=lambda deal: -compute_inactivity_days(deal, now))
    return stalled[:limit]


# =============================================================================
# Demo Dataset
# =============================================================================

def build_demo_dataset(now: Optional[datetime] = None) -> Tuple[List[Deal], List[Contact], List[Task]]:
    """
    Demo deals, contacts and tasks relative to `now`.

    Cached score/priority/risk fields are computed before returning so the
    demo dashboard shows real values.
    """
    now = as_utc(now or utc_now())
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    past_date = now - timedelta(days=5)

    contacts = [
        Contact(id=str(uuid4()), name="Juan Pérez", email="juan.perez@dataflow.com",
                company="DataFlow Systems", last_activity=now, created_at=now, updated_at=now),
        Contact(id=str(uuid4()), name="María García", email="maria.garcia@innovacorp.com",
                company="InnovaCorp Solutions", last_activity=now - timedelta(days=3),
                created_at=now, updated_at=now),
        Contact(id=str(uuid4()), name="Carlos López", email="carlos.lopez@retailmax.com",
                company="RetailMax Inc.", last_activity=now - timedelta(days=1),
                created_at=now, updated_at=now),
        Contact(id=str(uuid4()), name="Ana Martínez", email="ana.martinez@techstart.com",
                company="TechStart Ltd.", last_activity=now - timedelta(days=7),
                created_at=now, updated_at=now),
        Contact(id=str(uuid4()), name="Roberto Silva", email="roberto.silva@megacorp.com",
                company="MegaCorp Industries", last_activity=now, created_at=now, updated_at=now),
    ]
    contact_by_company = {contact.company: contact.id for contact in contacts}

    deal_rows: List[Dict[str, Any]] = [
        {
            'title': "Software CRM Enterprise", 'company': "DataFlow Systems",
            'amount': 85000, 'stage': "Cierre", 'probability': 90,
            'target_close_date': today.replace(day=15), 'next_step': "Firmar contrato",
            'status': DealStatus.OPEN, 'last_activity': now, 'inactivity_days': 0,
        },
        {
            'title': "Implementación ERP - InnovaCorp", 'company': "InnovaCorp Solutions",
            'amount': 45000, 'stage': "Propuesta", 'probability': 70,
            'target_close_date': past_date, 'next_step': None,
            'status': DealStatus.OPEN, 'last_activity': now - timedelta(days=5),
            'inactivity_days': 5,
        },
        {
            'title': "Consultoría Digital - RetailMax", 'company': "RetailMax Inc.",
            'amount': 28500, 'stage': "Negociación", 'probability': 85,
            'target_close_date': past_date, 'next_step': "Reunión de seguimiento",
            'status': DealStatus.OPEN, 'last_activity': now - timedelta(days=2),
            'inactivity_days': 2,
        },
        {
            'title': "Sistema de Inventario", 'company': "TechStart Ltd.",
            'amount': 15000, 'stage': "Cierre", 'probability': 100,
            'target_close_date': today - timedelta(days=30), 'next_step': "Implementación",
            'status': DealStatus.WON, 'close_reason': "Contrato firmado",
            'last_activity': now - timedelta(days=1), 'inactivity_days': 0,
        },
        {
            'title': "Proyecto de Transformación Digital", 'company': "MegaCorp Industries",
            'amount': 120000, 'stage': "Calificación", 'probability': 60,
            'target_close_date': now + timedelta(days=30), 'next_step': "Presentación ejecutiva",
            'status': DealStatus.OPEN, 'last_activity': now, 'inactivity_days': 0,
        },
    ]
    deals = [
        Deal(
            id=str(uuid4()),
            contact_id=contact_by_company.get(row['company']),
            created_at=now,
            updated_at=now,
            **row,
        )
        for row in deal_rows
    ]

    tasks = [
        Task(id=str(uuid4()), title="Llamar a cliente potencial TechCorp",
             due_at=today.replace(hour=15, minute=30), state=TaskState.TO_DO,
             priority=TaskPriority.MEDIA, created_at=now, updated_at=now),
        Task(id=str(uuid4()), title="Revisar propuesta de ventas Q4",
             due_at=(today + timedelta(days=1)).replace(hour=9), state=TaskState.TO_DO,
             priority=TaskPriority.ALTA, created_at=now, updated_at=now),
        Task(id=str(uuid4()), title="Actualizar documentación del producto",
             due_at=(today + timedelta(days=5)).replace(hour=16), state=TaskState.TO_DO,
             priority=TaskPriority.BAJA, created_at=now, updated_at=now),
    ]

    deals, contacts = recalculate_all_scores(deals, contacts, now)
    return deals, contacts, tasks


# =============================================================================
# Store Interface
# =============================================================================

class CrmStore(ABC):
    """
    Async data access for the CRM entities.

    Subclasses implement the primitive reads/writes; update_deal() and
    mark_task_done() are shared so both backends enforce the same rules.
    """

    # --- deals -------------------------------------------------------------

    @abstractmethod
    async def get_deals(self) -> List[Deal]:
        ...

    @abstractmethod
    async def get_deal(self, deal_id: str) -> Deal:
        ...

    @abstractmethod
    async def add_deal(self, payload: DealCreate) -> Deal:
        ...

    @abstractmethod
    async def _write_deal(self, deal_id: str, changes: Dict[str, Any]) -> Deal:
        ...

    @abstractmethod
    async def delete_deal(self, deal_id: str) -> None:
        ...

    async def update_deal(self, deal_id: str, patch: DealUpdate) -> Deal:
        """
        Apply a partial update after validating it.

        Raises:
            EntityNotFoundError: If the deal does not exist.
            DealValidationError: If the update breaks a pipeline rule.
        """
        current = await self.get_deal(deal_id)
        changes = patch.model_dump(exclude_unset=True)

        try:
            validate_deal_update(current, changes)
        except DealValidationError as e:
            logger.warning(f"Rejected update for deal {deal_id}: {e.code}")
            raise

        changes['updated_at'] = utc_now()
        return await self._write_deal(deal_id, changes)

    # --- contacts ----------------------------------------------------------

    @abstractmethod
    async def get_contacts(self) -> List[Contact]:
        ...

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Contact:
        ...

    @abstractmethod
    async def add_contact(self, payload: ContactCreate) -> Contact:
        ...

    @abstractmethod
    async def update_contact(self, contact_id: str, patch: ContactUpdate) -> Contact:
        ...

    @abstractmethod
    async def delete_contact(self, contact_id: str) -> None:
        ...

    # --- tasks -------------------------------------------------------------

    @abstractmethod
    async def get_tasks(self) -> List[Task]:
        ...

    @abstractmethod
    async def add_task(self, payload: TaskCreate) -> Task:
        ...

    @abstractmethod
    async def update_task(self, task_id: str, patch: TaskUpdate) -> Task:
        ...

    @abstractmethod
    async def delete_task(self, task_id: str) -> None:
        ...

    async def mark_task_done(self, task_id: str, done: bool = True) -> Task:
        """Toggle a task between Done and To Do, stamping completed_at."""
        patch = TaskUpdate(state=TaskState.DONE if done else TaskState.TO_DO)
        task = await self.update_task(task_id, patch)
        logger.info(f"Task {task_id} marked {'done' if done else 'to do'}")
        return task

    # --- derived views -----------------------------------------------------

    async def get_stalled_deals(
        self,
        limit: int = STALLED_DEALS_LIMIT,
        now: Optional[datetime] = None,
    ) -> List[Deal]:
        return select_stalled_deals(await self.get_deals(), now or utc_now(), limit)

    async def get_quick_metrics(self) -> QuickMetrics:
        deals = await self.get_deals()
        open_deals = [deal for deal in deals if deal.status == DealStatus.OPEN]
        return QuickMetrics(
            open=len(open_deals),
            won=sum(1 for deal in deals if deal.status == DealStatus.WON),
            lost=sum(1 for deal in deals if deal.status == DealStatus.LOST),
            sum_open=sum(float(deal.amount or 0) for deal in open_deals),
        )

    @abstractmethod
    async def save_scores(self, deals: Sequence[Deal], contacts: Sequence[Contact]) -> None:
        """Persist refreshed score/priority/risk_level columns."""

    # --- job state ---------------------------------------------------------

    @abstractmethod
    async def check_digest_sent(self, digest_date: date, job_type: str = SLACK_DIGEST_JOB) -> bool:
        ...

    @abstractmethod
    async def mark_digest_sent(self, digest_date: date, job_type: str = SLACK_DIGEST_JOB) -> None:
        ...

    @abstractmethod
    async def get_digest_history(
        self,
        job_type: str = SLACK_DIGEST_JOB,
        limit: Optional[int] = 7,
    ) -> List[Dict[str, Any]]:
        """Most recent sends as {'date', 'sent_at', 'count'} dicts, newest first."""

    # --- demo --------------------------------------------------------------

    @abstractmethod
    async def seed_demo(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Load the demo dataset; returns the number of rows per entity."""


def _task_completion_changes(current: Task, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Stamp or clear completed_at when a task enters or leaves Done."""
    new_state = changes.get('state')
    if new_state is None or new_state == current.state:
        return changes
    if new_state == TaskState.DONE:
        changes.setdefault('completed_at', utc_now())
    else:
        changes.setdefault('completed_at', None)
    return changes


# =============================================================================
# In-Memory Store
# =============================================================================

class InMemoryCrmStore(CrmStore):
    """
    Demo store kept in process memory.

    Lists are returned newest first, matching the dashboard ordering.
    """

    def __init__(self) -> None:
        self._deals: Dict[str, Deal] = {}
        self._contacts: Dict[str, Contact] = {}
        self._tasks: Dict[str, Task] = {}
        self._digest_state: Dict[str, Dict[date, Dict[str, Any]]] = {}

    @staticmethod
    def _newest_first(items: Dict[str, Any]) -> List[Any]:
        return list(reversed(list(items.values())))

    def _require(self, items: Dict[str, Any], entity: str, entity_id: str) -> Any:
        try:
            return items[entity_id]
        except KeyError:
            raise EntityNotFoundError(entity, entity_id) from None

    # --- deals -------------------------------------------------------------

    async def get_deals(self) -> List[Deal]:
        return self._newest_first(self._deals)

    async def get_deal(self, deal_id: str) -> Deal:
        return self._require(self._deals, 'Deal', deal_id)

    async def add_deal(self, payload: DealCreate) -> Deal:
        now = utc_now()
        deal = Deal(id=str(uuid4()), created_at=now, updated_at=now, **payload.model_dump())
        self._deals[deal.id] = deal
        return deal

    async def _write_deal(self, deal_id: str, changes: Dict[str, Any]) -> Deal:
        current = self._require(self._deals, 'Deal', deal_id)
        deal = Deal.model_validate({**current.model_dump(), **changes})
        self._deals[deal_id] = deal
        return deal

    async def delete_deal(self, deal_id: str) -> None:
        self._require(self._deals, 'Deal', deal_id)
        del self._deals[deal_id]

    # --- contacts ----------------------------------------------------------

    async def get_contacts(self) -> List[Contact]:
        return self._newest_first(self._contacts)

    async def get_contact(self, contact_id: str) -> Contact:
        return self._require(self._contacts, 'Contact', contact_id)

    async def add_contact(self, payload: ContactCreate) -> Contact:
        now = utc_now()
        contact = Contact(id=str(uuid4()), created_at=now, updated_at=now, **payload.model_dump())
        self._contacts[contact.id] = contact
        return contact

    async def update_contact(self, contact_id: str, patch: ContactUpdate) -> Contact:
        current = self._require(self._contacts, 'Contact', contact_id)
        changes = patch.model_dump(exclude_unset=True)
        changes['updated_at'] = utc_now()
        contact = Contact.model_validate({**current.model_dump(), **changes})
        self._contacts[contact_id] = contact
        return contact

    async def delete_contact(self, contact_id: str) -> None:
        self._require(self._contacts, 'Contact', contact_id)
        del self._contacts[contact_id]

    # --- tasks -------------------------------------------------------------

    async def get_tasks(self) -> List[Task]:
        return self._newest_first(self._tasks)

    async def add_task(self, payload: TaskCreate) -> Task:
        now = utc_now()
        task = Task(id=str(uuid4()), created_at=now, updated_at=now, **payload.model_dump())
        self._tasks[task.id] = task
        return task

    async def update_task(self, task_id: str, patch: TaskUpdate) -> Task:
        current = self._require(self._tasks, 'Task', task_id)
        changes = _task_completion_changes(current, patch.model_dump(exclude_unset=True))
        changes['updated_at'] = utc_now()
        task = Task.model_validate({**current.model_dump(), **changes})
        self._tasks[task_id] = task
        return task

    async def delete_task(self, task_id: str) -> None:
        self._require(self._tasks, 'Task', task_id)
        del self._tasks[task_id]

    # --- derived views -----------------------------------------------------

    async def save_scores(self, deals: Sequence[Deal], contacts: Sequence[Contact]) -> None:
        for deal in deals:
            if deal.id in self._deals:
                self._deals[deal.id] = self._deals[deal.id].model_copy(update={
                    'score': deal.score,
                    'priority': deal.priority,
                    'risk_level': deal.risk_level,
                })
        for contact in contacts:
            if contact.id in self._contacts:
                self._contacts[contact.id] = self._contacts[contact.id].model_copy(update={
                    'score': contact.score,
                    'priority': contact.priority,
                })

    # --- job state ---------------------------------------------------------

    async def check_digest_sent(self, digest_date: date, job_type: str = SLACK_DIGEST_JOB) -> bool:
        return digest_date in self._digest_state.get(job_type, {})

    async def mark_digest_sent(self, digest_date: date, job_type: str = SLACK_DIGEST_JOB) -> None:
        sends = self._digest_state.setdefault(job_type, {})
        entry = sends.setdefault(digest_date, {'count': 0})
        entry['sent_at'] = utc_now()
        entry['count'] += 1

    async def get_digest_history(
        self,
        job_type: str = SLACK_DIGEST_JOB,
        limit: Optional[int] = 7,
    ) -> List[Dict[str, Any]]:
        sends = self._digest_state.get(job_type, {})
        return [
            {'date': digest_date, 'sent_at': sends[digest_date]['sent_at'],
             'count': sends[digest_date]['count']}
            for digest_date in sorted(sends, reverse=True)[:limit]
        ]

    # --- demo --------------------------------------------------------------

    async def seed_demo(self, now: Optional[datetime] = None) -> Dict[str, int]:
        deals, contacts, tasks = build_demo_dataset(now)
        # Stored oldest first so the first demo row is listed first
        self._deals = {deal.id: deal for deal in reversed(deals)}
        self._contacts = {contact.id: contact for contact in reversed(contacts)}
        self._tasks = {task.id: task for task in reversed(tasks)}
        logger.info(
            f"Seeded demo store: {len(deals)} deals, {len(contacts)} contacts, {len(tasks)} tasks"
        )
        return {'deals': len(deals), 'contacts': len(contacts), 'tasks': len(tasks)}


# =============================================================================
# PostgreSQL Store
# =============================================================================

def _record_to_dict(record: Any) -> Dict[str, Any]:
    """Convert an asyncpg Record into model-ready values (UUID -> str, Decimal -> float)."""
    row = dict(record)
    for key, value in row.items():
        if isinstance(value, UUID):
            row[key] = str(value)
        elif isinstance(value, Decimal):
            row[key] = float(value)
    return row


def _to_db_value(value: Any) -> Any:
    if isinstance(value, (DealStatus, Priority, RiskLevel, TaskState, TaskPriority)):
        return value.value
    return value


class PostgresCrmStore(CrmStore):
    """CRM store backed by PostgreSQL through the shared asyncpg pool."""

    async def ensure_schema(self) -> None:
        """Create the CRM tables when they do not exist yet."""
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            await conn.execute(CRM_SCHEMA_DDL)

    async def _fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            records = await conn.fetch(query, *args)
        return [_record_to_dict(record) for record in records]

    async def _fetchrow(self, query: str, *args: Any) -> Optional[Dict[str, Any]]:
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            record = await conn.fetchrow(query, *args)
        return _record_to_dict(record) if record is not None else None

    async def _insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        columns = list(values)
        row = await self._fetchrow(
            get_insert_query(table, columns),
            *[_to_db_value(values[column]) for column in columns],
        )
        assert row is not None, "INSERT ... RETURNING always yields a row"
        return row

    async def _update(self, table: str, entity: str, entity_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        columns = list(changes)
        row = await self._fetchrow(
            get_update_query(table, columns),
            entity_id,
            *[_to_db_value(changes[column]) for column in columns],
        )
        if row is None:
            raise EntityNotFoundError(entity, entity_id)
        return row

    async def _delete(self, table: str, entity: str, entity_id: str) -> None:
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(DELETE_BY_ID[table], entity_id)
        # status is 'DELETE <rows>'
        if status.split()[-1] == '0':
            raise EntityNotFoundError(entity, entity_id)

    # --- deals -------------------------------------------------------------

    async def get_deals(self) -> List[Deal]:
        return [Deal(**row) for row in await self._fetch(SELECT_DEALS)]

    async def get_deal(self, deal_id: str) -> Deal:
        row = await self._fetchrow(SELECT_BY_ID['deals'], deal_id)
        if row is None:
            raise EntityNotFoundError('Deal', deal_id)
        return Deal(**row)

    async def add_deal(self, payload: DealCreate) -> Deal:
        values = payload.model_dump(exclude_none=True)
        values['updated_at'] = utc_now()
        return Deal(**await self._insert('deals', values))

    async def _write_deal(self, deal_id: str, changes: Dict[str, Any]) -> Deal:
        return Deal(**await self._update('deals', 'Deal', deal_id, changes))

    async def delete_deal(self, deal_id: str) -> None:
        await self._delete('deals', 'Deal', deal_id)

    # --- contacts ----------------------------------------------------------

    async def get_contacts(self) -> List[Contact]:
        return [Contact(**row) for row in await self._fetch(SELECT_CONTACTS)]

    async def get_contact(self, contact_id: str) -> Contact:
        row = await self._fetchrow(SELECT_BY_ID['contacts'], contact_id)
        if row is None:
            raise EntityNotFoundError('Contact', contact_id)
        return Contact(**row)

    async def add_contact(self, payload: ContactCreate) -> Contact:
        values = payload.model_dump(exclude_none=True)
        values['updated_at'] = utc_now()
        return Contact(**await self._insert('contacts', values))

    async def update_contact(self, contact_id: str, patch: ContactUpdate) -> Contact:
        changes = patch.model_dump(exclude_unset=True)
        changes['updated_at'] = utc_now()
        return Contact(**await self._update('contacts', 'Contact', contact_id, changes))

    async def delete_contact(self, contact_id: str) -> None:
        await self._delete('contacts', 'Contact', contact_id)

    # --- tasks -------------------------------------------------------------

    async def get_tasks(self) -> List[Task]:
        return [Task(**row) for row in await self._fetch(SELECT_TASKS)]

    async def add_task(self, payload: TaskCreate) -> Task:
        values = payload.model_dump(exclude_none=True)
        values['updated_at'] = utc_now()
        return Task(**await self._insert('tasks', values))

    async def update_task(self, task_id: str, patch: TaskUpdate) -> Task:
        row = await self._fetchrow(SELECT_BY_ID['tasks'], task_id)
        if row is None:
            raise EntityNotFoundError('Task', task_id)
        changes = _task_completion_changes(Task(**row), patch.model_dump(exclude_unset=True))
        changes['updated_at'] = utc_now()
        return Task(**await self._update('tasks', 'Task', task_id, changes))

    async def delete_task(self, task_id: str) -> None:
        await self._delete('tasks', 'Task', task_id)

    # --- derived views -----------------------------------------------------

    async def get_stalled_deals(
        self,
        limit: int = STALLED_DEALS_LIMIT,
        now: Optional[datetime] = None,
    ) -> List[Deal]:
        rows = await self._fetch(SELECT_STALLED_DEALS, as_utc(now or utc_now()), limit)
        return [Deal(**row) for row in rows]

    async def get_quick_metrics(self) -> QuickMetrics:
        row = await self._fetchrow(SELECT_QUICK_METRICS)
        if row is None:
            return QuickMetrics(open=0, won=0, lost=0, sum_open=0)
        return QuickMetrics(**row)

    async def save_scores(self, deals: Sequence[Deal], contacts: Sequence[Contact]) -> None:
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(
                    UPDATE_DEAL_SCORES,
                    [(d.id, d.score, d.priority.value, d.risk_level.value) for d in deals],
                )
                await conn.executemany(
                    UPDATE_CONTACT_SCORES,
                    [(c.id, c.score, c.priority.value) for c in contacts],
                )

    # --- job state ---------------------------------------------------------

    async def check_digest_sent(self, digest_date: date, job_type: str = SLACK_DIGEST_JOB) -> bool:
        row = await self._fetchrow(SELECT_DIGEST_SENT, job_type, digest_date)
        return row is not None

    async def mark_digest_sent(self, digest_date: date, job_type: str = SLACK_DIGEST_JOB) -> None:
        pool = await get_db_pool()
        async with pool.acquire() as conn:
            await conn.execute(UPSERT_DIGEST_SENT, job_type, digest_date)

    async def get_digest_history(
        self,
        job_type: str = SLACK_DIGEST_JOB,
        limit: Optional[int] = 7,
    ) -> List[Dict[str, Any]]:
        rows = await self._fetch(SELECT_DIGEST_HISTORY, job_type, limit)
        return [
            {'date': row['digest_date'], 'sent_at': row['sent_at'], 'count': row['digest_count']}
            for row in rows
        ]

    # --- demo --------------------------------------------------------------

    async def seed_demo(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Insert the demo dataset in one transaction (existing rows are kept)."""
        deals, contacts, tasks = build_demo_dataset(now)

        pool = await get_db_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                for contact in contacts:
                    values = contact.model_dump(exclude={'id', 'created_at'}, exclude_none=True)
                    columns = list(values)
                    record = await conn.fetchrow(
                        get_insert_query('contacts', columns),
                        *[_to_db_value(values[c]) for c in columns],
                    )
                    # contact ids are regenerated by the database
                    for deal_index, deal in enumerate(deals):
                        if deal.contact_id == contact.id:
                            deals[deal_index] = deal.model_copy(
                                update={'contact_id': str(record['id'])}
                            )
                for entity, table in ((deals, 'deals'), (tasks, 'tasks')):
                    for item in entity:
                        values = item.model_dump(exclude={'id', 'created_at'}, exclude_none=True)
                        columns = list(values)
                        await conn.execute(
                            get_insert_query(table, columns),
                            *[_to_db_value(values[c]) for c in columns],
                        )

        logger.info(
            f"Seeded PostgreSQL store: {len(deals)} deals, {len(contacts)} contacts, {len(tasks)} tasks"
        )
        return {'deals': len(deals), 'contacts': len(contacts), 'tasks': len(tasks)}


__all__ = [
    'STALLED_DEALS_LIMIT',
    'SLACK_DIGEST_JOB',
    'EntityNotFoundError',
    'DealValidationError',
    'validate_deal_update',
    'select_stalled_deals',
    'build_demo_dataset',
    'CrmStore',
    'InMemoryCrmStore',
    'PostgresCrmStore',
]
