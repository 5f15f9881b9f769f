"""
Safe and forced deletion of root aggregates (colleges, departments, courses,
users).

Relationships carry no database cascades; every dependent row is found
through ``schema_graph.EDGES`` and removed with explicit chunked DELETEs,
children first, one committed transaction per layer.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Optional, Set

from flask import current_app, has_app_context
from sqlalchemy import delete as sql_delete
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from .errors import ConflictBlocked, NotFoundError, PartialDeletionError
from .schema_graph import (
    CASCADE, DELETION_ORDER, DETACH, EDGES, ENTITIES, IMPORT_ORDER, ROOTS,
    Edge, SchemaGraphError, children_of, parents_of, rank,
)

logger = logging.getLogger(__name__)

ROOT_ALIASES = {
    "college": "colleges",
    "department": "departments",
    "course": "courses",
    "user": "users",
}
DEFAULT_CHUNK_SIZE = 500


class DeleteMode(str, Enum):
    SAFE = "safe"
    FORCED = "forced"


@dataclass
class DeletionResult:
    root: str
    root_id: int
    mode: DeleteMode
    deleted: Dict[str, int] = field(default_factory=dict)
    detached: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.deleted.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "root": self.root,
            "id": self.root_id,
            "mode": self.mode.value,
            "deleted": self.deleted,
            "detached": self.detached,
        }


def root_name(root: str) -> str:
    name = ROOT_ALIASES.get((root or "").lower(), (root or "").lower())
    if name not in ROOTS:
        raise SchemaGraphError(f"{root} is not a deletable root; expected one of: {', '.join(ROOTS)}")
    return name


def _chunks(ids: Iterable[int], size: int):
    ordered = sorted(ids)
    for start in range(0, len(ordered), size):
        yield ordered[start:start + size]


class CascadeDeleter:
    def __init__(self, session=None, chunk_size: Optional[int] = None):
        self.session = session or db.session
        if chunk_size is None:
            chunk_size = (current_app.config.get("DELETE_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)
                          if has_app_context() else DEFAULT_CHUNK_SIZE)
        self.chunk_size = max(1, int(chunk_size))

    # ---------- collection ----------

    def _require_root(self, root: str, root_id: int):
        name = root_name(root)
        entity = ENTITIES[name]
        if self.session.get(entity.model, root_id) is None:
            raise NotFoundError(entity.label, root_id)
        return name, entity

    def _select_ids(self, column, where_column, ids: Set[int]) -> Set[int]:
        found = set()
        for chunk in _chunks(ids, self.chunk_size):
            found.update(v for v in self.session.scalars(select(column).where(where_column.in_(chunk)))
                         if v is not None)
        return found

    def _collect(self, root: str, root_id: int, follow: Callable[[Edge], bool],
                 follow_owners: bool) -> Dict[str, Set[int]]:
        """Ids of every row reachable from the root through followed cascade edges.

        Works as a worklist so that rows reached late (for instance a user
        pulled in through its student profile) still have their own
        children collected. An owner is only pulled in once every profile
        it owns is already collected; a user who also holds a profile
        outside the subtree keeps that profile and survives.
        """
        collected: Dict[str, Set[int]] = {name: set() for name in IMPORT_ORDER}
        collected[root].add(root_id)
        frontier: Dict[str, Set[int]] = {root: {root_id}}
        owners: Dict[str, Set[int]] = {}
        while frontier:
            name = min(frontier, key=rank)
            ids = frontier.pop(name)
            for edge in children_of(name):
                if edge.on_delete != CASCADE or not follow(edge):
                    continue
                child = ENTITIES[edge.child].model
                new = self._select_ids(child.id, edge.child_column, ids) - collected[edge.child]
                if new:
                    collected[edge.child] |= new
                    frontier.setdefault(edge.child, set()).update(new)
            if follow_owners:
                model = ENTITIES[name].model
                for edge in parents_of(name):
                    if edge.owner_follows:
                        owners.setdefault(edge.parent, set()).update(
                            self._select_ids(edge.child_column, model.id, ids))
            if not frontier and owners:
                for parent, candidates in owners.items():
                    candidates -= collected[parent]
                    kept = self._owners_with_outside_profiles(parent, candidates, collected)
                    if kept:
                        logger.info("Keeping %s %s: they own rows outside the deleted subtree",
                                    parent, sorted(kept))
                    new = candidates - kept
                    if new:
                        collected[parent] |= new
                        frontier.setdefault(parent, set()).update(new)
                owners = {}
        return {name: ids for name, ids in collected.items() if ids}

    def _owners_with_outside_profiles(self, parent: str, ids: Set[int],
                                      collected: Dict[str, Set[int]]) -> Set[int]:
        outside: Set[int] = set()
        for edge in children_of(parent):
            if not edge.owner_follows:
                continue
            child = ENTITIES[edge.child].model
            for chunk in _chunks(ids, self.chunk_size):
                rows = self.session.execute(
                    select(edge.child_column, child.id).where(edge.child_column.in_(chunk)))
                outside.update(owner for owner, child_id in rows
                               if child_id not in collected[edge.child])
        return outside

    def _count(self, edge: Edge, ids: Set[int]) -> int:
        child = ENTITIES[edge.child].model
        total = 0
        for chunk in _chunks(ids, self.chunk_size):
            total += self.session.scalar(
                select(func.count()).select_from(child).where(edge.child_column.in_(chunk))) or 0
        return total

    def _blockers(self, members: Dict[str, Set[int]]) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for name, ids in members.items():
            for edge in children_of(name):
                if edge.owned:
                    continue
                count = self._count(edge, ids)
                if count:
                    counts[edge.child] = counts.get(edge.child, 0) + count
        return counts

    # ---------- mutation ----------

    def _detach(self, members: Dict[str, Set[int]]) -> Dict[str, int]:
        detached: Dict[str, int] = {}
        for edge in EDGES:
            if edge.on_delete != DETACH or edge.parent not in members:
                continue
            child = ENTITIES[edge.child].model
            count = 0
            try:
                for chunk in _chunks(members[edge.parent], self.chunk_size):
                    result = self.session.execute(
                        update(child).where(edge.child_column.in_(chunk))
                        .values({edge.column: None})
                        .execution_options(synchronize_session=False)
                    )
                    count += result.rowcount or 0
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.error("Detaching %s.%s failed: %s", edge.child, edge.column, exc)
                raise PartialDeletionError(f"{edge.child}.{edge.column}", {}, exc) from exc
            if count:
                detached[f"{edge.child}.{edge.column}"] = count
        return detached

    def _delete_layers(self, members: Dict[str, Set[int]]) -> Dict[str, int]:
        deleted: Dict[str, int] = {}
        for name in DELETION_ORDER:
            ids = members.get(name)
            if not ids:
                continue
            model = ENTITIES[name].model
            count = 0
            try:
                for chunk in _chunks(ids, self.chunk_size):
                    result = self.session.execute(
                        sql_delete(model).where(model.id.in_(chunk))
                        .execution_options(synchronize_session=False)
                    )
                    count += result.rowcount or 0
                self.session.commit()
            except SQLAlchemyError as exc:
                self.session.rollback()
                logger.error("Deleting layer %s failed after %s: %s", name, deleted, exc)
                raise PartialDeletionError(name, dict(deleted), exc) from exc
            deleted[name] = count
            logger.debug("Deleted %s %s row(s)", count, name)
        return deleted

    # ---------- public API ----------

    def dependents(self, root: str, root_id: int) -> Dict[str, int]:
        name, _ = self._require_root(root, root_id)
        members = self._collect(name, root_id, follow=lambda e: e.owned, follow_owners=False)
        return self._blockers(members)

    def safe_delete(self, root: str, root_id: int) -> DeletionResult:
        name, entity = self._require_root(root, root_id)
        members = self._collect(name, root_id, follow=lambda e: e.owned, follow_owners=False)
        blockers = self._blockers(members)
        if blockers:
            logger.info("Safe delete of %s %s blocked by %s", entity.label, root_id, blockers)
            raise ConflictBlocked(entity.label, blockers)
        deleted = self._delete_layers(members)
        logger.info("Deleted %s %s (%s)", entity.label, root_id, deleted)
        return DeletionResult(name, root_id, DeleteMode.SAFE, deleted)

    def force_delete(self, root: str, root_id: int) -> DeletionResult:
        name, entity = self._require_root(root, root_id)
        members = self._collect(name, root_id, follow=lambda e: True, follow_owners=True)
        logger.info("Force deleting %s %s: %s", entity.label, root_id,
                    {k: len(v) for k, v in members.items()})
        detached = self._detach(members)
        deleted = self._delete_layers(members)
        return DeletionResult(name, root_id, DeleteMode.FORCED, deleted, detached)

    def delete(self, root: str, root_id: int, mode=DeleteMode.SAFE) -> DeletionResult:
        if DeleteMode(mode) is DeleteMode.FORCED:
            return self.force_delete(root, root_id)
        return self.safe_delete(root, root_id)


def dependents(root: str, root_id: int) -> Dict[str, int]:
    return CascadeDeleter().dependents(root, root_id)


def safe_delete(root: str, root_id: int) -> DeletionResult:
    return CascadeDeleter().safe_delete(root, root_id)


def force_delete(root: str, root_id: int) -> DeletionResult:
    return CascadeDeleter().force_delete(root, root_id)


def delete(root: str, root_id: int, mode=DeleteMode.SAFE) -> DeletionResult:
    return CascadeDeleter().delete(root, root_id, mode)
