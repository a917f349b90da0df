"""
Rebuild nested objects from ordered LEFT JOIN rows.

Aggregate reads (an API with its procedures and the roles allowed on each, a
role with its granted procedures, a user with assigned roles) run a single
query that joins parent -> child -> grandchild. Each join widens the row set,
so a parent with three procedures each granted to two roles arrives as six
rows. This module folds those rows back into one object per parent.

Rows must be sorted by parent id, then child id. Output preserves the order in
which parent ids first appear.
"""
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from functools import reduce
from typing import Any, Generic, TypeVar

from services.exceptions import EntityNotFoundError

T = TypeVar("T")
Row = Mapping[str, Any]


@dataclass(frozen=True)
class JoinLevel(Generic[T]):
    """
    How to read one nesting level out of a joined row.

    Attributes:
        id_key: Row key holding this level's id. NULL means the LEFT JOIN
            found no match at this level.
        build: Builds the level's object (or plain value) from the row.
        children: Name of the list attribute on the built object that receives
            items of the next level down. None for the innermost level.
    """

    id_key: str
    build: Callable[[Row], T]
    children: str | None = None


@dataclass
class _FoldState:
    """Accumulator carried across rows."""

    output: list = field(default_factory=list)
    current: Any = None
    current_id: Any = None
    has_current: bool = False
    last_child_id: Any = None
    last_child: Any = None
    seen_grandchild_ids: set = field(default_factory=set)


def _append(target: Any, attribute: str | None, item: Any) -> None:
    if attribute is None:
        raise ValueError("JoinLevel has a nested level but no children attribute")
    getattr(target, attribute).append(item)


def flatten_join_rows(
    rows: Iterable[Row],
    parent: JoinLevel,
    child: JoinLevel | None = None,
    grandchild: JoinLevel | None = None,
) -> list:
    """
    Fold ordered join rows into a list of parent objects.

    Args:
        rows: Join rows sorted ascending by parent id, then child id.
        parent: Level describing the outermost object.
        child: Optional level nested under parent.children.
        grandchild: Optional level nested under child.children. Grandchildren
            attach to the most recently appended child, since one child's
            grandchildren usually span several rows.

    Returns:
        One object per distinct parent id. Empty when rows is empty.

    Rows with a NULL child id contribute no child (the parent is still
    emitted). A grandchild whose child id is NULL cannot be attributed and is
    skipped. Grandchildren are de-duplicated per child.
    """

    def step(state: _FoldState, row: Row) -> _FoldState:
        parent_id = row[parent.id_key]
        if not state.has_current or parent_id != state.current_id:
            if state.has_current:
                state.output.append(state.current)
            state.current = parent.build(row)
            state.current_id = parent_id
            state.has_current = True
            state.last_child_id = None
            state.last_child = None
            state.seen_grandchild_ids = set()

        if child is None:
            return state

        child_id = row.get(child.id_key)
        if child_id is None:
            # unmatched LEFT JOIN, or a malformed row carrying only a grandchild
            return state
        if child_id != state.last_child_id:
            state.last_child = child.build(row)
            state.last_child_id = child_id
            state.seen_grandchild_ids = set()
            _append(state.current, parent.children, state.last_child)

        if grandchild is None:
            return state

        grandchild_id = row.get(grandchild.id_key)
        if grandchild_id is not None and grandchild_id not in state.seen_grandchild_ids:
            state.seen_grandchild_ids.add(grandchild_id)
            _append(state.last_child, child.children, grandchild.build(row))
        return state

    state = reduce(step, rows, _FoldState())
    if state.has_current:
        state.output.append(state.current)
    return state.output


def flatten_one(
    rows: Iterable[Row],
    entity: str,
    key: Any,
    parent: JoinLevel,
    child: JoinLevel | None = None,
    grandchild: JoinLevel | None = None,
) -> Any:
    """
    Fold rows expected to describe exactly one parent.

    Raises:
        EntityNotFoundError: If the join produced no parent rows.
    """
    objects = flatten_join_rows(rows, parent, child, grandchild)
    if not objects:
        raise EntityNotFoundError(entity, key)
    return objects[0]
