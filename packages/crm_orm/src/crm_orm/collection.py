from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any, overload

from .exceptions import CollectionConsumedError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable, Iterator

    from .entity import Entity


class EntityCollection(Sequence["Entity"]):
    """
    Fully materialized query result.

    Behaves like a read-only list of entities and can be iterated any
    number of times.
    """

    def __init__(self, entity_type: str, entities: Iterable[Entity] = ()):
        self.entity_type = entity_type
        self._entities: list[Entity] = list(entities)

    @overload
    def __getitem__(self, index: int) -> Entity: ...

    @overload
    def __getitem__(self, index: slice) -> list[Entity]: ...

    def __getitem__(self, index: int | slice) -> Entity | list[Entity]:
        return self._entities[index]

    def __len__(self) -> int:
        return len(self._entities)

    def __iter__(self) -> Iterator[Entity]:
        return iter(self._entities)

    def get_value_list(self) -> list[dict[str, Any]]:
        """Return the attribute values of every entity as plain dicts."""
        return [entity.get_values() for entity in self._entities]

    def __repr__(self) -> str:
        return f"<EntityCollection {self.entity_type} len={len(self)}>"


class SthCollection:
    """
    Streamed, forward-only query result.

    Rows are pulled from the database while iterating with ``async for``.
    The query runs when iteration starts and the collection cannot be
    iterated again afterwards.

    Example:
        >>> collection = await repo.sth().find()
        >>> async for account in collection:
        ...     print(account.get("name"))
    """

    def __init__(
        self,
        entity_type: str,
        stream: Callable[[], AsyncIterator[Entity]],
    ):
        self.entity_type = entity_type
        self._stream = stream
        self._consumed = False

    @property
    def is_consumed(self) -> bool:
        return self._consumed

    def __aiter__(self) -> AsyncIterator[Entity]:
        if self._consumed:
            msg = f"Streamed {self.entity_type} collection was already iterated"
            raise CollectionConsumedError(msg)
        self._consumed = True
        return self._stream()

    def __repr__(self) -> str:
        state = "consumed" if self._consumed else "pending"
        return f"<SthCollection {self.entity_type} {state}>"
