from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crm_orm.entity import Entity, EntityFactory
    from crm_orm.entity_manager import EntityManager
    from crm_orm.mapper import Mapper


class RepositoryBase:
    """
    Fundamental state and identity for a Repository.

    A repository is bound to exactly one entity type for its lifetime and
    owns the mutable query state that chained calls accumulate: the where
    clause, the having clause and the remaining list parameters. Terminal
    operations clear that state with ``reset()``.

    Notes:
        - The accumulated state is shared by every call chained on the same
          instance until the next reset, so one instance must not be used
          by concurrent call chains. ``EntityManager.get_repository()``
          builds a fresh instance per call for exactly this reason.
    """

    def __init__(self, entity_type: str, entity_manager: EntityManager):
        self.entity_type = entity_type
        self.entity_manager = entity_manager
        self.entity_factory: EntityFactory = entity_manager.entity_factory
        # Raises UnknownEntityTypeError for undefined types.
        self.seed: Entity = self.entity_factory.create(entity_type)

        # (key, group) pairs; key is None for groups appended positionally.
        self._where_entries: list[tuple[str | None, Any]] = []
        self._having_entries: list[tuple[str | None, Any]] = []
        self._list_params: dict[str, Any] = {}
        self._is_table_locked = False

    @property
    def mapper(self) -> Mapper:
        return self.entity_manager.get_mapper()

    @property
    def where_clause(self) -> list[Any]:
        return [group for _, group in self._where_entries]

    @property
    def having_clause(self) -> list[Any]:
        return [group for _, group in self._having_entries]

    def reset(self) -> None:
        """Clear all accumulated query state."""
        self._where_entries = []
        self._having_entries = []
        self._list_params = {}

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.entity_type}>"
