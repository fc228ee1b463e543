from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Self

from .base import RepositoryBase

if TYPE_CHECKING:
    from crm_orm.params import JoinSpec


def merge_keyed_conditions(
    conditions: Mapping[str, Any], entries: list[tuple[str | None, Any]]
) -> list[tuple[str | None, Any]]:
    """
    Put ``conditions`` in front of the accumulated ``entries``.

    Each entry is a ``(key, group)`` pair. Entries earlier supplied through a
    mapping under one of the new keys are replaced. Groups appended
    positionally (key ``None``) are always kept.

    Example:
        >>> merge_keyed_conditions(
        ...     {"status": "New"},
        ...     [("status", {"status": "Old"}), (None, {"status": "Closed"})],
        ... )
        [('status', {'status': 'New'}), (None, {'status': 'Closed'})]
    """
    supplied = dict(conditions)
    kept = [(key, group) for key, group in entries if key is None or key not in supplied]
    return [*((key, {key: value}) for key, value in supplied.items()), *kept]


def _flatten_joins(specs: tuple[Any, ...]) -> list[JoinSpec]:
    joins: list[JoinSpec] = []
    for spec in specs:
        if isinstance(spec, (list, tuple)):
            joins.extend(spec)
        else:
            joins.append(spec)
    return joins


class RepositoryConstruction(RepositoryBase):
    """
    Fluent API for accumulating query state.

    Every method mutates the repository's accumulated state and returns the
    repository itself, so calls can be chained up to a terminal operation
    such as ``find()`` or ``count()``.

    Example:
        >>> accounts = await (
        ...     em.get_repository("Account")
        ...     .where({"industry": "Retail"})
        ...     .join("teams")
        ...     .order("name", "DESC")
        ...     .limit(0, 20)
        ...     .find()
        ... )
    """

    def where(self, conditions: Mapping[str, Any] | str | None = None, value: Any = None) -> Self:
        """
        Add a WHERE clause.

        Two usage options:
            * ``where(mapping)`` merges the mapping into the clause; supplied
              keys replace conditions earlier supplied by mapping under the same
              key.
            * ``where(key, value)`` appends a single-key condition group. A
              ``None`` value makes the call a no-op.

        Example:
            >>> repo.where({"status": "New", "amount>": 100})
            >>> repo.where("OR", [{"type": "Customer"}, {"type": "Partner"}])
        """
        if isinstance(conditions, Mapping):
            self._where_entries = merge_keyed_conditions(conditions, self._where_entries)
        elif conditions is not None and value is not None:
            self._where_entries.append((None, {conditions: value}))
        return self

    def having(self, conditions: Mapping[str, Any] | str | None = None, value: Any = None) -> Self:
        """
        Add a HAVING clause.

        Same usage as ``where()``.

        Example:
            >>> repo.select(["industry", "COUNT:id"]).group_by(["industry"]).having({"COUNT:id>": 5})
        """
        if isinstance(conditions, Mapping):
            self._having_entries = merge_keyed_conditions(conditions, self._having_entries)
        elif conditions is not None and value is not None:
            self._having_entries.append((None, {conditions: value}))
        return self

    def join(self, *specs: JoinSpec | list[JoinSpec]) -> Self:
        """
        Add JOINs.

        Usage options:
            * ``join(relation_name)``
            * ``join([relation_name_1, relation_name_2])``
            * ``join([[relation_name, alias]])``
            * ``join([[relation_name, alias, conditions]])``
        """
        self._list_params.setdefault("joins", []).extend(_flatten_joins(specs))
        return self

    def left_join(self, *specs: JoinSpec | list[JoinSpec]) -> Self:
        """
        Add LEFT JOINs.

        This method works the same way as ``join()``.
        """
        self._list_params.setdefault("left_joins", []).extend(_flatten_joins(specs))
        return self

    def distinct(self) -> Self:
        self._list_params["distinct"] = True
        return self

    def sth(self) -> Self:
        """Return a streamed collection; recommended for large result sets."""
        self._list_params["sth"] = True
        return self

    def order(self, attribute: str | list[Any] = "id", direction: str | bool = "ASC") -> Self:
        """
        Apply ORDER BY.

        Args:
            attribute: An attribute to order by, or a list of
                ``[attribute, direction]`` pairs.
            direction: ``"ASC"``/``"DESC"``; ``True`` means DESC.
        """
        self._list_params["order_by"] = attribute
        self._list_params["order"] = direction
        return self

    def limit(self, offset: int | None = None, limit: int | None = None) -> Self:
        self._list_params["offset"] = offset
        self._list_params["limit"] = limit
        return self

    def select(self, attributes: list[str]) -> Self:
        """Specify which attributes to select. All attributes are selected by default."""
        self._list_params["select"] = list(attributes)
        return self

    def group_by(self, attributes: list[str]) -> Self:
        self._list_params["group_by"] = list(attributes)
        return self

    def set_list_params(self, params: Mapping[str, Any] | None = None) -> None:
        self._list_params = dict(params or {})

    def get_list_params(self) -> dict[str, Any]:
        return self._list_params
