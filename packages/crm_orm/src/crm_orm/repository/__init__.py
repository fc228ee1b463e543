from __future__ import annotations

from .relations import (
    All,
    Identified,
    Reference,
    RelationOverride,
    RepositoryRelations,
    resolve_foreign,
)


class Repository(RepositoryRelations):
    """
    Stateful query builder and lifecycle manager for one entity type.

    A Repository accumulates where/having clauses and list parameters across
    chained calls, merges them with per-call parameters when a terminal
    operation runs, and resets the accumulated state afterwards. It also
    drives the save/remove lifecycle with overridable hooks and dispatches
    relation mutations to the mapper.

    Terminal operations:
        - find() / find_one() / find_by_query()
        - count() / max() / min() / sum()
        - get() / get_by_id() / save() / remove()
        - find_related() / relate() / unrelate() / mass_relate()

    Notes:
        - Chain methods mutate the instance and return it; they never touch
          storage.
        - An instance must not be shared between concurrent call chains.
          ``EntityManager.get_repository()`` returns a new instance per call.
        - Type-specific behaviour goes into a subclass registered with
          ``EntityManager.register_repository()``: override
          ``handle_select_params``, the lifecycle hooks, or populate
          ``relation_overrides``.

    Examples:
        >>> repo = em.get_repository("Account")
        >>> accounts = await repo.where({"industry": "Retail"}).order("name").find()

        >>> account = repo.get_new()
        >>> account.set("name", "Acme")
        >>> await repo.save(account)
        >>> await repo.relate(account, "teams", team)
    """


__all__ = [
    "All",
    "Identified",
    "Reference",
    "RelationOverride",
    "Repository",
    "resolve_foreign",
]
