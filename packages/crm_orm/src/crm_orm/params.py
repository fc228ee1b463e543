from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

JoinSpec = Union[str, list[Any], tuple[Any, ...]]

CLAUSE_KEYS = ("where_clause", "having_clause")
JOIN_KEYS = ("joins", "left_joins")


class SelectParams(BaseModel):
    """
    Structured, storage-agnostic description of one query.

    A ``SelectParams`` only has meaning relative to one entity type. Fields
    that were explicitly passed are tracked in ``model_fields_set``; the
    merge rules below depend on the difference between "not supplied" and
    "supplied but empty".

    Example:
        >>> SelectParams(
        ...     where_clause=[{"industry": "Retail"}, {"OR": [{"type": "Customer"}]}],
        ...     joins=["teams", ["contacts", "c"]],
        ...     order_by="name",
        ...     limit=10,
        ... )
    """

    model_config = ConfigDict(extra="forbid")

    where_clause: list[Any] = Field(default_factory=list)
    having_clause: list[Any] = Field(default_factory=list)
    joins: list[JoinSpec] = Field(default_factory=list)
    left_joins: list[JoinSpec] = Field(default_factory=list)
    select: list[str] = Field(default_factory=list)
    group_by: list[str] = Field(default_factory=list)
    order_by: str | list[Any] | None = None
    order: str | bool | None = None
    offset: int | None = None
    limit: int | None = None
    distinct: bool = False
    sth: bool = False
    skip_additional_select_params: bool = False

    @field_validator("where_clause", "having_clause", mode="before")
    @classmethod
    def wrap_mapping_clause(cls, value: Any) -> Any:
        # A bare mapping is a single AND group.
        if isinstance(value, Mapping):
            return [dict(value)]
        return value

    @classmethod
    def coerce(cls, params: ParamsInput) -> SelectParams:
        if params is None:
            return cls()
        if isinstance(params, SelectParams):
            return params
        return cls.model_validate(dict(params))

    def supplied(self) -> dict[str, Any]:
        """Return only the explicitly supplied fields, deep-copied."""
        return copy.deepcopy(self.model_dump(exclude_unset=True))


ParamsInput = Union[SelectParams, Mapping[str, Any], None]


def replace_recursive(base: Any, replacement: Any) -> Any:
    """
    Structurally merge ``replacement`` into ``base``.

    Mappings merge key by key and sequences merge index by index; on a direct
    collision between non-container values the replacement wins. Neither
    argument is mutated.

    Example:
        >>> replace_recursive({"select": ["id", "name"], "limit": 5},
        ...                   {"select": ["title"], "limit": 1})
        {'select': ['title', 'name'], 'limit': 1}
    """
    if isinstance(base, Mapping) and isinstance(replacement, Mapping):
        merged = copy.deepcopy(dict(base))
        for key, value in replacement.items():
            if key in merged:
                merged[key] = replace_recursive(merged[key], value)
            else:
                merged[key] = copy.deepcopy(value)
        return merged

    if isinstance(base, list) and isinstance(replacement, list):
        merged_list = copy.deepcopy(base)
        for index, value in enumerate(replacement):
            if index < len(merged_list):
                merged_list[index] = replace_recursive(merged_list[index], value)
            else:
                merged_list.append(copy.deepcopy(value))
        return merged_list

    return copy.deepcopy(replacement)


def merge_select_params(
    where_clause: list[Any],
    having_clause: list[Any],
    list_params: Mapping[str, Any],
    explicit: ParamsInput = None,
    *,
    legacy: bool = True,
) -> SelectParams:
    """
    Combine accumulated query state with per-call parameters.

    Rules:
        1. ``where_clause``: when the caller supplied one, the accumulated
           clause is appended to it as one nested AND group (only if it is
           non-empty). Otherwise the accumulated clause is used as is.
        2. ``having_clause``: same as rule 1, but only engaged when the
           caller's having clause is non-empty. In legacy mode a missing or
           empty explicit having clause drops the accumulated one.
        3. ``joins``/``left_joins``: accumulated joins are appended to the
           explicit list when both are non-empty. In legacy mode an empty
           explicit list drops the accumulated joins.
        4. Every other field is merged with :func:`replace_recursive`; the
           explicit value wins on direct collisions.

    With ``legacy=False`` rules 2 and 3 always keep the accumulated state,
    explicit entries first.

    The accumulated arguments are never mutated.
    """
    supplied = SelectParams.coerce(explicit).supplied()

    if "where_clause" in supplied:
        where = list(supplied["where_clause"])
        if where_clause:
            where.append(copy.deepcopy(list(where_clause)))
    else:
        where = copy.deepcopy(list(where_clause))

    explicit_having = supplied.get("having_clause") or []
    if explicit_having:
        having = list(explicit_having)
        if having_clause:
            having.append(copy.deepcopy(list(having_clause)))
    elif legacy:
        having = []
    else:
        having = copy.deepcopy(list(having_clause))

    joins: dict[str, list[Any]] = {}
    for key in JOIN_KEYS:
        explicit_joins = list(supplied.get(key) or [])
        accumulated_joins = copy.deepcopy(list(list_params.get(key) or []))
        if explicit_joins and accumulated_joins:
            joins[key] = explicit_joins + accumulated_joins
        elif legacy:
            joins[key] = explicit_joins
        else:
            joins[key] = explicit_joins + accumulated_joins

    excluded = CLAUSE_KEYS + JOIN_KEYS
    merged = replace_recursive(
        {k: v for k, v in list_params.items() if k not in excluded},
        {k: v for k, v in supplied.items() if k not in excluded},
    )

    return SelectParams.model_validate(
        {**merged, "where_clause": where, "having_clause": having, **joins}
    )
