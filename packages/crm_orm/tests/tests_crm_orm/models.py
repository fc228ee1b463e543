from crm_orm import Metadata

ENTITY_DEFS = {
    "Account": {
        "fields": {
            "name": {"type": "varchar", "not_null": True},
            "industry": {"type": "varchar", "max_length": 100},
            "type": {"type": "varchar", "default": "Customer"},
            "amount": {"type": "int", "default": 0},
        },
        "relations": {
            "contacts": {"type": "hasMany", "entity": "Contact"},
            "teams": {
                "type": "manyMany",
                "entity": "Team",
                "additional_columns": {"role": {"type": "varchar"}},
            },
            "notes": {"type": "hasMany", "entity": "Note", "foreign_key": "parent_id"},
        },
    },
    "Contact": {
        "fields": {
            "name": {"type": "varchar"},
            "email": {"type": "varchar"},
        },
        "relations": {
            "account": {"type": "belongsTo", "entity": "Account"},
        },
    },
    "Team": {
        "fields": {"name": {"type": "varchar"}},
        "relations": {
            "accounts": {
                "type": "manyMany",
                "entity": "Account",
                "additional_columns": {"role": {"type": "varchar"}},
            },
        },
    },
    "Note": {
        "fields": {"post": {"type": "text"}},
        "relations": {
            "parent": {"type": "belongsToParent", "entity_list": ["Account", "Contact"]},
        },
    },
}


def build_metadata() -> Metadata:
    """A small CRM schema: accounts, contacts, teams and polymorphic notes."""
    return Metadata.from_dict(ENTITY_DEFS)
