from .config import CRMSettings, crm_settings
from .logging import EntityFormatter, get_logger, setup_logging

__all__ = [
    "CRMSettings",
    "EntityFormatter",
    "crm_settings",
    "get_logger",
    "setup_logging",
]
