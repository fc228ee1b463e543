from .base import Mapper
from .conditions import ConditionBuilder
from .rdb import RDBMapper
from .schema import build_tables

__all__ = ["ConditionBuilder", "Mapper", "RDBMapper", "build_tables"]
