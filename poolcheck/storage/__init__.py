from ._schema import SCHEMA_VERSION, SCHEMA_SQL
from .miners import MinerRepo
from .approvals import ApprovalRepo
from .alerts import AlertRepo
from .manager import StorageManager

__all__ = [
    "SCHEMA_VERSION",
    "SCHEMA_SQL",
    "MinerRepo",
    "ApprovalRepo",
    "AlertRepo",
    "StorageManager",
]
