from .engine import AuditLogEngine
from .restore import RestorePlan, RestoreResolver

__all__ = ["AuditLogEngine", "RestorePlan", "RestoreResolver"]
