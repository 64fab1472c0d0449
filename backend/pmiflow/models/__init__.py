"""ORM Models — SQLAlchemy declarative models for all persisted entities.

Invariants:
    - All models inherit from Base (db/base.py)
    - Case / AnalysisResult / AuditLogEntry are shared with the web application;
      WorkflowInstance / WorkflowStep are owned by this service

Design Decisions:
    - One file per entity for locality
    - All models imported here so SQLAlchemy resolves string-based relationship()
      references before any query runs
"""

from pmiflow.models.case import Case  # noqa: F401
from pmiflow.models.analysis_result import AnalysisResult  # noqa: F401
from pmiflow.models.audit_log import AuditLogEntry  # noqa: F401
from pmiflow.models.workflow_instance import WorkflowInstance  # noqa: F401
from pmiflow.models.workflow_step import WorkflowStep  # noqa: F401
