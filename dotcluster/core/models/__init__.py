"""
Domain models: Pydantic types and plan dataclasses.

All models are re-exported here for convenient access:

    from dotcluster.core.models import Definition, ClusterRecord, Receipt, StoreState
"""

from dotcluster.core.models.definition import (
    DEFINITION_FILE,
    ClusterName,
    Definition,
    DependencyRef,
    Remote,
    validate_cluster_name,
)
from dotcluster.core.models.plan import (
    ApplyReport,
    DeploymentPlan,
    Operation,
    PlanEntry,
    RuleDelta,
)
from dotcluster.core.models.receipt import Receipt
from dotcluster.core.models.record import ClusterRecord, StoreSnapshot, ValidationState
from dotcluster.core.models.settings import Settings
from dotcluster.core.models.state import (
    DeploymentRecord,
    OperationRecord,
    RootRequest,
    StoreState,
)

__all__ = [
    # definition.py
    "DEFINITION_FILE",
    "ClusterName",
    "Definition",
    "DependencyRef",
    "Remote",
    "validate_cluster_name",
    # plan.py
    "ApplyReport",
    "DeploymentPlan",
    "Operation",
    "PlanEntry",
    "RuleDelta",
    # receipt.py
    "Receipt",
    # record.py
    "ClusterRecord",
    "StoreSnapshot",
    "ValidationState",
    # settings.py
    "Settings",
    # state.py
    "DeploymentRecord",
    "OperationRecord",
    "RootRequest",
    "StoreState",
]
