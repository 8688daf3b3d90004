"""Retention rotation: keep recent rows in <table>, archive the rest as <table>_OLD.

Usage:
    from connections import ServerTarget, SqlSession
    from rotation import RotationEngine
    from schema.metadata import fetch_table_descriptor

    with SqlSession.open(target, autocommit=False) as session:
        table = fetch_table_descriptor(session, "dbo", "AuditLog")
        result = RotationEngine(session).rotate(table, "CreatedAt", 90, verify=True)
"""

from rotation.engine import RotationEngine, RotationResult, rotate
from rotation.plan import RotationPlan, build_rotation_plan
from rotation.script import render_rotation_script
from rotation.state import RotationState, RotationStateMachine
from rotation.verify import RotationVerification, verify_rotation

__all__ = [
    "RotationEngine",
    "RotationResult",
    "rotate",
    "RotationPlan",
    "build_rotation_plan",
    "render_rotation_script",
    "RotationState",
    "RotationStateMachine",
    "RotationVerification",
    "verify_rotation",
]
