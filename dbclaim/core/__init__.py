"""
Core provisioning logic for database claims.

This package provides the pieces a reconcile pass is built from:
- Password policy engine
- Claim state evaluator (observed state -> next action)
- State machine for claim phase transitions
"""

# Import lazily to avoid circular dependencies at module load time
# Users should import directly from submodules:
# from dbclaim.core.password import generate_password
# from dbclaim.core.evaluator import next_action, observe
# from dbclaim.core.state_machine import ClaimStateMachine

__all__ = [
    "generate_password",
    "next_action",
    "observe",
    "ClaimStateMachine",
]
