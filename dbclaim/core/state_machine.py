"""
Claim State Machine

This module implements a strict state machine for claim lifecycle management.
It prevents invalid phase transitions written back to claim status.

States:
- PENDING: Waiting for (or between) provisioning passes
- PROVISIONING: A provisioning action is being executed
- READY: Desired state observed on the server
- FAILED: Non-retryable failure, requires a change to the claim spec

Usage:
    >>> from dbclaim.core.state_machine import ClaimStateMachine
    >>> from dbclaim.models.claim import ClaimPhase
    >>>
    >>> ClaimStateMachine.can_transition(ClaimPhase.PENDING, ClaimPhase.PROVISIONING)
    True
    >>> ClaimStateMachine.can_transition(ClaimPhase.READY, ClaimPhase.PROVISIONING)
    False
"""

from typing import Dict, Set, Optional

from dbclaim.config.logging import get_logger
from dbclaim.models.claim import ClaimPhase

logger = get_logger(__name__)


class ClaimStateMachine:
    """
    State machine for claim lifecycle management.

    Staying in the same phase is always allowed; every other move must be
    listed in TRANSITIONS.
    """

    TRANSITIONS: Dict[ClaimPhase, Set[ClaimPhase]] = {
        ClaimPhase.PENDING: {
            ClaimPhase.PROVISIONING,  # An action is required
            ClaimPhase.READY,         # Already converged
            ClaimPhase.FAILED,        # Policy cannot be satisfied
        },
        ClaimPhase.PROVISIONING: {
            ClaimPhase.PENDING,       # Retryable failure, requeued
            ClaimPhase.READY,         # Converged
            ClaimPhase.FAILED,        # Non-retryable failure
        },
        ClaimPhase.READY: {
            ClaimPhase.PENDING,       # Drift or rotation deadline
        },
        ClaimPhase.FAILED: {
            ClaimPhase.PENDING,       # Claim spec changed
        },
    }

    @classmethod
    def can_transition(cls, from_phase: ClaimPhase, to_phase: ClaimPhase) -> bool:
        """
        Check if phase transition is valid.

        Args:
            from_phase: Current claim phase
            to_phase: Target phase

        Returns:
            True if transition is allowed, False otherwise
        """
        if from_phase == to_phase:
            return True
        return to_phase in cls.TRANSITIONS.get(from_phase, set())

    @classmethod
    def validate_transition(
        cls,
        from_phase: ClaimPhase,
        to_phase: ClaimPhase,
        claim_key: Optional[str] = None,
    ) -> None:
        """
        Validate phase transition and raise exception if invalid.

        Raises:
            ValueError: If transition is not allowed
        """
        if not cls.can_transition(from_phase, to_phase):
            error_msg = (
                f"Invalid phase transition from {from_phase.value} "
                f"to {to_phase.value}"
            )
            if claim_key:
                error_msg += f" for claim {claim_key}"

            logger.error(
                "invalid_phase_transition",
                claim=claim_key,
                from_phase=from_phase.value,
                to_phase=to_phase.value,
                allowed_phases=sorted(p.value for p in cls.TRANSITIONS.get(from_phase, set())),
            )
            raise ValueError(error_msg)

        if from_phase != to_phase:
            logger.debug(
                "phase_transition_validated",
                claim=claim_key,
                from_phase=from_phase.value,
                to_phase=to_phase.value,
            )

    @classmethod
    def path_to(cls, from_phase: ClaimPhase, to_phase: ClaimPhase) -> list:
        """
        Shortest sequence of phases leading from from_phase to to_phase.

        Used when a single pass has to move a claim through an intermediate
        phase, e.g. READY -> PENDING -> PROVISIONING when drift is found.

        Example:
            >>> ClaimStateMachine.path_to(ClaimPhase.READY, ClaimPhase.PROVISIONING)
            [<ClaimPhase.PENDING: 'pending'>, <ClaimPhase.PROVISIONING: 'provisioning'>]
        """
        if from_phase == to_phase:
            return []

        frontier = [[from_phase]]
        seen = {from_phase}
        while frontier:
            path = frontier.pop(0)
            for nxt in sorted(cls.TRANSITIONS.get(path[-1], set()), key=lambda p: p.value):
                if nxt in seen:
                    continue
                if nxt == to_phase:
                    return path[1:] + [nxt]
                seen.add(nxt)
                frontier.append(path + [nxt])

        raise ValueError(
            f"No phase path from {from_phase.value} to {to_phase.value}"
        )
