"""
Deal Engine - Deal State Machine.

============================================================
PURPOSE
============================================================
Maps every reported deal state to exactly one local action.

    Active              -> RECORD_SUCCESS
    Completed           -> CLEANUP
    Staged, Sealing     -> RELEASE_FILE
    Error,
    ProposalRejected    -> RECORD_FAILURE
    everything else     -> AWAIT (fails once the deal times out)

The node computes the state; this table only decides how the
probe reacts to it. The mapping is total over DealState.

============================================================
"""

import logging
from typing import Dict, Optional

from .types import DealAction, DealState


logger = logging.getLogger(__name__)


# ============================================================
# ACTION TABLE
# ============================================================

STATE_ACTIONS: Dict[DealState, DealAction] = {
    DealState.ACTIVE: DealAction.RECORD_SUCCESS,
    DealState.COMPLETED: DealAction.CLEANUP,
    DealState.STAGED: DealAction.RELEASE_FILE,
    DealState.SEALING: DealAction.RELEASE_FILE,
    DealState.ERROR: DealAction.RECORD_FAILURE,
    DealState.PROPOSAL_REJECTED: DealAction.RECORD_FAILURE,
}


def action_for_state(state: DealState) -> DealAction:
    """Local action for a reported state."""
    return STATE_ACTIONS.get(state, DealAction.AWAIT)


def action_for_code(code: Optional[int]) -> Optional[DealAction]:
    """Local action for a numeric state code, None when unusable."""
    if code is None:
        return None
    return action_for_state(DealState.from_code(code))


def removes_deal(action: DealAction) -> bool:
    """Whether the action ends tracking of the deal."""
    return action in {
        DealAction.RECORD_SUCCESS,
        DealAction.CLEANUP,
        DealAction.RECORD_FAILURE,
    }
