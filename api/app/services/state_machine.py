MEETING_STATUSES = ("pending", "confirmed", "canceled", "completed")
MEETING_ACTIONS = ("accept", "decline", "cancel", "complete")


def transition_meeting(current: str, action: str, all_accepted: bool = False) -> str:
    """Next meeting status for a participant action; disallowed actions raise ValueError."""
    if current in {"canceled", "completed"}:
        raise ValueError(f"Meeting is already {current}")

    if action == "accept":
        if current == "pending":
            return "confirmed" if all_accepted else "pending"
        if current == "confirmed":
            return "confirmed"

    if action == "decline":
        if current == "pending":
            return "canceled"

    if action == "cancel":
        if current in {"pending", "confirmed"}:
            return "canceled"

    if action == "complete":
        if current == "confirmed":
            return "completed"

    raise ValueError(f"Cannot {action} a {current} meeting")


MEETING_OUTCOMES = ("completed", "no_show", "early_leave", "network_disconnect")
MEETING_FAULTS = ("no_fault", "requester_fault", "accepter_fault", "both_fault")
# charge decision -> stored charge_status
CHARGE_DECISIONS = {"capture": "captured", "refund": "refunded", "pending_review": "pending_review"}


def finalize_transition(current: str, charge_status: str | None, reviewer: bool = False) -> str:
    """Status after finalizing; a completed meeting held for review can be settled again by a reviewer."""
    if current == "completed" and charge_status == "pending_review" and reviewer:
        return "completed"
    return transition_meeting(current, "complete")
