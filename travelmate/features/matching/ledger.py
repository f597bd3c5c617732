"""
travelmate/features/matching/ledger.py

Capacity ledger: keeps headcount and recruiting flags consistent when a
match is accepted (merge) or an accepted match is cancelled (reverse).

Both functions are pure over plan snapshots; callers persist the two
returned plans in one transaction.
"""

from typing import Tuple

from travelmate.core.errors import CapacityExceededError, InvalidStateError
from travelmate.models.match import CapacityMerge
from travelmate.models.plan import TravelPlanSnapshot


class CapacityLedger:

    @staticmethod
    def merge(
        sender_plan: TravelPlanSnapshot,
        receiver_plan: TravelPlanSnapshot,
    ) -> Tuple[TravelPlanSnapshot, TravelPlanSnapshot, CapacityMerge]:
        """
        Fold the sender's seat block into the receiver's plan.

        The sender's plan stops recruiting unconditionally. The receiver's
        headcount grows by the sender's headcount and stops recruiting once
        it reaches its target.

        Raises:
            CapacityExceededError: the receiver's plan cannot hold the sender's group
            InvalidStateError: both sides are the same plan
        """
        if sender_plan.plan_id == receiver_plan.plan_id:
            raise InvalidStateError(f"Cannot merge plan {sender_plan.plan_id} into itself")

        new_current = receiver_plan.current_size + sender_plan.current_size
        if new_current > receiver_plan.target_size:
            raise CapacityExceededError(
                f"Plan {receiver_plan.plan_id} has {receiver_plan.open_seats} open seats, "
                f"{sender_plan.current_size} requested"
            )

        record = CapacityMerge(
            requester_plan_id=sender_plan.plan_id,
            receiver_plan_id=receiver_plan.plan_id,
            merged_headcount=sender_plan.current_size,
            requester_was_recruiting=sender_plan.recruiting,
            receiver_was_recruiting=receiver_plan.recruiting,
        )
        merged_sender = sender_plan.model_copy(update={"recruiting": False})
        merged_receiver = receiver_plan.model_copy(update={
            "current_size": new_current,
            "recruiting": receiver_plan.recruiting and new_current < receiver_plan.target_size,
        })
        return merged_sender, merged_receiver, record

    @staticmethod
    def reverse(
        sender_plan: TravelPlanSnapshot,
        receiver_plan: TravelPlanSnapshot,
        record: CapacityMerge,
    ) -> Tuple[TravelPlanSnapshot, TravelPlanSnapshot]:
        """
        Undo a merge using the record captured when it was applied.

        Raises:
            InvalidStateError: the plans do not match the record or the receiver
                no longer holds the merged headcount
        """
        if sender_plan.plan_id != record.requester_plan_id or receiver_plan.plan_id != record.receiver_plan_id:
            raise InvalidStateError("Plans do not match the recorded merge")

        restored_current = receiver_plan.current_size - record.merged_headcount
        if restored_current < 0:
            raise InvalidStateError(
                f"Plan {receiver_plan.plan_id} holds {receiver_plan.current_size} people, "
                f"cannot release {record.merged_headcount}"
            )

        restored_sender = sender_plan.model_copy(update={"recruiting": record.requester_was_recruiting})
        restored_receiver = receiver_plan.model_copy(update={
            "current_size": restored_current,
            "recruiting": record.receiver_was_recruiting and restored_current < receiver_plan.target_size,
        })
        return restored_sender, restored_receiver
