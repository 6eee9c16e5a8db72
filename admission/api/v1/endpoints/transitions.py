"""Transition rule endpoints."""

from fastapi import APIRouter, status

from admission.dependencies import AdminActor, CurrentActor, DatabaseSession, TransitionRules
from admission.schemas.appointments import TransitionRuleResponse

router = APIRouter()


@router.get(
    "/",
    response_model=list[TransitionRuleResponse],
    status_code=status.HTTP_200_OK,
    summary="List transition rules",
)
async def list_transition_rules(
    current_actor: CurrentActor,
    db: DatabaseSession,
    rules: TransitionRules,
) -> list[TransitionRuleResponse]:
    """The status graph currently enforced."""
    table = await rules.get_table(db)
    return [TransitionRuleResponse.model_validate(rule) for rule in table.rules]


@router.post(
    "/refresh",
    response_model=list[TransitionRuleResponse],
    status_code=status.HTTP_200_OK,
    summary="Reload transition rules",
)
async def refresh_transition_rules(
    admin: AdminActor,
    db: DatabaseSession,
    rules: TransitionRules,
) -> list[TransitionRuleResponse]:
    """
    Drop the cached rule table and reload it from the database.

    Use after editing ``appointment_state_transitions`` rows.
    """
    rules.invalidate()
    table = await rules.get_table(db)
    return [TransitionRuleResponse.model_validate(rule) for rule in table.rules]
