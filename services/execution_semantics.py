#Description: Canonical execution classification (authority, intent, target) and ledger identity resolution.
"""
Legacy trade-intent flags are interpreted only here:

  source                 -> intent (manual vs everything else) and, with
  system_operator_mode   -> authority SYSTEM
  execution_wallet_id    -> target REAL
  strategy execution_target == 'REAL' -> target REAL
  force, is_test_mode    -> recorded for diagnostics, no effect

Downstream code branches on the ExecutionClass, never on the raw flags.
"""
from typing import Any, Mapping

from utils.config import settings
from utils.logging import logger
from models.schemas import (
    ExecutionAuthority,
    ExecutionClass,
    ExecutionClassInput,
    ExecutionDerivation,
    ExecutionIntent,
    ExecutionTarget,
)

MANUAL_SOURCE = "manual"

class IdentityResolutionError(RuntimeError):
    """No user id could be resolved for a ledger row."""

def derive_execution_class(data: ExecutionClassInput | Mapping[str, Any]) -> ExecutionClass:
    inp = data if isinstance(data, ExecutionClassInput) else ExecutionClassInput.model_validate(dict(data))

    system_operator_mode = inp.metadata.system_operator_mode is True
    has_wallet_id = bool(inp.metadata.execution_wallet_id)
    is_manual = inp.source == MANUAL_SOURCE

    authority = ExecutionAuthority.SYSTEM if is_manual and system_operator_mode else ExecutionAuthority.USER
    intent = ExecutionIntent.MANUAL if is_manual else ExecutionIntent.AUTOMATED
    # system operator trades settle against the system wallet
    if has_wallet_id or inp.strategy_execution_target == ExecutionTarget.REAL.value or system_operator_mode:
        target = ExecutionTarget.REAL
    else:
        target = ExecutionTarget.MOCK

    return ExecutionClass(
        authority=authority,
        intent=intent,
        target=target,
        derived_from=ExecutionDerivation(
            source=inp.source,
            system_operator_mode=system_operator_mode,
            force=inp.metadata.force is True,
            has_execution_wallet_id=has_wallet_id,
            strategy_execution_target=inp.strategy_execution_target,
        ),
    )

def log_execution_class(exec_class: ExecutionClass, trade_id: str | None = None) -> None:
    logger.info(
        "EXECUTION_CLASS_DERIVED {}",
        {
            "authority": exec_class.authority.value,
            "intent": exec_class.intent.value,
            "target": exec_class.target.value,
            "is_system_operator": exec_class.is_system_operator,
            "is_mock_execution": exec_class.is_mock_execution,
            "is_manual_trade": exec_class.is_manual_trade,
            "trade_id": trade_id or "pending",
            "derived_from": exec_class.derived_from.model_dump(),
        },
    )

def resolve_execution_user_id(
    *,
    is_system_operator: bool,
    auth_user_id: str | None,
    intent_user_id: str | None,
) -> str:
    """
    Pick the user id a trade is recorded under.

    System-operator trades always land on the configured system identity,
    whatever the caller supplied. Otherwise the authenticated session wins
    over the id carried on the intent. Raises IdentityResolutionError when neither is available.
    """
    if is_system_operator:
        return settings.SYSTEM_USER_ID
    if auth_user_id:
        return auth_user_id
    if intent_user_id:
        return intent_user_id
    raise IdentityResolutionError("Cannot resolve execution user id: no authenticated user and no intent user id")
