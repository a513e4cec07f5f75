"""Request payloads and response serializers for the chat API."""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.manager import CostStats, TurnResult
from ..core.session import Role, Turn


class StartPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")


class MessagePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    message: str = Field(min_length=1)


def money(value: Decimal) -> float:
    """JSON-friendly dollars; Decimal stays authoritative internally."""
    return float(value)


def turn_result_body(result: TurnResult) -> Dict[str, Any]:
    """Serialize a turn result; degraded replies carry no cost info."""
    if not result.success:
        return {"success": False, "message": result.reply}

    body: Dict[str, Any] = {
        "success": True,
        "message": result.reply,
        "contextProducts": [item.as_context_product() for item in result.context_items],
        "budgetExhausted": result.budget_exhausted,
    }
    if result.cost is not None:
        body["costInfo"] = {
            "requestCost": money(result.cost.request_cost),
            "remainingBudget": money(result.cost.remaining_budget),
            "totalCost": money(result.cost.total_cost),
            "tokensUsed": result.cost.tokens_used,
        }
    return body


def history_body(session_id: str, status, turns: List[Turn]) -> Dict[str, Any]:
    return {
        "success": True,
        "sessionId": session_id,
        "status": status.value,
        "messages": [
            {
                "sender": "user" if turn.role is Role.USER else "bot",
                "text": turn.text,
                "timestamp": turn.timestamp,
            }
            for turn in turns
        ],
    }


def cost_stats_body(stats: CostStats) -> Dict[str, Any]:
    snapshot = stats.snapshot
    return {
        "budget": money(snapshot.ceiling),
        "totalCost": money(snapshot.spent),
        "remainingBudget": money(snapshot.remaining),
        "totalTokensUsed": snapshot.tokens_used,
        "tips": list(stats.tips),
    }
