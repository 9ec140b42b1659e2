"""Shop assistant: chat relay and the tool-calling agent."""

from __future__ import annotations

import json
import logging
from datetime import datetime, time, timezone
from typing import Iterator, Optional

from flask import current_app
from sqlalchemy import func

from extensions import db
from models import InventoryItem, Invoice
from services.ai_gateway import get_gateway, parse_action
from services.errors import ShopError, ValidationError
from services.i18n import Msg, translate
from services.inventory import add_stock, find_item_by_name
from services.invoice import create_invoice
from services.shop import get_shop_settings
from utils import money_str

logger = logging.getLogger(__name__)

MAX_HISTORY = 20

CHAT_PROMPT = (
    "You are Revonn, a helpful assistant for a small retail shop in India. "
    "Answer briefly in the user's language (English or Hindi). "
    "When the user wants to open a screen, append a JSON object "
    '{"action": "navigate", "path": "/<screen>"}. When the user dictates a bill, '
    'append {"action": "create_bill", "items": [{"name": "...", "quantity": 1, '
    '"price": 0}], "customer": "..."}. Shop context: '
)

AGENT_PROMPT = (
    "You are Revonn's store agent. Use the tools to add stock or create bills "
    "when the user asks for it; otherwise reply briefly. Shop context: "
)

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "addToInventory",
            "description": "Add stock quantity to an existing product by name.",
            "parameters": {
                "type": "object",
                "properties": {
                    "product_name": {"type": "string"},
                    "quantity": {"type": "integer", "minimum": 1},
                },
                "required": ["product_name", "quantity"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "generateInvoice",
            "description": "Create a bill for a customer from inventory products.",
            "parameters": {
                "type": "object",
                "properties": {
                    "customer_name": {"type": "string"},
                    "items": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "product_name": {"type": "string"},
                                "quantity": {"type": "integer", "minimum": 1},
                            },
                            "required": ["product_name", "quantity"],
                        },
                    },
                    "payment_mode": {
                        "type": "string",
                        "enum": ["cash", "card", "online", "due"],
                    },
                    "amount_paid": {"type": "number"},
                },
                "required": ["customer_name", "items"],
            },
        },
    },
]


def business_context(user_id: int) -> dict:
    """Small summary of the shop sent along with every prompt."""
    settings = get_shop_settings(user_id)
    start = datetime.combine(datetime.now(timezone.utc).date(), time.min)
    sales_today = (
        db.session.query(func.coalesce(func.sum(Invoice.total), 0))
        .filter(Invoice.user_id == user_id, Invoice.created_at >= start)
        .scalar()
    )
    threshold = current_app.config["APP_CONFIG"].low_stock_threshold
    low_stock = (
        InventoryItem.query.filter_by(user_id=user_id)
        .filter(InventoryItem.quantity <= threshold)
        .count()
    )
    return {
        "shop_name": settings.shop_name,
        "language": settings.language,
        "sales_today": money_str(sales_today),
        "low_stock_items": low_stock,
    }


def _build_messages(prompt: str, user_id: int, messages: list[dict], context: Optional[dict]) -> list[dict]:
    merged = business_context(user_id)
    if context:
        merged.update(context)
    cleaned = []
    for message in (messages or [])[-MAX_HISTORY:]:
        role = message.get("role") if isinstance(message, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if role in ("user", "assistant") and isinstance(content, str) and content.strip():
            cleaned.append({"role": role, "content": content})
    if not cleaned or cleaned[-1]["role"] != "user":
        raise ValidationError(detail="messages must end with a user message")
    return [{"role": "system", "content": prompt + json.dumps(merged, ensure_ascii=False)}] + cleaned


def chat(user_id: int, messages: list[dict], context: Optional[dict] = None) -> dict:
    """One chat turn.  Returns ``{"message": ..., "action": ...}``."""
    reply = get_gateway().chat_completion(_build_messages(CHAT_PROMPT, user_id, messages, context))
    text, action = parse_action(reply.get("content") or "")
    return {"message": text, "action": action}


def stream_chat(user_id: int, messages: list[dict], context: Optional[dict] = None) -> Iterator[bytes]:
    """Relay the gateway's event stream unchanged."""
    return get_gateway().stream_chat(_build_messages(CHAT_PROMPT, user_id, messages, context))


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

def _tool_add_to_inventory(user_id: int, args: dict) -> dict:
    item = add_stock(user_id, args.get("product_name", ""), args.get("quantity", 0))
    db.session.refresh(item)
    return {"success": True, "product": item.name, "new_quantity": item.quantity}


def _tool_generate_invoice(user_id: int, args: dict) -> dict:
    lines = []
    for entry in args.get("items") or []:
        if not isinstance(entry, dict):
            raise ValidationError(detail="each invoice item must be an object")
        name = entry.get("product_name", "")
        product = find_item_by_name(user_id, name)
        if product is None:
            raise ValidationError(Msg.PRODUCT_NOT_FOUND, name=name)
        lines.append({"product_id": product.id, "quantity": entry.get("quantity", 1)})
    invoice = create_invoice(
        user_id,
        lines,
        customer_name=args.get("customer_name", ""),
        payment_mode=args.get("payment_mode") or "cash",
        amount_paid=args.get("amount_paid"),
        source="assistant",
        match_customer_by_name=True,
    )
    return {
        "success": True,
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "total": money_str(invoice.total),
        "due_amount": money_str(invoice.due_amount),
    }


_TOOL_HANDLERS = {
    "addToInventory": _tool_add_to_inventory,
    "generateInvoice": _tool_generate_invoice,
}


def execute_tool(user_id: int, name: str, raw_arguments) -> dict:
    """Run one tool call.  Domain failures become an unsuccessful result."""
    handler = _TOOL_HANDLERS.get(name)
    if handler is None:
        return {"success": False, "error": f"Unknown tool: {name}"}
    if isinstance(raw_arguments, str):
        try:
            args = json.loads(raw_arguments or "{}")
        except ValueError:
            return {"success": False, "error": "Invalid tool arguments"}
    else:
        args = raw_arguments or {}
    try:
        return handler(user_id, args)
    except ShopError as exc:
        logger.warning("Agent tool %s failed for user %s: %s", name, user_id, exc)
        language = get_shop_settings(user_id).language
        return {"success": False, "error": translate(exc.msg, language, **exc.params)}


def run_agent(user_id: int, messages: list[dict], context: Optional[dict] = None) -> dict:
    """Let the model call shop tools, then ask it to summarise the outcome.

    Returns ``{"message": ..., "action": <tool name or None>, "result": ...}``.
    """
    gateway = get_gateway()
    model = current_app.config["AI_CONFIG"].agent_model
    conversation = _build_messages(AGENT_PROMPT, user_id, messages, context)
    reply = gateway.chat_completion(conversation, model=model, tools=TOOLS)

    tool_calls = reply.get("tool_calls") or []
    if not tool_calls:
        return {"message": reply.get("content") or "", "action": None, "result": None}

    conversation.append(
        {"role": "assistant", "content": reply.get("content"), "tool_calls": tool_calls}
    )
    action = None
    result = None
    for call in tool_calls:
        function = call.get("function") or {}
        name = function.get("name", "")
        outcome = execute_tool(user_id, name, function.get("arguments"))
        if action is None:
            action, result = name, outcome
        conversation.append(
            {
                "role": "tool",
                "tool_call_id": call.get("id"),
                "content": json.dumps(outcome, ensure_ascii=False),
            }
        )

    final = gateway.chat_completion(conversation, model=model)
    return {"message": final.get("content") or "", "action": action, "result": result}
