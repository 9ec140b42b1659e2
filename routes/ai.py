"""AI assistant routes (AI add-on)."""

from flask import Blueprint, Response, jsonify, request, stream_with_context

from extensions import db
from models import Permission
from services.assistant import chat, run_agent, stream_chat
from services.auth import current_language, login_required, permission_required
from services.errors import ValidationError
from services.marketing import generate_marketing
from services.ownership import require_owner
from services.subscription import feature_required

ai_bp = Blueprint("ai", __name__, url_prefix="/api/ai")


def _messages(data: dict) -> list:
    messages = data.get("messages")
    if messages is None and data.get("message"):
        messages = [{"role": "user", "content": data["message"]}]
    if not isinstance(messages, list) or not messages:
        raise ValidationError(detail="messages are required")
    return messages


@ai_bp.route("/chat", methods=["POST"])
@login_required
@feature_required("ai")
def ai_chat():
    data = request.get_json(silent=True) or {}
    result = chat(require_owner(), _messages(data), data.get("context"))
    db.session.commit()
    return jsonify(result)


@ai_bp.route("/chat/stream", methods=["POST"])
@login_required
@feature_required("ai")
def ai_chat_stream():
    data = request.get_json(silent=True) or {}
    events = stream_chat(require_owner(), _messages(data), data.get("context"))
    db.session.commit()
    return Response(
        stream_with_context(events),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@ai_bp.route("/agent", methods=["POST"])
@permission_required(Permission.BILLING)
@feature_required("ai")
def ai_agent():
    data = request.get_json(silent=True) or {}
    result = run_agent(require_owner(), _messages(data), data.get("context"))
    db.session.commit()
    return jsonify(result)


@ai_bp.route("/marketing", methods=["POST"])
@login_required
@feature_required("ai")
def ai_marketing():
    data = request.get_json(silent=True) or {}
    result = generate_marketing(
        require_owner(),
        data.get("template", ""),
        data.get("language") or current_language(),
        data.get("details") or {},
        with_image=data.get("with_image", True) is not False,
    )
    db.session.commit()
    return jsonify(result)
