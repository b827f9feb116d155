"""AI writing modes.

Each handler makes one gateway call.  Transport and configuration failures
become a 500 with a short message the editor shows inline; only the generate
mode reports a missing credential verbatim.
"""
from __future__ import annotations

from flask import current_app, jsonify
from flask_login import login_required

from ..errors import ApiError, json_object
from ..services import get_gateway
from ..services.llm_gateway import ASSIST_KINDS
from ..services.text_clients import LLMConfigurationError, LLMServiceError
from . import bp


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


@bp.route("/assist", methods=["POST"])
@login_required
def assist():
    payload = json_object()
    text = payload.get("text")
    assist_type = payload.get("assistType")

    if not isinstance(text, str) or not text.strip():
        raise ApiError("Text is required", 400)
    if assist_type not in ASSIST_KINDS:
        raise ApiError(f"assistType must be one of: {', '.join(ASSIST_KINDS)}", 400)

    try:
        result = get_gateway().quick_assist(text, assist_type)
    except LLMServiceError:
        current_app.logger.exception("Quick assist (%s) failed", assist_type)
        return jsonify({"error": "Failed to process text"}), 500

    return jsonify({"result": result})


@bp.route("/feedback", methods=["POST"])
@login_required
def feedback():
    payload = json_object()
    selected_text = _text(payload, "selectedText")
    question = _text(payload, "question")
    if not selected_text:
        raise ApiError("selectedText is required", 400)
    if not question:
        raise ApiError("question is required", 400)

    try:
        reply = get_gateway().get_writing_feedback(selected_text, _text(payload, "fullContext"), question)
    except LLMServiceError:
        current_app.logger.exception("Writing feedback failed")
        return jsonify({"error": "Failed to generate feedback"}), 500

    return jsonify({"feedback": reply})


@bp.route("/generate", methods=["POST"])
@login_required
def generate():
    payload = json_object()
    description = _text(payload, "description")
    if not description:
        raise ApiError("description is required", 400)

    try:
        content = get_gateway().generate_from_description(
            description,
            _text(payload, "context"),
            _text(payload, "styleReference") or None,
        )
    except LLMConfigurationError as exc:
        current_app.logger.error("Generation unavailable: %s", exc)
        return jsonify({"error": str(exc)}), 500
    except LLMServiceError:
        current_app.logger.exception("Generation failed")
        return jsonify({"error": "Failed to generate content"}), 500

    return jsonify({"content": content})


@bp.route("/storyweaver", methods=["POST"])
@login_required
def storyweaver():
    payload = json_object()
    story_context = _text(payload, "storyContext")
    author_choice = _text(payload, "authorChoice")
    if not story_context and not author_choice:
        raise ApiError("Story context or author choice is required", 400)

    try:
        turn = get_gateway().continue_story(story_context, author_choice or None)
    except LLMServiceError:
        current_app.logger.exception("Story weaver failed")
        return jsonify({"error": "Failed to continue story"}), 500

    if turn.used_fallback:
        current_app.logger.warning("Story weaver reply did not follow the NARRATIVE/CHOICES format")
    return jsonify({"narrative": turn.narrative, "choices": turn.choices})
