from __future__ import annotations

from flask import current_app, jsonify, request
from flask_login import current_user, login_required

from ..access import owned_project
from ..errors import ApiError, NotFoundError, UnauthorizedError, json_object
from ..extensions import db
from ..services import get_gateway
from ..services.story_bible import NoChaptersError, extract_story_bible, run_consistency_check, story_bible_for
from ..services.text_clients import LLMConfigurationError, LLMServiceError
from . import bp
from .entities import ENTITY_KINDS, create_entity, delete_entity, update_entity

KIND_PATTERN = "any(" + ", ".join(f'"{name}"' for name in ENTITY_KINDS) + ")"


def _owned_entity(kind_name: str, entity_id: int):
    kind = ENTITY_KINDS[kind_name]
    row = db.session.get(kind.model, entity_id)
    if row is None:
        raise NotFoundError(f"{kind.label.capitalize()} not found")
    if row.project.owner_id != current_user.id:
        raise UnauthorizedError()
    return kind, row


@bp.route("/<int:project_id>", methods=["GET"])
@login_required
def bible(project_id: int):
    project = owned_project(project_id)
    return jsonify(story_bible_for(project))


@bp.route("/<int:project_id>/extract", methods=["POST"])
@login_required
def extract(project_id: int):
    project = owned_project(project_id)

    try:
        counts = extract_story_bible(project, get_gateway())
    except NoChaptersError as exc:
        raise NotFoundError(str(exc)) from exc
    except LLMConfigurationError as exc:
        current_app.logger.error("Story bible extraction unavailable: %s", exc)
        return jsonify({"error": str(exc)}), 500
    except LLMServiceError:
        current_app.logger.exception("Story bible extraction failed for project %s", project.id)
        return jsonify({"error": "Failed to extract story bible"}), 500

    return jsonify({"success": True, "extracted": counts.to_dict()})


@bp.route("/<int:project_id>/consistency", methods=["POST"])
@login_required
def consistency(project_id: int):
    project = owned_project(project_id)

    try:
        flags = run_consistency_check(project, get_gateway())
    except NoChaptersError as exc:
        raise ApiError(str(exc), 400) from exc
    except LLMConfigurationError as exc:
        current_app.logger.error("Consistency check unavailable: %s", exc)
        return jsonify({"error": str(exc)}), 500
    except LLMServiceError:
        current_app.logger.exception("Consistency check failed for project %s", project.id)
        return jsonify({"error": "Failed to check consistency"}), 500

    return jsonify({"flags": [flag.to_dict() for flag in flags]})


@bp.route(f"/<{KIND_PATTERN}:kind_name>", methods=["GET"])
@login_required
def list_entities(kind_name: str):
    try:
        project_id = int(request.args.get("projectId", ""))
    except ValueError:
        raise ApiError("projectId is required", 400)
    project = owned_project(project_id)
    kind = ENTITY_KINDS[kind_name]
    rows = kind.model.query.filter_by(project_id=project.id).order_by(kind.model.id).all()
    return jsonify([row.to_dict() for row in rows])


@bp.route(f"/<{KIND_PATTERN}:kind_name>", methods=["POST"])
@login_required
def create(kind_name: str):
    payload = json_object()
    try:
        project_id = int(payload.get("projectId"))
    except (TypeError, ValueError):
        raise ApiError("projectId is required", 400)

    project = owned_project(project_id)
    row = create_entity(ENTITY_KINDS[kind_name], project, payload)
    return jsonify(row.to_dict()), 201


@bp.route(f"/<{KIND_PATTERN}:kind_name>/<int:entity_id>", methods=["GET"])
@login_required
def detail(kind_name: str, entity_id: int):
    _, row = _owned_entity(kind_name, entity_id)
    return jsonify(row.to_dict())


@bp.route(f"/<{KIND_PATTERN}:kind_name>/<int:entity_id>", methods=["PATCH"])
@login_required
def update(kind_name: str, entity_id: int):
    kind, row = _owned_entity(kind_name, entity_id)
    payload = json_object()
    update_entity(kind, row, payload)
    return jsonify(row.to_dict())


@bp.route(f"/<{KIND_PATTERN}:kind_name>/<int:entity_id>", methods=["DELETE"])
@login_required
def delete(kind_name: str, entity_id: int):
    _, row = _owned_entity(kind_name, entity_id)
    delete_entity(row)
    return jsonify({"success": True})
