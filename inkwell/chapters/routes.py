from __future__ import annotations

from typing import Optional

from flask import jsonify
from flask_login import login_required

from ..access import owned_chapter, owned_project
from ..errors import ApiError, NotFoundError, json_object
from ..extensions import db
from ..models import Version
from ..services.manuscript import (
    ChapterUpdate,
    ManuscriptError,
    add_chapter,
    delete_chapter,
    list_versions,
    restore_version,
    update_chapter,
)
from . import bp

TITLE_LENGTH = 200


def _optional_text(payload: dict, key: str, max_length: Optional[int] = None):
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise ApiError(f"{key} must be a string", 400)
    if value is not None and max_length is not None and len(value.strip()) > max_length:
        raise ApiError(f"{key} must be at most {max_length} characters", 400)
    return value


@bp.route("", methods=["POST"])
@login_required
def create():
    payload = json_object()
    project_id_raw = payload.get("projectId")
    try:
        project_id = int(project_id_raw)
    except (TypeError, ValueError):
        raise ApiError("projectId is required", 400)

    project = owned_project(project_id)
    chapter = add_chapter(project, _optional_text(payload, "title", TITLE_LENGTH))
    return jsonify(chapter.to_dict()), 201


@bp.route("/<int:chapter_id>", methods=["GET"])
@login_required
def detail(chapter_id: int):
    return jsonify(owned_chapter(chapter_id).to_dict())


@bp.route("/<int:chapter_id>", methods=["PATCH"])
@login_required
def autosave(chapter_id: int):
    chapter = owned_chapter(chapter_id)
    payload = json_object()

    update = ChapterUpdate(
        content=_optional_text(payload, "content"),
        title=_optional_text(payload, "title", TITLE_LENGTH),
        create_version=bool(payload.get("createVersion")),
        version_label=_optional_text(payload, "versionLabel", TITLE_LENGTH),
    )
    try:
        version = update_chapter(chapter, update)
    except ManuscriptError as exc:
        raise ApiError(str(exc), 400) from exc

    data = chapter.to_dict()
    data["versionId"] = version.id if version is not None else None
    return jsonify(data)


@bp.route("/<int:chapter_id>", methods=["DELETE"])
@login_required
def delete(chapter_id: int):
    chapter = owned_chapter(chapter_id)
    remaining = delete_chapter(chapter)
    return jsonify({"success": True, "chapters": [sibling.to_dict() for sibling in remaining]})


@bp.route("/<int:chapter_id>/versions", methods=["GET"])
@login_required
def versions(chapter_id: int):
    chapter = owned_chapter(chapter_id)
    return jsonify([version.to_dict() for version in list_versions(chapter)])


@bp.route("/<int:chapter_id>/versions/<int:version_id>/restore", methods=["POST"])
@login_required
def restore(chapter_id: int, version_id: int):
    chapter = owned_chapter(chapter_id)
    version = db.session.get(Version, version_id)
    if version is None or version.chapter_id != chapter.id:
        raise NotFoundError("Version not found")

    try:
        restore_version(chapter, version)
    except ManuscriptError as exc:
        raise ApiError(str(exc), 400) from exc
    return jsonify(chapter.to_dict())
