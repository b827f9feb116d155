from __future__ import annotations

from flask import jsonify
from flask_login import current_user, login_required

from ..access import owned_project
from ..errors import ApiError, form_error_message, json_object
from ..models import Project
from ..services.manuscript import ManuscriptError, create_project, delete_project, update_project
from . import bp
from .forms import ProjectForm, ProjectUpdateForm


@bp.route("", methods=["GET"])
@login_required
def list_projects():
    projects = (
        Project.query.filter_by(owner_id=current_user.id)
        .order_by(Project.updated_at.desc(), Project.id.desc())
        .all()
    )
    return jsonify([project.to_dict() for project in projects])


@bp.route("", methods=["POST"])
@login_required
def create():
    json_object("title", "description")
    form = ProjectForm()
    if not form.validate_on_submit():
        raise ApiError(form_error_message(form), 400)

    try:
        project = create_project(current_user, form.title.data, form.description.data)
    except ManuscriptError as exc:
        raise ApiError(str(exc), 400) from exc

    data = project.to_dict(include_chapters=True)
    data["firstChapterId"] = project.chapters[0].id
    return jsonify(data), 201


@bp.route("/<int:project_id>", methods=["GET"])
@login_required
def detail(project_id: int):
    project = owned_project(project_id)
    return jsonify(project.to_dict(include_chapters=True))


@bp.route("/<int:project_id>", methods=["PATCH"])
@login_required
def update(project_id: int):
    project = owned_project(project_id)
    payload = json_object("title", "description")

    form = ProjectUpdateForm()
    if not form.validate_on_submit():
        raise ApiError(form_error_message(form), 400)
    if "title" in payload and not (form.title.data or "").strip():
        raise ApiError("Title cannot be empty", 400)

    update_project(
        project,
        title=form.title.data,
        description=form.description.data,
        description_set="description" in payload,
    )
    return jsonify(project.to_dict())


@bp.route("/<int:project_id>", methods=["DELETE"])
@login_required
def delete(project_id: int):
    project = owned_project(project_id)
    delete_project(project)
    return jsonify({"success": True})
