from flask import current_app, jsonify
from flask_login import current_user, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ..errors import ApiError, form_error_message, json_object
from ..models import User
from ..storage import atomic
from . import bp
from .forms import LoginForm, RegistrationForm

INVALID_CREDENTIALS = "Invalid username or password."


def _username(raw) -> str:
    return raw.strip().lower() if isinstance(raw, str) else ""


@bp.route("/register", methods=["POST"])
def register():
    json_object("username", "password", "display_name")
    form = RegistrationForm()
    if not form.validate_on_submit():
        raise ApiError(form_error_message(form), 400)

    username = _username(form.username.data)
    if not username:
        raise ApiError("Username is required", 400)
    if User.query.filter_by(username=username).first():
        raise ApiError("Username already taken", 409)

    with atomic() as session:
        user = User(username=username, display_name=(form.display_name.data or "").strip() or None)
        user.set_password(form.password.data)
        session.add(user)

    login_user(user, remember=True)
    current_app.logger.info("Registered user %s", user.username)
    return jsonify({"user": user.to_dict()}), 201


@bp.route("/login", methods=["POST"])
def login():
    json_object("username", "password")
    form = LoginForm()
    if not form.validate_on_submit():
        raise ApiError(form_error_message(form), 400)

    user = User.query.filter_by(username=_username(form.username.data)).first()
    if user is None or not user.check_password(form.password.data):
        current_app.logger.info("Failed sign-in attempt")
        raise ApiError(INVALID_CREDENTIALS, 401)

    login_user(user, remember=True)
    return jsonify({"user": user.to_dict()})


@bp.route("/logout", methods=["POST"])
def logout():
    logout_user()
    return jsonify({"success": True})


@bp.route("/check", methods=["GET"])
def check():
    if current_user.is_authenticated:
        return jsonify(
            {
                "authenticated": True,
                "username": current_user.username,
                "user": current_user.to_dict(),
                "csrfToken": generate_csrf(),
            }
        )
    return jsonify({"authenticated": False, "username": None, "csrfToken": generate_csrf()})
