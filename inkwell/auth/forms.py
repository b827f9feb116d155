from flask_wtf import FlaskForm
from wtforms import PasswordField, StringField
from wtforms.validators import InputRequired, Length, Optional

MIN_PASSWORD_LENGTH = 4


class RegistrationForm(FlaskForm):
    username = StringField(
        "Username",
        validators=[InputRequired(message="Username is required"), Length(max=120)],
    )
    password = PasswordField(
        "Password",
        validators=[
            InputRequired(message="Password is required"),
            Length(
                min=MIN_PASSWORD_LENGTH,
                max=128,
                message=f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            ),
        ],
    )
    display_name = StringField("Display name", validators=[Optional(), Length(max=120)])


class LoginForm(FlaskForm):
    username = StringField("Username", validators=[InputRequired(message="Username is required")])
    password = PasswordField("Password", validators=[InputRequired(message="Password is required")])
