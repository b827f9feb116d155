from flask_wtf import FlaskForm
from wtforms import StringField, TextAreaField
from wtforms.validators import InputRequired, Length, Optional


class ProjectForm(FlaskForm):
    title = StringField("Title", validators=[InputRequired(message="Title is required"), Length(max=200)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=5000)])


class ProjectUpdateForm(FlaskForm):
    title = StringField("Title", validators=[Optional(), Length(max=200)])
    description = TextAreaField("Description", validators=[Optional(), Length(max=5000)])
