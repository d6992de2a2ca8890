"""Flask-WTF forms for the admin content and project editors."""
import json

from flask_wtf import FlaskForm
from wtforms import BooleanField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional, ValidationError

SECTION_TYPE_CHOICES = ('settings', 'hero', 'about', 'services', 'portfolio', 'reviews', 'contact', 'order')


class _BaseAdminForm(FlaskForm):
    class Meta:
        # The project already enforces CSRF globally in app.before_request.
        csrf = False


class ContentSectionForm(_BaseAdminForm):
    section_type = SelectField(
        'Type',
        choices=[(kind, kind) for kind in SECTION_TYPE_CHOICES],
        validators=[DataRequired(message='Please choose a known section type.')],
    )
    title = StringField('Title', validators=[Optional(), Length(max=300)])
    subtitle = StringField('Subtitle', validators=[Optional(), Length(max=500)])
    content = TextAreaField('Content', validators=[Optional(), Length(max=100000)])
    image_url = StringField('Image URL', validators=[Optional(), Length(max=500)])
    is_active = BooleanField('Active')
    sort_order = IntegerField('Sort order', validators=[Optional(), NumberRange(min=0, max=100000)])
    metadata = TextAreaField('Metadata')

    parsed_metadata = None

    def validate_metadata(self, field):
        raw = (field.data or '').strip() or '{}'
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError('Invalid JSON in metadata.') from None
        if not isinstance(value, dict):
            raise ValidationError('Metadata must be a JSON object.')
        self.parsed_metadata = value


class ProjectForm(_BaseAdminForm):
    title = StringField('Title', validators=[DataRequired(message='Project title is required.'), Length(max=300)])
    description = TextAreaField('Description', validators=[Optional(), Length(max=5000)])
    image_url = StringField('Image URL', validators=[Optional(), Length(max=500)])
    technologies = StringField('Technologies', validators=[Optional(), Length(max=1000)])
    github_url = StringField('GitHub URL', validators=[Optional(), Length(max=500)])
    demo_url = StringField('Demo URL', validators=[Optional(), Length(max=500)])
    category = StringField('Category', validators=[Optional(), Length(max=100)])
    is_featured = BooleanField('Featured')
    sort_order = IntegerField('Sort order', validators=[Optional(), NumberRange(min=0, max=100000)])

    def technology_list(self):
        return [item.strip() for item in (self.technologies.data or '').split(',') if item.strip()]
