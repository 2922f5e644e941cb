#!/usr/bin/env python3
"""
Request payload validation for the JSON API.

Every validator takes the decoded JSON body (camelCase keys, as sent by the
front end) and returns a cleaned dict with snake_case keys ready for the
storage layer, or raises ValidationError listing every problem found.
"""

from datetime import datetime, time

from site_utils import strip_html

AD_TYPES = ('image', 'video', 'audio')
AD_PLACEMENTS = ('banner', 'sidebar', 'popup', 'interstitial', 'pre-game', 'post-game')
GAME_TYPES = ('html5', 'iframe', 'external')
CONTENT_VALUE_TYPES = ('text', 'image', 'html')


class ValidationError(ValueError):
    """Raised when a request payload does not pass validation"""

    def __init__(self, message, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class _Checker:
    """Collects field errors so one response can report all of them"""

    def __init__(self, data):
        if not isinstance(data, dict):
            raise ValidationError('Request body must be a JSON object')
        self.data = data
        self.errors = []
        self.cleaned = {}

    def error(self, field, message):
        self.errors.append({'path': [field], 'message': message})

    def string(self, field, target, required=True, max_length=None, min_length=1, plain=False):
        value = self.data.get(field)
        if value is None or value == '':
            if required:
                self.error(field, 'Required')
            return
        if not isinstance(value, str):
            self.error(field, 'Expected string')
            return
        value = value.strip()
        if plain:
            value = strip_html(value)
        if len(value) < min_length:
            self.error(field, f'Must be at least {min_length} characters')
            return
        if max_length and len(value) > max_length:
            self.error(field, f'Must be at most {max_length} characters')
            return
        self.cleaned[target] = value

    def integer(self, field, target, required=True, minimum=None, maximum=None):
        value = self.data.get(field)
        if value is None:
            if required:
                self.error(field, 'Required')
            return
        # bool is an int subclass, reject it explicitly
        if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
            self.error(field, 'Expected integer')
            return
        value = int(value)
        if minimum is not None and value < minimum:
            self.error(field, f'Must be at least {minimum}')
            return
        if maximum is not None and value > maximum:
            self.error(field, f'Must be at most {maximum}')
            return
        self.cleaned[target] = value

    def number(self, field, target, minimum=0):
        value = self.data.get(field)
        if value is None or value == '':
            return
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            self.error(field, 'Expected number')
            return
        if value < minimum:
            self.error(field, f'Must be at least {minimum}')
            return
        self.cleaned[target] = float(value)

    def boolean(self, field, target):
        value = self.data.get(field)
        if value is None:
            return
        if not isinstance(value, bool):
            self.error(field, 'Expected boolean')
            return
        self.cleaned[target] = value

    def choice(self, field, target, choices, required=True):
        value = self.data.get(field)
        if value is None or value == '':
            if required:
                self.error(field, 'Required')
            return
        if value not in choices:
            self.error(field, f"Must be one of: {', '.join(choices)}")
            return
        self.cleaned[target] = value

    def date(self, field, target, end_of_day=False):
        value = self.data.get(field)
        if value is None or value == '':
            return
        if not isinstance(value, str):
            self.error(field, 'Expected ISO date')
            return
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            self.error(field, 'Expected ISO date')
            return
        # Dates are stored naive, in server local time
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone().replace(tzinfo=None)
        # A bare YYYY-MM-DD end date covers that whole day
        if end_of_day and 'T' not in value and ' ' not in value.strip():
            parsed = datetime.combine(parsed.date(), time.max)
        self.cleaned[target] = parsed.isoformat()

    def result(self, message):
        if self.errors:
            raise ValidationError(message, self.errors)
        return self.cleaned


def validate_user(data):
    """Registration payload"""
    check = _Checker(data)
    check.string('username', 'username', min_length=3, max_length=20)
    check.string('password', 'password', min_length=6, max_length=128)
    check.string('email', 'email', required=False, max_length=254)
    check.string('avatarUrl', 'avatar_url', required=False, max_length=2048)
    cleaned = check.result('Invalid user data')
    if 'email' in cleaned and '@' not in cleaned['email']:
        raise ValidationError('Invalid user data', [{'path': ['email'], 'message': 'Invalid email'}])
    return cleaned


def _game_fields(check, partial):
    required = not partial
    check.string('title', 'title', required=required, max_length=200)
    check.string('description', 'description', required=required)
    check.string('imageUrl', 'image_url', required=required, max_length=2048)
    check.integer('categoryId', 'category_id', required=required, minimum=1)
    check.boolean('isFeatured', 'is_featured')
    check.boolean('isNew', 'is_new')
    check.boolean('isHot', 'is_hot')
    check.string('developer', 'developer', required=False, max_length=200)
    check.string('instructions', 'instructions', required=False)
    check.string('gameUrl', 'game_url', required=False, max_length=2048)
    check.date('releaseDate', 'release_date')
    check.boolean('isHosted', 'is_hosted')
    check.string('gameFolder', 'game_folder', required=False, max_length=200)
    check.string('entryFile', 'entry_file', required=False, max_length=500)
    check.choice('gameType', 'game_type', GAME_TYPES, required=False)
    check.integer('fileSize', 'file_size', required=False, minimum=0)


def validate_game(data):
    check = _Checker(data)
    _game_fields(check, partial=False)
    return check.result('Invalid game data')


def validate_game_update(data):
    check = _Checker(data)
    _game_fields(check, partial=True)
    return check.result('Invalid game data')


def validate_category(data, partial=False):
    check = _Checker(data)
    check.string('name', 'name', required=not partial, max_length=100)
    check.string('slug', 'slug', required=False, max_length=100)
    check.string('description', 'description', required=False)
    check.string('imageUrl', 'image_url', required=False, max_length=2048)
    return check.result('Invalid category data')


def validate_score(data):
    check = _Checker(data)
    check.integer('userId', 'user_id', minimum=1)
    check.integer('gameId', 'game_id', minimum=1)
    check.integer('score', 'score', minimum=0)
    check.boolean('won', 'won')
    return check.result('Invalid score data')


def validate_review(data):
    check = _Checker(data)
    check.integer('gameId', 'game_id', minimum=1)
    check.integer('rating', 'rating', minimum=1, maximum=5)
    check.string('comment', 'comment', required=False, max_length=2000, plain=True)
    return check.result('Invalid review data')


def validate_chat_message(data):
    check = _Checker(data)
    check.integer('userId', 'user_id', minimum=1)
    check.string('message', 'message', max_length=500, plain=True)
    return check.result('Invalid message data')


def _advertisement_fields(check, partial):
    required = not partial
    check.string('title', 'title', required=required, max_length=200)
    check.string('description', 'description', required=False)
    check.choice('type', 'type', AD_TYPES, required=required)
    check.string('mediaUrl', 'media_url', required=required, max_length=2048)
    check.string('clickUrl', 'click_url', required=False, max_length=2048)
    check.choice('placement', 'placement', AD_PLACEMENTS, required=required)
    check.integer('priority', 'priority', required=False, minimum=0)
    check.boolean('isActive', 'is_active')
    check.date('startDate', 'start_date')
    check.date('endDate', 'end_date', end_of_day=True)
    check.number('budget', 'budget')
    check.number('costPerClick', 'cost_per_click')
    check.number('costPerView', 'cost_per_view')


def validate_advertisement(data):
    check = _Checker(data)
    _advertisement_fields(check, partial=False)
    cleaned = check.result('Invalid advertisement data')
    _check_date_window(cleaned)
    return cleaned


def validate_advertisement_update(data):
    check = _Checker(data)
    _advertisement_fields(check, partial=True)
    cleaned = check.result('Invalid advertisement data')
    _check_date_window(cleaned)
    return cleaned


def _check_date_window(cleaned):
    start, end = cleaned.get('start_date'), cleaned.get('end_date')
    if start and end and end < start:
        raise ValidationError('Invalid advertisement data',
                              [{'path': ['endDate'], 'message': 'End date is before start date'}])


def validate_website_content(data, partial=False):
    check = _Checker(data)
    check.string('section', 'section', required=not partial, max_length=100)
    check.string('key', 'key', required=not partial, max_length=100)
    check.string('value', 'value', required=not partial, min_length=0)
    check.choice('valueType', 'value_type', CONTENT_VALUE_TYPES, required=False)
    return check.result('Invalid content data')


def validate_contact_message(data):
    check = _Checker(data)
    check.string('name', 'name', max_length=100, plain=True)
    check.string('email', 'email', max_length=254)
    check.string('subject', 'subject', required=False, max_length=200, plain=True)
    check.string('message', 'message', max_length=5000, plain=True)
    cleaned = check.result('Invalid contact data')
    if '@' not in cleaned['email']:
        raise ValidationError('Invalid contact data', [{'path': ['email'], 'message': 'Invalid email'}])
    return cleaned
