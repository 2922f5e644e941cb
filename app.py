#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
PlayinMO - Browser Gaming Portal
Copyright (C) 2025 PlayinMO contributors

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU General Public License as published by
the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU General Public License for more details.

You should have received a copy of the GNU General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

from flask import Flask, request, jsonify, send_file, send_from_directory, redirect, session
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from flask_cors import CORS
from flask_socketio import SocketIO
from werkzeug.exceptions import HTTPException
import asyncio
import logging
import os
import secrets
import threading
import time
from functools import wraps
from urllib.parse import urlencode

import requests

from ad_service import AdService
from auth import User, admin_required, verify_password
from credential_manager import CredentialManager
from email_service import EmailService, generate_otp, get_otp_expiry
from game_uploads import UploadError, save_game_bundle
from image_proxy import ImageDownloadError, ImageProxyService
from site_config import load_config
from site_utils import parse_limit
from storage import DatabaseStorage, DuplicateEntryError, public_user
from validators import (
    ValidationError,
    validate_advertisement,
    validate_advertisement_update,
    validate_category,
    validate_chat_message,
    validate_contact_message,
    validate_game,
    validate_game_update,
    validate_review,
    validate_score,
    validate_user,
    validate_website_content,
)

GOOGLE_AUTH_URL = 'https://accounts.google.com/o/oauth2/v2/auth'
GOOGLE_TOKEN_URL = 'https://oauth2.googleapis.com/token'
GOOGLE_USERINFO_URL = 'https://openidconnect.googleapis.com/v1/userinfo'
EXTERNAL_API_TIMEOUT_SECONDS = 10
IMAGE_CACHE_SECONDS = 86400
MAINTENANCE_INTERVAL_SECONDS = 24 * 60 * 60

# Load configuration
config = load_config()

app = Flask(__name__)
app.secret_key = os.environ.get('PLAYINMO_SECRET_KEY') or config['secret_key']

app.config['SESSION_COOKIE_HTTPONLY'] = True
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
app.config['SESSION_COOKIE_SECURE'] = bool(os.environ.get('PLAYINMO_SECURE_COOKIES'))  # Set behind HTTPS
app.config['SESSION_COOKIE_NAME'] = 'playinmo_session'
app.config['PERMANENT_SESSION_LIFETIME'] = 86400  # 1 day
app.config['MAX_CONTENT_LENGTH'] = config['uploads']['max_upload_mb'] * 1024 * 1024

login_manager = LoginManager()
login_manager.init_app(app)
login_manager.session_protection = 'strong'

CORS(app, supports_credentials=True)
socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')

# Disable Flask's default HTTP request logging to reduce console spam
logging.getLogger('werkzeug').setLevel(logging.ERROR)

# Services, (re)built by init_services()
credential_manager = None
storage = None
ad_service = None
image_proxy = None
email_service = None


def init_services(new_config=None):
    """Build the storage and service singletons from a configuration"""
    global config, credential_manager, storage, ad_service, image_proxy, email_service
    if new_config is not None:
        config = new_config

    credential_manager = CredentialManager(
        credentials_file=config['credentials']['file'],
        encoded_credentials_file=config['credentials']['encoded_file']
    )
    storage = DatabaseStorage(config['database']['path'])
    storage.init_db()
    ad_service = AdService(
        storage,
        pre_game_skip_seconds=config['ads']['pre_game_skip_seconds'],
        impression_retention_hours=config['ads']['impression_retention_hours']
    )
    image_proxy = ImageProxyService(
        cache_dir=config['image_proxy']['cache_dir'],
        mappings=config['image_proxy']['mappings'],
        max_age_hours=config['image_proxy']['max_age_hours'],
        timeout=config['image_proxy']['timeout']
    )
    email_service = EmailService(
        credential_manager,
        from_address=config['mail']['from_address'],
        contact_inbox=config['mail']['contact_inbox']
    )
    os.makedirs(config['uploads']['games_directory'], exist_ok=True)
    app.config['MAX_CONTENT_LENGTH'] = config['uploads']['max_upload_mb'] * 1024 * 1024


init_services()


def configure_logging(cfg):
    """Root logger level and log file from the logging section"""
    logging_config = cfg.get('logging', {})
    level = getattr(logging, str(logging_config.get('level', 'INFO')).upper(), logging.INFO)
    handlers = [logging.StreamHandler()]
    log_file = logging_config.get('file')
    if log_file:
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


@login_manager.user_loader
def load_user(user_id):
    try:
        return User.from_row(storage.get_user(int(user_id)))
    except ValueError:
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'message': 'Not authenticated'}), 401


def error_response(message, status, errors=None):
    body = {'message': message}
    if errors:
        body['errors'] = errors
    return jsonify(body), status


def handle_api_errors(failure_message, conflict_message='Entry already exists'):
    """Turn validation problems into 400s, unique collisions into 409s and anything unexpected into a logged 500"""
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            try:
                return view(*args, **kwargs)
            except ValidationError as e:
                return error_response(e.message, 400, e.errors)
            except DuplicateEntryError as e:
                app.logger.info(f'{conflict_message}: {e}')
                return error_response(conflict_message, 409)
            except HTTPException:
                raise
            except Exception as e:
                app.logger.error(f'{failure_message}: {e}', exc_info=True)
                return error_response(failure_message, 500)
        return wrapped
    return decorator


def parse_id(value):
    """Positive integer id from a URL segment, None if it is not one"""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def current_user_dict():
    return public_user(storage.get_user(current_user.id))


@app.errorhandler(413)
def request_too_large(_error):
    return error_response('Uploaded file is too large', 413)


@app.route('/api/health')
def health():
    return jsonify({'status': 'ok', 'time': int(time.time())})


# === Games ===

@app.route('/api/games', methods=['GET'])
@handle_api_errors('Failed to fetch games')
def list_games():
    return jsonify(storage.get_games())


@app.route('/api/games/featured')
@handle_api_errors('Failed to fetch featured games')
def featured_games():
    return jsonify(storage.get_featured_games())


@app.route('/api/games/<game_id>', methods=['GET'])
@handle_api_errors('Failed to fetch game')
def get_game(game_id):
    game_id = parse_id(game_id)
    if game_id is None:
        return error_response('Invalid game ID', 400)
    game = storage.get_game_by_id(game_id)
    if not game:
        return error_response('Game not found', 404)
    return jsonify(game)


@app.route('/api/games/category/<slug>')
@handle_api_errors('Failed to fetch games by category')
def games_by_category(slug):
    return jsonify(storage.get_games_by_category(slug))


@app.route('/api/games/<game_id>/play', methods=['POST'])
@handle_api_errors('Failed to increment game plays')
def play_game(game_id):
    game_id = parse_id(game_id)
    if game_id is None:
        return error_response('Invalid game ID', 400)
    game = storage.increment_game_plays(game_id)
    if not game:
        return error_response('Game not found', 404)
    return jsonify(game)


@app.route('/api/games', methods=['POST'])
@admin_required
@handle_api_errors('Failed to create game')
def create_game():
    data = validate_game(json_body())
    if not storage.get_game_category(data['category_id']):
        return error_response('Category not found', 400)
    game = storage.create_game(data)
    app.logger.info(f"Game {game['id']} created by {current_user.username}: {game['title']}")
    return jsonify(game), 201


@app.route('/api/games/<game_id>', methods=['PATCH'])
@admin_required
@handle_api_errors('Failed to update game')
def update_game(game_id):
    game_id = parse_id(game_id)
    if game_id is None:
        return error_response('Invalid game ID', 400)
    data = validate_game_update(json_body())
    if 'category_id' in data and not storage.get_game_category(data['category_id']):
        return error_response('Category not found', 400)
    game = storage.update_game(game_id, data)
    if not game:
        return error_response('Game not found', 404)
    return jsonify(game)


@app.route('/api/games/<game_id>', methods=['DELETE'])
@admin_required
@handle_api_errors('Failed to delete game')
def delete_game(game_id):
    game_id = parse_id(game_id)
    if game_id is None:
        return error_response('Invalid game ID', 400)
    if not storage.delete_game(game_id):
        return error_response('Game not found', 404)
    app.logger.info(f'Game {game_id} deleted by {current_user.username}')
    return jsonify({'success': True})


# === Categories ===

@app.route('/api/categories', methods=['GET'])
@handle_api_errors('Failed to fetch categories')
def list_categories():
    return jsonify(storage.get_game_categories())


@app.route('/api/categories/<slug>', methods=['GET'])
@handle_api_errors('Failed to fetch category')
def get_category(slug):
    category = storage.get_game_category_by_slug(slug)
    if not category:
        return error_response('Category not found', 404)
    return jsonify(category)


def category_name_taken(name, exclude_id=None):
    """Category names are unique regardless of case"""
    return any(c['name'].lower() == name.lower() and c['id'] != exclude_id
               for c in storage.get_game_categories())


@app.route('/api/categories', methods=['POST'])
@admin_required
@handle_api_errors('Failed to create category', 'Category already exists')
def create_category():
    data = validate_category(json_body())
    if category_name_taken(data['name']):
        return error_response('Category already exists', 409)
    return jsonify(storage.create_game_category(data)), 201


@app.route('/api/categories/<category_id>', methods=['PATCH'])
@admin_required
@handle_api_errors('Failed to update category', 'Category already exists')
def update_category(category_id):
    category_id = parse_id(category_id)
    if category_id is None:
        return error_response('Invalid category ID', 400)
    data = validate_category(json_body(), partial=True)
    if 'name' in data and category_name_taken(data['name'], exclude_id=category_id):
        return error_response('Category already exists', 409)
    category = storage.update_category(category_id, data)
    if not category:
        return error_response('Category not found', 404)
    return jsonify(category)


@app.route('/api/categories/<category_id>', methods=['DELETE'])
@admin_required
@handle_api_errors('Failed to delete category')
def delete_category(category_id):
    category_id = parse_id(category_id)
    if category_id is None:
        return error_response('Invalid category ID', 400)
    if not storage.get_game_category(category_id):
        return error_response('Category not found', 404)
    in_use = storage.count_games_in_category(category_id)
    if in_use:
        return error_response(f'Category is used by {in_use} games', 409)
    storage.delete_category(category_id)
    return jsonify({'success': True})


# === Scores & leaderboard ===

@app.route('/api/scores/game/<game_id>')
@handle_api_errors('Failed to fetch scores')
def game_scores(game_id):
    game_id = parse_id(game_id)
    if game_id is None:
        return error_response('Invalid game ID', 400)
    limit = parse_limit(request.args.get('limit'), 10)
    return jsonify(storage.get_top_scores_by_game(game_id, limit))


@app.route('/api/leaderboard')
@handle_api_errors('Failed to fetch leaderboard')
def leaderboard():
    limit = parse_limit(request.args.get('limit'), 10)
    return jsonify(storage.get_top_players(limit))


@app.route('/api/scores', methods=['POST'])
@login_required
@handle_api_errors('Failed to submit score')
def submit_score():
    body = json_body()
    # Scores are always recorded for the player who is logged in
    data = validate_score({**body, 'userId': current_user.id})
    if not storage.get_game_by_id(data['game_id']):
        return error_response('Game not found', 404)
    score = storage.create_game_score(data)
    socketio.emit('leaderboard_updated', {'gameId': score['gameId']})
    return jsonify(score), 201


# === Reviews ===

@app.route('/api/games/<game_id>/reviews')
@handle_api_errors('Failed to fetch game reviews')
def game_reviews(game_id):
    game_id = parse_id(game_id)
    if game_id is None:
        return error_response('Invalid game ID', 400)
    return jsonify(storage.get_game_reviews(game_id))


@app.route('/api/games/<game_id>/rating')
@handle_api_errors('Failed to fetch game rating')
def game_rating(game_id):
    game_id = parse_id(game_id)
    if game_id is None:
        return error_response('Invalid game ID', 400)
    if not storage.get_game_by_id(game_id):
        return error_response('Game not found', 404)
    return jsonify({
        'gameId': game_id,
        'averageRating': storage.get_game_average_rating(game_id),
        'totalReviews': len(storage.get_game_reviews(game_id)),
    })


@app.route('/api/games/<game_id>/reviews/user/<user_id>', methods=['GET'])
@handle_api_errors('Failed to fetch review')
def user_review(game_id, user_id):
    game_id, user_id = parse_id(game_id), parse_id(user_id)
    if game_id is None or user_id is None:
        return error_response('Invalid ID', 400)
    review = storage.get_user_review(user_id, game_id)
    if not review:
        return error_response('Review not found', 404)
    return jsonify(review)


@app.route('/api/reviews', methods=['POST'])
@login_required
@handle_api_errors('Failed to save review')
def submit_review():
    data = validate_review(json_body())
    if not storage.get_game_by_id(data['game_id']):
        return error_response('Game not found', 404)
    data['user_id'] = current_user.id
    return jsonify(storage.create_or_update_game_review(data)), 201


@app.route('/api/games/<game_id>/reviews/user/<user_id>', methods=['DELETE'])
@login_required
@handle_api_errors('Failed to delete review')
def delete_review(game_id, user_id):
    game_id, user_id = parse_id(game_id), parse_id(user_id)
    if game_id is None or user_id is None:
        return error_response('Invalid ID', 400)
    if user_id != current_user.id and not current_user.is_admin:
        return error_response('You can only delete your own review', 403)
    if not storage.delete_game_review(user_id, game_id):
        return error_response('Review not found', 404)
    return jsonify({'success': True})


# === Chat ===

@app.route('/api/chat', methods=['GET'])
@handle_api_errors('Failed to fetch chat messages')
def chat_messages():
    limit = parse_limit(request.args.get('limit'), 20)
    return jsonify(storage.get_chat_messages(limit))


@app.route('/api/chat', methods=['POST'])
@login_required
@handle_api_errors('Failed to send message')
def send_chat_message():
    body = json_body()
    data = validate_chat_message({**body, 'userId': current_user.id})
    message = storage.create_chat_message(data)
    user = public_user(storage.get_user(message['userId']))
    user.pop('email', None)
    message['user'] = user
    socketio.emit('chat_message', message)
    return jsonify(message), 201


# === Users & authentication ===

@app.route('/api/users/register', methods=['POST'])
@handle_api_errors('Failed to register user')
def register():
    data = validate_user(json_body())
    if storage.get_user_by_username(data['username']):
        return error_response('Username already taken', 409)
    if data.get('email') and storage.get_user_by_email(data['email']):
        return error_response('Email already registered', 409)
    user = storage.create_user(
        username=data['username'],
        password=data['password'],
        email=data.get('email'),
        avatar_url=data.get('avatar_url')
    )
    app.logger.info(f"Registered user {user['username']}")
    return jsonify(public_user(user)), 201


@app.route('/api/auth/login', methods=['POST'])
@app.route('/api/users/login', methods=['POST'])
@handle_api_errors('Failed to login')
def login():
    data = request.get_json(silent=True) or {}
    username = data.get('username')
    password = data.get('password')
    if not username or not password:
        return error_response('Username and password are required', 400)

    user = storage.get_user_by_username(username)
    if not user or not verify_password(password, user.get('passwordHash')):
        return error_response('Invalid username or password', 401)

    login_user(User.from_row(user), remember=bool(data.get('rememberMe')))
    storage.update_user_last_login(user['id'])
    return jsonify(public_user(storage.get_user(user['id'])))


@app.route('/api/auth/user')
def auth_user():
    if not current_user.is_authenticated:
        return error_response('Not authenticated', 401)
    return jsonify(current_user_dict())


@app.route('/api/auth/logout', methods=['GET', 'POST'])
@app.route('/api/logout', methods=['GET', 'POST'])
def logout():
    if current_user.is_authenticated:
        logout_user()
    if request.method == 'GET':
        return redirect('/')
    return jsonify({'success': True})


@app.route('/api/users/me')
@login_required
def users_me():
    return jsonify(current_user_dict())


@app.route('/api/users/<user_id>')
@handle_api_errors('Failed to fetch user')
def get_user(user_id):
    user_id = parse_id(user_id)
    if user_id is None:
        return error_response('Invalid user ID', 400)
    user = public_user(storage.get_user(user_id))
    if not user:
        return error_response('User not found', 404)
    is_self = current_user.is_authenticated and current_user.id == user_id
    if not is_self and not (current_user.is_authenticated and current_user.is_admin):
        user.pop('email', None)
    return jsonify(user)


def unique_username(base):
    """An unused username derived from base"""
    base = (base or 'player')[:20]
    candidate = base
    while storage.get_user_by_username(candidate):
        candidate = f"{base[:15]}{secrets.randbelow(100000)}"
    return candidate


def google_redirect_uri():
    return config['google'].get('redirect_uri') or request.url_root.rstrip('/') + '/api/auth/google/callback'


@app.route('/api/auth/google')
def google_login():
    credentials = credential_manager.get_google_credentials(config['google'])
    if not credentials['client_id']:
        return error_response('Google sign-in is not configured', 503)

    state = secrets.token_urlsafe(16)
    session['google_oauth_state'] = state
    params = {
        'client_id': credentials['client_id'],
        'redirect_uri': google_redirect_uri(),
        'response_type': 'code',
        'scope': 'openid email profile',
        'state': state,
    }
    return redirect(f"{GOOGLE_AUTH_URL}?{urlencode(params)}")


@app.route('/api/auth/google/callback')
def google_callback():
    code = request.args.get('code')
    state = request.args.get('state')
    if not code or not state or state != session.pop('google_oauth_state', None):
        app.logger.warning('Google authentication failed: missing code or bad state')
        return redirect('/?auth_error=google')

    credentials = credential_manager.get_google_credentials(config['google'])
    try:
        token_response = requests.post(GOOGLE_TOKEN_URL, data={
            'client_id': credentials['client_id'],
            'client_secret': credentials['client_secret'],
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': google_redirect_uri(),
        }, timeout=EXTERNAL_API_TIMEOUT_SECONDS)
        token_response.raise_for_status()
        access_token = token_response.json()['access_token']

        profile_response = requests.get(
            GOOGLE_USERINFO_URL,
            headers={'Authorization': f'Bearer {access_token}'},
            timeout=EXTERNAL_API_TIMEOUT_SECONDS
        )
        profile_response.raise_for_status()
        profile = profile_response.json()
    except (requests.RequestException, KeyError, ValueError) as e:
        app.logger.error(f'Google authentication error: {e}')
        return redirect('/?auth_error=google')

    google_id = profile.get('sub')
    email = profile.get('email')
    if not google_id:
        return redirect('/?auth_error=google')

    user = storage.get_user_by_google_id(google_id)
    if not user and email:
        user = storage.get_user_by_email(email)
        if user:
            storage.link_google_account(user['id'], google_id, profile.get('picture'))
    if not user:
        display_name = profile.get('name') or (email.split('@')[0] if email else 'player')
        user = storage.create_user(
            username=unique_username(display_name),
            email=email,
            google_id=google_id,
            avatar_url=profile.get('picture')
        )
        app.logger.info(f"Created user {user['username']} from Google sign-in")

    login_user(User.from_row(user))
    storage.update_user_last_login(user['id'])
    return redirect('/')


# === CMS authentication ===

@app.route('/api/admin/request-otp', methods=['POST'])
@handle_api_errors('Failed to request OTP')
def request_otp():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip()
    if not email:
        return error_response('Email is required', 400)

    generic = {'message': 'If your email exists in our system, you will receive an OTP.', 'otpRequested': True}
    user = storage.get_user_by_email(email)
    if not user or not user['isAdmin']:
        app.logger.warning(f'OTP requested for non-admin email {email}')
        return jsonify(generic)

    expiry_minutes = config['cms']['otp_expiry_minutes']
    otp = generate_otp()
    storage.update_user_otp(user['id'], otp, get_otp_expiry(expiry_minutes))
    if not email_service.send_otp_email(user['email'], otp, expiry_minutes):
        app.logger.error(f'Could not deliver OTP email to {email}')
    return jsonify(generic)


@app.route('/api/admin/verify-otp', methods=['POST'])
@handle_api_errors('Failed to verify OTP')
def verify_otp():
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip()
    otp = str(data.get('otp') or '').strip()
    if not email or not otp:
        return error_response('Email and code are required', 400)

    user = storage.verify_otp(email, otp, config['cms']['otp_max_attempts'])
    if not user or not user['isAdmin']:
        return error_response('Invalid or expired code', 401)

    login_user(User.from_row(user))
    storage.update_user_last_login(user['id'])
    app.logger.info(f"CMS login for {user['username']}")
    return jsonify({'user': public_user(storage.get_user(user['id']))})


@app.route('/api/admin/user')
@admin_required
def admin_user():
    return jsonify(current_user_dict())


@app.route('/api/admin/dashboard')
@admin_required
@handle_api_errors('Failed to load dashboard')
def admin_dashboard():
    stats = storage.get_dashboard_stats()
    stats['advertisements'] = ad_service.stats()
    return jsonify(stats)


@app.route('/api/admin/credentials', methods=['PUT'])
@admin_required
@handle_api_errors('Failed to update credentials')
def update_credentials():
    data = json_body()
    updated = []
    if data.get('sendgridApiKey'):
        credential_manager.save_sendgrid_api_key(data['sendgridApiKey'])
        updated.append('sendgrid')
    if data.get('googleClientId') and data.get('googleClientSecret'):
        credential_manager.update_google_credentials(data['googleClientId'], data['googleClientSecret'])
        updated.append('google')
    if not updated:
        return error_response('No credentials provided', 400)
    return jsonify({'success': True, 'updated': updated})


# === Website content ===

@app.route('/api/site-content', methods=['GET'])
@handle_api_errors('Failed to fetch site content')
def site_content():
    return jsonify(storage.get_site_content())


@app.route('/api/site-content', methods=['PUT'])
@admin_required
@handle_api_errors('Failed to update site content')
def update_site_content():
    data = json_body()
    return jsonify(storage.update_site_content(data))


@app.route('/api/content/<section>')
@handle_api_errors('Failed to fetch content')
def content_section(section):
    items = storage.get_website_content_by_section(section)
    if not items:
        return error_response('Content not found', 404)
    return jsonify({item['key']: item['value'] for item in items})


@app.route('/api/admin/website-content', methods=['GET'])
@admin_required
@handle_api_errors('Failed to fetch website content')
def admin_website_content():
    return jsonify(storage.get_website_content())


@app.route('/api/admin/website-content', methods=['POST'])
@admin_required
@handle_api_errors('Failed to create website content', 'Content item already exists')
def create_website_content():
    data = validate_website_content(json_body())
    if storage.get_website_content_item(data['section'], data['key']):
        return error_response('Content item already exists', 409)
    return jsonify(storage.create_website_content(data)), 201


@app.route('/api/admin/website-content/<content_id>', methods=['PATCH'])
@admin_required
@handle_api_errors('Failed to update website content', 'Content item already exists')
def update_website_content(content_id):
    content_id = parse_id(content_id)
    if content_id is None:
        return error_response('Invalid content ID', 400)
    item = storage.update_website_content(content_id, validate_website_content(json_body(), partial=True))
    if not item:
        return error_response('Content not found', 404)
    return jsonify(item)


@app.route('/api/admin/website-content/<content_id>', methods=['DELETE'])
@admin_required
@handle_api_errors('Failed to delete website content')
def delete_website_content(content_id):
    content_id = parse_id(content_id)
    if content_id is None:
        return error_response('Invalid content ID', 400)
    if not storage.delete_website_content(content_id):
        return error_response('Content not found', 404)
    return jsonify({'success': True})


# === Contact ===

@app.route('/api/contact', methods=['POST'])
@handle_api_errors('Failed to send message')
def contact():
    data = validate_contact_message(json_body())
    message = storage.create_contact_message(data)
    if not email_service.send_contact_notification(message):
        app.logger.warning(f"Contact message {message['id']} stored but not forwarded by email")
    return jsonify({'success': True, 'message': 'Thank you, we will get back to you soon.'}), 201


@app.route('/api/admin/contact-messages')
@admin_required
@handle_api_errors('Failed to fetch contact messages')
def admin_contact_messages():
    unread_only = request.args.get('unread') in ('1', 'true')
    return jsonify(storage.get_contact_messages(unread_only=unread_only))


@app.route('/api/admin/contact-messages/<message_id>/read', methods=['POST'])
@admin_required
@handle_api_errors('Failed to update contact message')
def mark_contact_message_read(message_id):
    message_id = parse_id(message_id)
    if message_id is None:
        return error_response('Invalid message ID', 400)
    if not storage.mark_contact_message_read(message_id):
        return error_response('Message not found', 404)
    return jsonify({'success': True})


# === Advertisements ===

@app.route('/api/advertisements')
@handle_api_errors('Failed to fetch advertisements')
def advertisements_for_placement():
    placement = request.args.get('placement')
    if not placement:
        return error_response('placement is required', 400)
    ads = ad_service.get_ads_for_placement(placement)
    if not ads:
        return jsonify([])
    # The first ad is the one the client shows, it gets the impression
    served = ad_service.serve(placement)
    rest = [ad for ad in ads if ad['id'] != served['id']] if served else ads
    return jsonify(([served] if served else []) + rest)


@app.route('/api/advertisements/placement/<placement>')
@handle_api_errors('Failed to fetch advertisement')
def advertisement_for_placement(placement):
    ad = ad_service.serve(placement)
    if not ad:
        return error_response('No advertisement available', 404)
    return jsonify(ad)


def _track(ad_id, event):
    ad_id = parse_id(ad_id)
    if ad_id is None:
        return error_response('Invalid advertisement ID', 400)
    data = request.get_json(silent=True) or {}
    impression_id = data.get('impressionId')
    try:
        if event == 'view':
            counted = ad_service.record_view(ad_id, impression_id)
        else:
            counted = ad_service.record_click(ad_id, impression_id)
    except LookupError as e:
        return error_response(str(e), 404)
    return jsonify({'success': True, 'counted': counted})


@app.route('/api/advertisements/<ad_id>/view', methods=['POST'])
@handle_api_errors('Failed to track ad view')
def track_ad_view(ad_id):
    return _track(ad_id, 'view')


@app.route('/api/advertisements/<ad_id>/click', methods=['POST'])
@handle_api_errors('Failed to track ad click')
def track_ad_click(ad_id):
    return _track(ad_id, 'click')


@app.route('/api/admin/advertisements', methods=['GET'])
@admin_required
@handle_api_errors('Failed to fetch advertisements')
def admin_advertisements():
    return jsonify(storage.get_advertisements())


@app.route('/api/admin/advertisements', methods=['POST'])
@admin_required
@handle_api_errors('Failed to create advertisement')
def create_advertisement():
    ad = storage.create_advertisement(validate_advertisement(json_body()))
    app.logger.info(f"Advertisement {ad['id']} created for placement {ad['placement']}")
    return jsonify(ad), 201


@app.route('/api/admin/advertisements/stats')
@admin_required
@handle_api_errors('Failed to fetch advertisement stats')
def advertisement_stats():
    return jsonify(ad_service.stats())


@app.route('/api/admin/advertisements/<ad_id>', methods=['PATCH'])
@admin_required
@handle_api_errors('Failed to update advertisement')
def update_advertisement(ad_id):
    ad_id = parse_id(ad_id)
    if ad_id is None:
        return error_response('Invalid advertisement ID', 400)
    ad = storage.update_advertisement(ad_id, validate_advertisement_update(json_body()))
    if not ad:
        return error_response('Advertisement not found', 404)
    return jsonify(ad)


@app.route('/api/admin/advertisements/<ad_id>', methods=['DELETE'])
@admin_required
@handle_api_errors('Failed to delete advertisement')
def delete_advertisement(ad_id):
    ad_id = parse_id(ad_id)
    if ad_id is None:
        return error_response('Invalid advertisement ID', 400)
    if not storage.delete_advertisement(ad_id):
        return error_response('Advertisement not found', 404)
    return jsonify({'success': True})


# === Images ===

@app.route('/api/images/<image_key>')
def serve_game_image(image_key):
    """Serve a game image through the local cache"""
    try:
        image = asyncio.run(image_proxy.get_image(image_key))
    except KeyError:
        return 'Image not found', 404
    except (ImageDownloadError, OSError) as e:
        app.logger.error(f'Error serving image {image_key}: {e}')
        return 'Failed to load image', 500

    response = send_file(image.path, mimetype=image.mimetype, max_age=IMAGE_CACHE_SECONDS)
    response.headers['Cache-Control'] = f'public, max-age={IMAGE_CACHE_SECONDS}'
    return response


@app.route('/api/admin/images/preload', methods=['POST'])
@admin_required
@handle_api_errors('Failed to preload images')
def preload_images():
    return jsonify(asyncio.run(image_proxy.preload_all_images()))


# === Hosted games ===

@app.route('/api/admin/upload-game', methods=['POST'])
@admin_required
@handle_api_errors('Upload failed')
def upload_game():
    game_file = request.files.get('gameFile')
    title = (request.form.get('gameTitle') or '').strip()
    if not game_file or not game_file.filename:
        return error_response('No game file uploaded', 400)
    if not title:
        return error_response('Game title is required', 400)

    try:
        result = save_game_bundle(
            game_file,
            title,
            config['uploads']['games_directory'],
            max_bytes=config['uploads']['max_upload_mb'] * 1024 * 1024
        )
    except UploadError as e:
        return error_response(str(e), 400)

    result['gameUrl'] = f"/play/{result['gameFolder']}/{result['entryFile']}"
    app.logger.info(f"Game bundle uploaded by {current_user.username}: {result['gameFolder']}")
    return jsonify(result), 201


@app.route('/play/<folder>/<path:filename>')
def serve_hosted_game(folder, filename):
    """Serve files of an uploaded HTML5 game"""
    games_directory = os.path.abspath(config['uploads']['games_directory'])
    return send_from_directory(games_directory, f'{folder}/{filename}')


# === Background maintenance ===

def run_maintenance():
    """Purge stale ad impressions and warm the image cache"""
    try:
        ad_service.purge_stale_impressions()
    except Exception as e:
        app.logger.error(f'Impression purge failed: {e}')
    if config['image_proxy'].get('preload_on_start', True):
        try:
            asyncio.run(image_proxy.preload_all_images())
        except Exception as e:
            app.logger.error(f'Image preload failed: {e}')


def start_maintenance_thread():
    def worker():
        while True:
            run_maintenance()
            time.sleep(MAINTENANCE_INTERVAL_SECONDS)

    thread = threading.Thread(target=worker, daemon=True)
    thread.start()
    return thread


if __name__ == '__main__':
    configure_logging(config)

    print("Starting PlayinMO server...")
    print(f"📁 Database: {config['database']['path']}")

    if config['database'].get('seed_demo_data', True):
        storage.seed_demo_data()

    admin_email = config['cms'].get('admin_email')
    if admin_email:
        admin = storage.ensure_admin(admin_email)
        print(f"✅ CMS admin account: {admin['username']} <{admin_email}>")

    start_maintenance_thread()
    print("🔄 Maintenance thread started (impression purge, image preload)")

    socketio.run(
        app,
        debug=config['server']['debug'],
        host=config['server']['host'],
        port=config['server']['port'],
        allow_unsafe_werkzeug=True
    )
