#!/usr/bin/env python3
"""
Site configuration - JSON config file with # comments merged over defaults
"""

import copy
import json
import logging
import os

logger = logging.getLogger(__name__)

CONFIG_FILE = os.environ.get('PLAYINMO_CONFIG', 'var/config/config.json')

# Game artwork hosted on Google Drive, keyed by the slug used in image URLs
DEFAULT_IMAGE_MAPPINGS = {
    'snakes-adventure': '1WUS9LYBTzepUbXejWPc2kZv_0-TrCHI',
    '3d-hangman': '1OVLTYysrvt6-Wu_mKMTKLPW1O_K6YPX',
    'pacman': '1yJcfJgfTyDI1snLsbvLE6lep0DyKmeK',
    'hexgl': '1ZpiL2b8H7W6yRK43jPY0ha1aMT7egf',
    'hextris': '1xQkv4vShyBhk8hwdDyWVQZhNyJuneKtv',
    'mine-sweeper': '1ASoeiPWJCXwIXeqTUOGF_4pZqbGGNhKT',
    'untangle': '1mVBMbbFLukWfa-BIIXS-oe8s_WYs4W3S',
    'crazy-racing': '1JIHbWyeF6F7e0drO0p-ZunoWLRW-WeQg',
    '2048': '1JARm-uo3q0LwK-mSvAo7SXXX25qF1DJ',
    'space-shield-defence': '1OorIE-Kw_zu_PkYi04CYqkv6cmuPtGt_l',
    'gem-crush-saga': '1z1A1QKf0pdGDJa3QBb-wlMbiIXCWdlfOb',
    'word-weaver': '1okxryeXOB77-n6Lwus41sFdqeQLR8uS',
}

DEFAULT_CONFIG = {
    'secret_key': 'playinmo-dev-secret-change-me',
    'server': {
        'host': '0.0.0.0',
        'port': 5000,
        'debug': False
    },
    'logging': {
        'level': 'INFO',
        'file': 'var/log/playinmo.log'
    },
    'database': {
        'path': 'var/db/playinmo.db',
        'seed_demo_data': True
    },
    'cms': {
        'admin_email': 'admin@playinmo.com',
        'otp_expiry_minutes': 10,
        'otp_max_attempts': 5
    },
    'ads': {
        'pre_game_skip_seconds': 5,
        'impression_retention_hours': 24
    },
    'image_proxy': {
        'cache_dir': 'image_cache',
        'max_age_hours': 24,
        'timeout': 30,
        'preload_on_start': True,
        'mappings': DEFAULT_IMAGE_MAPPINGS
    },
    'uploads': {
        'games_directory': 'var/hosted_games',
        'max_upload_mb': 100
    },
    'google': {
        'client_id': '',
        'client_secret': '',
        'redirect_uri': ''
    },
    'mail': {
        'from_address': 'noreply@playinmo.com',
        'contact_inbox': 'support@playinmo.com'
    },
    'credentials': {
        'file': 'var/config/credentials.json',
        'encoded_file': 'var/config/credentials.enc'
    }
}


def load_json_with_comments(file_path):
    """Load JSON file with support for # comments"""
    if not os.path.exists(file_path):
        return {}

    with open(file_path, 'r') as f:
        content = f.read()

    cleaned_lines = []
    for line in content.split('\n'):
        # Remove everything after a # that is not inside a string
        in_quotes = False
        escape_next = False
        comment_start = -1
        for i, char in enumerate(line):
            if escape_next:
                escape_next = False
                continue
            if char == '\\':
                escape_next = True
                continue
            if char == '"':
                in_quotes = not in_quotes
            elif char == '#' and not in_quotes:
                comment_start = i
                break
        if comment_start >= 0:
            line = line[:comment_start].rstrip()
        cleaned_lines.append(line)
    return json.loads('\n'.join(cleaned_lines))


def load_config(config_file=None):
    """Load configuration from the config file, merged over the defaults"""
    config_file = config_file or CONFIG_FILE
    config = copy.deepcopy(DEFAULT_CONFIG)

    try:
        if os.path.exists(config_file):
            user_config = load_json_with_comments(config_file)
            for key, value in user_config.items():
                if isinstance(value, dict) and isinstance(config.get(key), dict):
                    config[key].update(value)
                else:
                    config[key] = value
            logger.info(f"Configuration loaded from {config_file}")
        else:
            logger.warning(f"No {config_file} found, using default configuration")
            os.makedirs(os.path.dirname(config_file) or '.', exist_ok=True)
            with open(config_file, 'w') as f:
                json.dump(config, f, indent=4)
            logger.info(f"Created default {config_file}")
    except (OSError, ValueError) as e:
        logger.error(f"Error loading configuration: {e}, using defaults")
        config = copy.deepcopy(DEFAULT_CONFIG)

    return config

