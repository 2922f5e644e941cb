import copy
import json
import os
import tempfile

import pytest

# The app module loads its configuration at import time: point it at a
# throwaway file before anything imports site_config.
_BOOT_DIR = tempfile.mkdtemp(prefix='playinmo-tests-')
os.environ['PLAYINMO_CONFIG'] = os.path.join(_BOOT_DIR, 'config.json')
os.environ.pop('SENDGRID_API_KEY', None)
os.environ.pop('GOOGLE_CLIENT_ID', None)
os.environ.pop('GOOGLE_CLIENT_SECRET', None)

TEST_MAPPINGS = {
    'pacman': 'file-pacman',
    'hexgl': 'file-hexgl',
}

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 200
JPEG_BYTES = b'\xff\xd8\xff\xe0' + b'\x00' * 200


def make_config(base_dir):
    from site_config import DEFAULT_CONFIG

    config = copy.deepcopy(DEFAULT_CONFIG)
    config['secret_key'] = 'test-secret'
    config['logging']['file'] = ''
    config['database']['path'] = os.path.join(base_dir, 'db', 'playinmo.db')
    config['database']['seed_demo_data'] = False
    config['image_proxy']['cache_dir'] = os.path.join(base_dir, 'image_cache')
    config['image_proxy']['mappings'] = dict(TEST_MAPPINGS)
    config['image_proxy']['preload_on_start'] = False
    config['uploads']['games_directory'] = os.path.join(base_dir, 'hosted_games')
    config['uploads']['max_upload_mb'] = 5
    config['credentials']['file'] = os.path.join(base_dir, 'credentials.json')
    config['credentials']['encoded_file'] = os.path.join(base_dir, 'credentials.enc')
    return config


with open(os.environ['PLAYINMO_CONFIG'], 'w') as _f:
    json.dump(make_config(_BOOT_DIR), _f)


@pytest.fixture
def config(tmp_path):
    return make_config(str(tmp_path))


@pytest.fixture
def storage(config):
    from storage import DatabaseStorage

    db = DatabaseStorage(config['database']['path'])
    db.init_db()
    return db


@pytest.fixture
def app_module(config):
    import app as app_module

    app_module.init_services(config)
    app_module.app.config['TESTING'] = True
    return app_module


@pytest.fixture
def client(app_module):
    return app_module.app.test_client()


@pytest.fixture
def db(app_module):
    return app_module.storage


@pytest.fixture
def player(db):
    return db.create_user('player1', password='secret1', email='player1@example.com')


@pytest.fixture
def admin(db):
    return db.create_user('boss', password='secret2', email='admin@playinmo.com', is_admin=True)


@pytest.fixture
def player_client(client, player):
    response = client.post('/api/auth/login', json={'username': 'player1', 'password': 'secret1'})
    assert response.status_code == 200
    return client


@pytest.fixture
def admin_client(client, admin):
    response = client.post('/api/auth/login', json={'username': 'boss', 'password': 'secret2'})
    assert response.status_code == 200
    return client


@pytest.fixture
def category(db):
    return db.create_game_category({'name': 'Puzzle', 'description': 'Brain teasers'})


@pytest.fixture
def game(db, category):
    return db.create_game({
        'title': 'Block Drop',
        'description': 'Stack the blocks',
        'image_url': '/api/images/pacman',
        'category_id': category['id'],
        'is_featured': True,
    })
