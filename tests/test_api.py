import io
import zipfile

import httpx
import pytest

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 200


def login(client, username, password):
    return client.post('/api/auth/login', json={'username': username, 'password': password})


def new_game_payload(category_id, **overrides):
    payload = {
        'title': 'Star Jumper',
        'description': 'Jump between stars',
        'imageUrl': '/api/images/hexgl',
        'categoryId': category_id,
    }
    payload.update(overrides)
    return payload


def test_health(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'ok'


# === Games ===

def test_list_and_get_games(client, game):
    response = client.get('/api/games')
    assert response.status_code == 200
    assert [g['title'] for g in response.get_json()] == ['Block Drop']

    response = client.get(f"/api/games/{game['id']}")
    assert response.get_json()['imageUrl'] == '/api/images/pacman'

    assert client.get('/api/games/abc').status_code == 400
    response = client.get('/api/games/999')
    assert response.status_code == 404
    assert response.get_json() == {'message': 'Game not found'}


def test_featured_and_category_games(client, game, category):
    assert [g['id'] for g in client.get('/api/games/featured').get_json()] == [game['id']]
    games = client.get(f"/api/games/category/{category['slug']}").get_json()
    assert [g['id'] for g in games] == [game['id']]
    assert client.get('/api/games/category/nothing').get_json() == []


def test_play_counter(client, game):
    response = client.post(f"/api/games/{game['id']}/play")
    assert response.get_json()['plays'] == 1
    assert client.post('/api/games/999/play').status_code == 404


def test_game_admin_routes_require_admin(client, player, category):
    assert client.post('/api/games', json=new_game_payload(category['id'])).status_code == 401
    login(client, 'player1', 'secret1')
    response = client.post('/api/games', json=new_game_payload(category['id']))
    assert response.status_code == 403
    assert response.get_json() == {'message': 'Admin access required'}


def test_admin_game_crud(admin_client, category):
    response = admin_client.post('/api/games', json=new_game_payload(category['id'], isNew=True))
    assert response.status_code == 201
    created = response.get_json()
    assert created['isNew'] is True

    response = admin_client.patch(f"/api/games/{created['id']}", json={'title': 'Star Jumper 2'})
    assert response.get_json()['title'] == 'Star Jumper 2'
    assert admin_client.patch('/api/games/999', json={'title': 'x'}).status_code == 404

    assert admin_client.delete(f"/api/games/{created['id']}").status_code == 200
    assert admin_client.delete(f"/api/games/{created['id']}").status_code == 404


def test_admin_game_validation(admin_client, category):
    response = admin_client.post('/api/games', json={'title': 'Incomplete'})
    assert response.status_code == 400
    body = response.get_json()
    assert body['message'] == 'Invalid game data'
    assert {'path': ['description'], 'message': 'Required'} in body['errors']

    response = admin_client.post('/api/games', json=new_game_payload(999))
    assert response.status_code == 400
    assert response.get_json()['message'] == 'Category not found'

    response = admin_client.post('/api/games', data='not json', content_type='text/plain')
    assert response.status_code == 400


# === Categories ===

def test_categories(client, category):
    assert [c['name'] for c in client.get('/api/categories').get_json()] == ['Puzzle']
    assert client.get('/api/categories/puzzle').get_json()['id'] == category['id']
    assert client.get('/api/categories/unknown').status_code == 404


def test_admin_category_routes(admin_client, category, game):
    response = admin_client.post('/api/categories', json={'name': 'Racing Games'})
    assert response.status_code == 201
    racing = response.get_json()
    assert racing['slug'] == 'racing-games'

    assert admin_client.post('/api/categories', json={'name': 'racing games'}).status_code == 409

    response = admin_client.patch(f"/api/categories/{racing['id']}", json={'description': 'Vroom'})
    assert response.get_json()['description'] == 'Vroom'

    response = admin_client.delete(f"/api/categories/{category['id']}")
    assert response.status_code == 409
    assert admin_client.delete(f"/api/categories/{racing['id']}").status_code == 200
    assert admin_client.delete(f"/api/categories/{racing['id']}").status_code == 404


def test_category_slug_and_rename_conflicts(admin_client, category):
    response = admin_client.post('/api/categories', json={'name': 'Puzzle!'})
    assert response.status_code == 409
    assert response.get_json() == {'message': 'Category already exists'}

    racing = admin_client.post('/api/categories', json={'name': 'Racing'}).get_json()
    assert admin_client.patch(f"/api/categories/{racing['id']}", json={'name': 'PUZZLE'}).status_code == 409
    assert admin_client.patch(f"/api/categories/{racing['id']}", json={'slug': 'puzzle'}).status_code == 409
    # Renaming a category to its own name is fine
    response = admin_client.patch(f"/api/categories/{racing['id']}", json={'name': 'racing'})
    assert response.status_code == 200
    assert response.get_json()['slug'] == 'racing'


# === Scores & leaderboard ===

def test_submit_score_requires_login(client, game):
    response = client.post('/api/scores', json={'gameId': game['id'], 'score': 10})
    assert response.status_code == 401
    assert response.get_json() == {'message': 'Not authenticated'}


def test_submit_score_records_current_player(player_client, player, admin, game):
    response = player_client.post('/api/scores', json={
        'userId': admin['id'], 'gameId': game['id'], 'score': 500, 'won': True
    })
    assert response.status_code == 201
    assert response.get_json()['userId'] == player['id']

    scores = player_client.get(f"/api/scores/game/{game['id']}").get_json()
    assert scores[0]['score'] == 500
    assert scores[0]['user']['username'] == 'player1'

    leaders = player_client.get('/api/leaderboard?limit=5').get_json()
    assert leaders[0]['user']['username'] == 'player1'
    assert leaders[0]['winRate'] == 100.0


def test_submit_score_validation(player_client, game):
    assert player_client.post('/api/scores', json={'gameId': game['id'], 'score': -5}).status_code == 400
    assert player_client.post('/api/scores', json={'gameId': 999, 'score': 5}).status_code == 404


def test_scores_limit(client, db, player, game):
    for score in range(15):
        db.create_game_score({'user_id': player['id'], 'game_id': game['id'], 'score': score})
    assert len(client.get(f"/api/scores/game/{game['id']}").get_json()) == 10
    assert len(client.get(f"/api/scores/game/{game['id']}?limit=3").get_json()) == 3


# === Reviews ===

def test_reviews_flow(client, db, player, game):
    assert client.post('/api/reviews', json={'gameId': game['id'], 'rating': 4}).status_code == 401

    login(client, 'player1', 'secret1')
    response = client.post('/api/reviews', json={'gameId': game['id'], 'rating': 4, 'comment': '<b>Fun</b>'})
    assert response.status_code == 201
    assert response.get_json()['comment'] == 'Fun'

    client.post('/api/reviews', json={'gameId': game['id'], 'rating': 2})
    reviews = client.get(f"/api/games/{game['id']}/reviews").get_json()
    assert len(reviews) == 1
    assert reviews[0]['rating'] == 2

    rating = client.get(f"/api/games/{game['id']}/rating").get_json()
    assert rating == {'gameId': game['id'], 'averageRating': 2, 'totalReviews': 1}

    mine = client.get(f"/api/games/{game['id']}/reviews/user/{player['id']}")
    assert mine.get_json()['rating'] == 2

    assert client.delete(f"/api/games/{game['id']}/reviews/user/{player['id']}").status_code == 200
    assert client.get(f"/api/games/{game['id']}/reviews/user/{player['id']}").status_code == 404


def test_cannot_delete_someone_elses_review(client, db, player, game):
    other = db.create_user('other', password='secret3')
    db.create_or_update_game_review({'user_id': other['id'], 'game_id': game['id'], 'rating': 5})
    login(client, 'player1', 'secret1')
    response = client.delete(f"/api/games/{game['id']}/reviews/user/{other['id']}")
    assert response.status_code == 403


def test_review_for_missing_game(player_client):
    assert player_client.post('/api/reviews', json={'gameId': 999, 'rating': 3}).status_code == 404


# === Chat ===

def test_chat(client, player):
    assert client.post('/api/chat', json={'message': 'hi'}).status_code == 401

    login(client, 'player1', 'secret1')
    response = client.post('/api/chat', json={'message': '<i>hello</i> everyone'})
    assert response.status_code == 201
    message = response.get_json()
    assert message['message'] == 'hello everyone'
    assert message['user']['username'] == 'player1'
    assert 'email' not in message['user']

    messages = client.get('/api/chat?limit=5').get_json()
    assert messages[0]['message'] == 'hello everyone'


# === Users & authentication ===

def test_register_and_login(client):
    response = client.post('/api/users/register', json={
        'username': 'newbie', 'password': 'secret9', 'email': 'newbie@example.com'
    })
    assert response.status_code == 201
    user = response.get_json()
    assert 'passwordHash' not in user

    assert client.post('/api/users/register', json={
        'username': 'newbie', 'password': 'secret9'
    }).status_code == 409
    assert client.post('/api/users/register', json={
        'username': 'other', 'password': 'secret9', 'email': 'NEWBIE@example.com'
    }).status_code == 409

    assert client.get('/api/auth/user').status_code == 401
    assert login(client, 'newbie', 'wrong').status_code == 401

    response = login(client, 'newbie', 'secret9')
    assert response.status_code == 200
    assert response.get_json()['lastLogin']

    assert client.get('/api/auth/user').get_json()['username'] == 'newbie'
    assert client.get('/api/users/me').get_json()['email'] == 'newbie@example.com'

    assert client.post('/api/auth/logout').get_json() == {'success': True}
    assert client.get('/api/users/me').status_code == 401


def test_logout_get_redirects(player_client):
    response = player_client.get('/api/logout')
    assert response.status_code == 302
    assert player_client.get('/api/auth/user').status_code == 401


def test_register_validation(client):
    response = client.post('/api/users/register', json={'username': 'ab', 'password': '1'})
    assert response.status_code == 400
    assert len(response.get_json()['errors']) == 2


def test_public_profile_hides_email(client, db, player):
    other = db.create_user('other', password='secret3', email='other@example.com')
    response = client.get(f"/api/users/{other['id']}")
    assert response.status_code == 200
    assert 'email' not in response.get_json()
    assert 'passwordHash' not in response.get_json()

    login(client, 'player1', 'secret1')
    assert client.get(f"/api/users/{player['id']}").get_json()['email'] == 'player1@example.com'
    assert client.get('/api/users/999').status_code == 404


# === Google sign-in ===

class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


@pytest.fixture
def google_api(app_module, monkeypatch):
    app_module.config['google']['client_id'] = 'client-id'
    app_module.config['google']['client_secret'] = 'client-secret'
    profile = {}
    monkeypatch.setattr(app_module.requests, 'post', lambda *a, **kw: FakeResponse({'access_token': 'token'}))
    monkeypatch.setattr(app_module.requests, 'get', lambda *a, **kw: FakeResponse(profile))
    return profile


def test_google_login_not_configured(client):
    assert client.get('/api/auth/google').status_code == 503


def test_google_login_redirect(client, google_api):
    response = client.get('/api/auth/google')
    assert response.status_code == 302
    location = response.headers['Location']
    assert location.startswith('https://accounts.google.com/o/oauth2/v2/auth?')
    assert 'client_id=client-id' in location
    with client.session_transaction() as session:
        assert session['google_oauth_state']


def test_google_callback_rejects_bad_state(client, google_api):
    with client.session_transaction() as session:
        session['google_oauth_state'] = 'expected'
    response = client.get('/api/auth/google/callback?code=abc&state=forged')
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/?auth_error=google')


def test_google_callback_creates_user(client, db, google_api):
    google_api.update({'sub': 'g-100', 'email': 'fresh@example.com', 'name': 'Fresh', 'picture': 'https://pic'})
    with client.session_transaction() as session:
        session['google_oauth_state'] = 'state-1'
    response = client.get('/api/auth/google/callback?code=abc&state=state-1')
    assert response.status_code == 302

    me = client.get('/api/auth/user').get_json()
    assert me['username'] == 'Fresh'
    assert db.get_user_by_google_id('g-100')['email'] == 'fresh@example.com'


def test_google_callback_links_existing_account(client, db, player, google_api):
    google_api.update({'sub': 'g-200', 'email': 'player1@example.com', 'name': 'Someone'})
    with client.session_transaction() as session:
        session['google_oauth_state'] = 'state-2'
    client.get('/api/auth/google/callback?code=abc&state=state-2')

    assert client.get('/api/auth/user').get_json()['id'] == player['id']
    assert db.get_user_by_google_id('g-200')['id'] == player['id']


# === CMS login ===

@pytest.fixture
def sent_otps(app_module, monkeypatch):
    sent = []

    def fake_send(email, otp, expiry_minutes=10):
        sent.append((email, otp))
        return True

    monkeypatch.setattr(app_module.email_service, 'send_otp_email', fake_send)
    return sent


def test_otp_login_flow(client, admin, sent_otps):
    response = client.post('/api/admin/request-otp', json={'email': 'admin@playinmo.com'})
    assert response.status_code == 200
    assert len(sent_otps) == 1
    email, otp = sent_otps[0]
    assert email == 'admin@playinmo.com'

    wrong = '000000' if otp != '000000' else '111111'
    response = client.post('/api/admin/verify-otp', json={'email': email, 'otp': wrong})
    assert response.status_code == 401

    response = client.post('/api/admin/verify-otp', json={'email': email, 'otp': otp})
    assert response.status_code == 200
    assert response.get_json()['user']['isAdmin'] is True
    assert client.get('/api/admin/user').get_json()['username'] == 'boss'

    # Codes are single use
    client.post('/api/auth/logout')
    assert client.post('/api/admin/verify-otp', json={'email': email, 'otp': otp}).status_code == 401


def test_otp_request_is_generic_for_non_admins(client, player, sent_otps):
    unknown = client.post('/api/admin/request-otp', json={'email': 'nobody@example.com'})
    regular = client.post('/api/admin/request-otp', json={'email': 'player1@example.com'})
    assert unknown.status_code == regular.status_code == 200
    assert unknown.get_json() == regular.get_json()
    assert sent_otps == []
    assert client.post('/api/admin/request-otp', json={}).status_code == 400


def test_otp_attempts_are_limited(client, app_module, admin, sent_otps):
    app_module.config['cms']['otp_max_attempts'] = 2
    client.post('/api/admin/request-otp', json={'email': 'admin@playinmo.com'})
    otp = sent_otps[0][1]
    wrong = '000000' if otp != '000000' else '111111'
    for _ in range(2):
        client.post('/api/admin/verify-otp', json={'email': 'admin@playinmo.com', 'otp': wrong})
    response = client.post('/api/admin/verify-otp', json={'email': 'admin@playinmo.com', 'otp': otp})
    assert response.status_code == 401


def test_admin_user_requires_admin(player_client):
    assert player_client.get('/api/admin/user').status_code == 403


# === Website content ===

def test_site_content(client):
    content = client.get('/api/site-content').get_json()
    assert content['hero']['ctaText'] == 'Play Now'
    assert client.get('/api/content/hero').get_json()['ctaText'] == 'Play Now'
    assert client.get('/api/content/nothing').status_code == 404


def test_update_site_content(admin_client):
    response = admin_client.put('/api/site-content', json={'hero': {'title': 'Welcome'}})
    assert response.status_code == 200
    assert response.get_json()['hero']['title'] == 'Welcome'
    assert admin_client.get('/api/content/hero').get_json()['title'] == 'Welcome'


def test_admin_website_content_crud(admin_client):
    payload = {'section': 'footer', 'key': 'logo', 'value': 'https://cdn/logo.png'}
    response = admin_client.post('/api/admin/website-content', json=payload)
    assert response.status_code == 201
    item = response.get_json()
    assert item['valueType'] == 'image'
    assert admin_client.post('/api/admin/website-content', json=payload).status_code == 409

    response = admin_client.patch(f"/api/admin/website-content/{item['id']}", json={'value': 'text'})
    assert response.get_json()['value'] == 'text'

    items = admin_client.get('/api/admin/website-content').get_json()
    assert any(i['id'] == item['id'] for i in items)

    assert admin_client.delete(f"/api/admin/website-content/{item['id']}").status_code == 200
    assert admin_client.delete(f"/api/admin/website-content/{item['id']}").status_code == 404


def test_website_content_move_onto_existing_key(admin_client):
    admin_client.post('/api/admin/website-content', json={'section': 'footer', 'key': 'logo', 'value': 'a'})
    other = admin_client.post('/api/admin/website-content',
                              json={'section': 'footer', 'key': 'tagline', 'value': 'b'}).get_json()
    response = admin_client.patch(f"/api/admin/website-content/{other['id']}", json={'key': 'logo'})
    assert response.status_code == 409
    assert response.get_json() == {'message': 'Content item already exists'}
    items = admin_client.get('/api/admin/website-content').get_json()
    assert [i['key'] for i in items if i['id'] == other['id']] == ['tagline']


# === Contact ===

def test_contact_form(client, app_module, db, monkeypatch):
    forwarded = []
    monkeypatch.setattr(app_module.email_service, 'send_contact_notification',
                        lambda message: forwarded.append(message) or True)
    response = client.post('/api/contact', json={
        'name': 'Ann', 'email': 'ann@example.com', 'subject': 'Hi', 'message': 'Love it'
    })
    assert response.status_code == 201
    assert forwarded[0]['name'] == 'Ann'
    assert db.get_contact_messages()[0]['message'] == 'Love it'

    assert client.post('/api/contact', json={'name': 'Ann'}).status_code == 400


def test_contact_stored_when_mail_fails(client, app_module, db, monkeypatch):
    monkeypatch.setattr(app_module.email_service, 'send_contact_notification', lambda message: False)
    response = client.post('/api/contact', json={'name': 'Ann', 'email': 'ann@example.com', 'message': 'Hi'})
    assert response.status_code == 201
    assert len(db.get_contact_messages()) == 1


def test_admin_contact_inbox(admin_client, db):
    message = db.create_contact_message({'name': 'Ann', 'email': 'ann@example.com', 'message': 'Hi'})
    assert len(admin_client.get('/api/admin/contact-messages?unread=1').get_json()) == 1
    assert admin_client.post(f"/api/admin/contact-messages/{message['id']}/read").status_code == 200
    assert admin_client.get('/api/admin/contact-messages?unread=1').get_json() == []
    assert admin_client.post('/api/admin/contact-messages/999/read').status_code == 404


# === Advertisements ===

def make_ad(db, **overrides):
    data = {'title': 'Ad', 'type': 'image', 'media_url': 'https://ads/1.png', 'placement': 'banner'}
    data.update(overrides)
    return db.create_advertisement(data)


def test_ad_serving_and_tracking(client, db):
    ad = make_ad(db, priority=2)
    make_ad(db, title='backup', priority=1)

    response = client.get('/api/advertisements/placement/banner')
    assert response.status_code == 200
    served = response.get_json()
    assert served['id'] == ad['id']
    impression = served['impressionId']

    view_url = f"/api/advertisements/{ad['id']}/view"
    click_url = f"/api/advertisements/{ad['id']}/click"
    assert client.post(view_url, json={'impressionId': impression}).get_json()['counted'] is True
    assert client.post(view_url, json={'impressionId': impression}).get_json()['counted'] is False
    assert client.post(click_url, json={'impressionId': impression}).get_json()['counted'] is True
    assert client.post(click_url, json={'impressionId': impression}).get_json()['counted'] is False

    stored = db.get_advertisement(ad['id'])
    assert stored['viewCount'] == 1
    assert stored['clickCount'] == 1


def test_ad_tracking_errors(client, db):
    ad = make_ad(db)
    assert client.post(f"/api/advertisements/{ad['id']}/view", json={}).status_code == 400
    assert client.post(f"/api/advertisements/{ad['id']}/view",
                       json={'impressionId': 'made-up'}).status_code == 404
    assert client.post('/api/advertisements/999/click', json={'impressionId': 'x'}).status_code == 404
    assert client.post('/api/advertisements/abc/click', json={'impressionId': 'x'}).status_code == 400
    response = client.post(f"/api/advertisements/{ad['id']}/view", json={'impressionId': ['a']})
    assert response.status_code == 400
    assert response.get_json()['errors'][0]['path'] == ['impressionId']


def test_ads_for_placement_list(client, db):
    low = make_ad(db, title='low', priority=1)
    high = make_ad(db, title='high', priority=3)
    ads = client.get('/api/advertisements?placement=banner').get_json()
    assert [a['id'] for a in ads] == [high['id'], low['id']]
    assert ads[0]['impressionId']
    assert 'impressionId' not in ads[1]

    assert client.get('/api/advertisements?placement=sidebar').get_json() == []
    assert client.get('/api/advertisements?placement=footer').status_code == 400
    assert client.get('/api/advertisements').status_code == 400


def test_pre_game_ad(client, db):
    make_ad(db, placement='pre-game', type='video')
    ad = client.get('/api/advertisements/placement/pre-game').get_json()
    assert ad['skipAfterSeconds'] == 5
    assert client.get('/api/advertisements/placement/post-game').status_code == 404


def test_admin_advertisement_crud(admin_client):
    response = admin_client.post('/api/admin/advertisements', json={
        'title': 'Sale', 'type': 'image', 'mediaUrl': 'https://ads/sale.png', 'placement': 'sidebar',
        'priority': 4, 'startDate': '2025-01-01', 'endDate': '2025-12-31',
    })
    assert response.status_code == 201
    ad = response.get_json()
    assert ad['isActive'] is True

    response = admin_client.patch(f"/api/admin/advertisements/{ad['id']}", json={'isActive': False})
    assert response.get_json()['isActive'] is False
    assert admin_client.patch('/api/admin/advertisements/999', json={'title': 'x'}).status_code == 404
    bad = admin_client.patch(f"/api/admin/advertisements/{ad['id']}", json={'placement': 'footer'})
    assert bad.status_code == 400

    assert len(admin_client.get('/api/admin/advertisements').get_json()) == 1
    stats = admin_client.get('/api/admin/advertisements/stats').get_json()
    assert stats['total'] == 1
    assert stats['ctr'] == 0

    assert admin_client.delete(f"/api/admin/advertisements/{ad['id']}").status_code == 200
    assert admin_client.delete(f"/api/admin/advertisements/{ad['id']}").status_code == 404


# === Images ===

def test_image_route_serves_and_caches(client, app_module):
    calls = []

    def handler(request):
        calls.append(str(request.url))
        return httpx.Response(200, content=PNG_BYTES)

    app_module.image_proxy.transport = httpx.MockTransport(handler)

    response = client.get('/api/images/pacman')
    assert response.status_code == 200
    assert response.mimetype == 'image/png'
    assert response.headers['Cache-Control'] == 'public, max-age=86400'
    assert response.data == PNG_BYTES
    response.close()

    client.get('/api/images/pacman').close()
    assert len(calls) == 1


def test_image_route_errors(client, app_module):
    app_module.image_proxy.transport = httpx.MockTransport(lambda request: httpx.Response(404))
    assert client.get('/api/images/unknown-key').status_code == 404
    response = client.get('/api/images/hexgl')
    assert response.status_code == 500
    assert response.get_data(as_text=True) == 'Failed to load image'


def test_admin_image_preload(admin_client, app_module):
    app_module.image_proxy.transport = httpx.MockTransport(lambda request: httpx.Response(200, content=PNG_BYTES))
    response = admin_client.post('/api/admin/images/preload')
    assert response.get_json() == {'loaded': 2, 'failed': 0}


# === Hosted games ===

def make_zip(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    buffer.seek(0)
    return buffer


def test_upload_and_play_game(admin_client):
    bundle = make_zip({'index.html': '<html>hosted</html>', 'game.js': 'var x = 1;'})
    response = admin_client.post('/api/admin/upload-game', data={
        'gameFile': (bundle, 'space.zip'),
        'gameTitle': 'Space Game',
    }, content_type='multipart/form-data')
    assert response.status_code == 201
    result = response.get_json()
    assert result['entryFile'] == 'index.html'
    assert result['gameUrl'] == f"/play/{result['gameFolder']}/index.html"

    page = admin_client.get(result['gameUrl'])
    assert page.status_code == 200
    assert b'hosted' in page.data
    page.close()

    missing = admin_client.get(f"/play/{result['gameFolder']}/missing.html")
    assert missing.status_code == 404


def test_upload_game_errors(admin_client):
    response = admin_client.post('/api/admin/upload-game', data={'gameTitle': 'No file'},
                                 content_type='multipart/form-data')
    assert response.status_code == 400

    response = admin_client.post('/api/admin/upload-game', data={
        'gameFile': (io.BytesIO(b'MZ'), 'virus.exe'),
        'gameTitle': 'Bad',
    }, content_type='multipart/form-data')
    assert response.status_code == 400


def test_play_route_blocks_traversal(client, tmp_path):
    # The games directory lives in tmp_path/hosted_games
    (tmp_path / 'secret.txt').write_text('top secret')
    response = client.get('/play/x/..%2F..%2Fsecret.txt')
    assert response.status_code == 404


# === Dashboard & credentials ===

def test_admin_dashboard(admin_client, game):
    stats = admin_client.get('/api/admin/dashboard').get_json()
    assert stats['totalGames'] == 1
    assert stats['totalUsers'] == 1
    assert stats['advertisements']['total'] == 0


def test_admin_credentials(admin_client, app_module, monkeypatch):
    monkeypatch.delenv('SENDGRID_API_KEY', raising=False)
    monkeypatch.delenv('GOOGLE_CLIENT_ID', raising=False)
    monkeypatch.delenv('GOOGLE_CLIENT_SECRET', raising=False)
    assert admin_client.put('/api/admin/credentials', json={}).status_code == 400

    response = admin_client.put('/api/admin/credentials', json={
        'sendgridApiKey': 'SG.new', 'googleClientId': 'gid', 'googleClientSecret': 'gsecret'
    })
    assert response.get_json() == {'success': True, 'updated': ['sendgrid', 'google']}
    assert app_module.credential_manager.get_sendgrid_api_key() == 'SG.new'
    assert app_module.credential_manager.get_google_credentials()['client_id'] == 'gid'
