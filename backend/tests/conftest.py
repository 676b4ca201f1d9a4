import os
import sys
import pytest

# Ensure the backend root (containing the `trivia_live` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from trivia_live import create_app, db, socketio
from trivia_live.errors import GenerationFailed


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    ANSWER_WINDOW_SEC = 30
    AUTO_CLOSE_ANSWERS = True
    ENFORCE_ANSWER_WINDOW = False
    MAX_ANSWER_LEN = 280
    OPENAI_API_KEY = None
    OPENAI_MODEL = 'gpt-4.1-mini'


def sample_questions(prefix='Q'):
    return [
        {'question': f'{prefix}{i + 1}?', 'answer': f'A{i + 1}', 'category': 'General'}
        for i in range(10)
    ]


class FakeGenerator:
    """Stands in for the question service; records calls and can be told to fail."""

    def __init__(self):
        self.fail = False
        self.calls = []
        self.batch = sample_questions()

    def generate_game(self):
        self.calls.append(('game',))
        if self.fail:
            raise GenerationFailed('Generation failed: service down')
        return [dict(q) for q in self.batch]

    def generate_replacement(self, index, avoid=()):
        self.calls.append(('replace', index, list(avoid)))
        if self.fail:
            raise GenerationFailed('Generation failed: service down')
        return {'question': f'Fresh question {index}?', 'answer': 'Fresh', 'category': 'Science'}


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import trivia_live.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def generator(flask_app):
    fake = FakeGenerator()
    flask_app.extensions['question_generator'] = fake
    return fake


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    if test_client.is_connected('/ws'):
        test_client.disconnect(namespace='/ws')


@pytest.fixture()
def room(client):
    """A fresh room: returns (code, host headers)."""
    data = client.post('/api/rooms/create', json={'title': 'Quiz'}).get_json()
    return data['room_id'], {'X-Host-Secret': data['host_secret']}
