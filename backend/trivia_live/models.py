from datetime import datetime, timezone
import json
import secrets

from trivia_live import db

QUESTION_COUNT = 10
FINAL_INDEX = 9
# Sudden death answers live in the submission table under this index
SUDDEN_DEATH_INDEX = 999

ROOM_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
# Text limits; both fit their column widths
MAX_TITLE_LEN = 60
MAX_NAME_LEN = 32


def _utcnow():
    return datetime.now(timezone.utc)


def _isoformat(value):
    return value.isoformat() if value else None


def safe_trim(text, max_len=2000):
    trimmed = (text or '').strip()
    return trimmed[:max_len]


def make_question(index, question='', answer='', category=''):
    return {
        'id': str(index + 1),
        'question': question or '',
        'answer': answer or '',
        'category': category or '',
    }


def default_questions():
    return [make_question(i) for i in range(QUESTION_COUNT)]


def generate_room_code(length=6):
    """Generate a unique, unambiguous join code."""
    while True:
        code = ''.join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))
        if not Room.query.filter_by(room_code=code).first():
            return code


def generate_host_secret():
    # 24 bytes -> 32 url-safe characters
    return secrets.token_urlsafe(24)


def submission_key(question_index, player_id):
    return f"{question_index}_{player_id}"


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(6), unique=True, index=True, nullable=False)
    host_secret = db.Column(db.String(64), nullable=False)
    title = db.Column(db.String(MAX_TITLE_LEN), nullable=False, default='Trivia Night')
    status = db.Column(db.String(32), nullable=False, default='lobby')  # lobby, question, final_wager, final_answer, ended
    questions = db.Column(db.Text, nullable=False)  # JSON-encoded list of exactly 10 slots
    current_index = db.Column(db.Integer, nullable=False, default=0)
    revealed = db.Column(db.Boolean, nullable=False, default=False)
    accepting_answers = db.Column(db.Boolean, nullable=False, default=False)
    revealed_at = db.Column(db.Float, nullable=True)
    # Final Jeopardy
    final_wagers_open = db.Column(db.Boolean, nullable=False, default=False)
    final_answers_open = db.Column(db.Boolean, nullable=False, default=False)
    final_revealed_answer = db.Column(db.Boolean, nullable=False, default=False)
    # Sudden death tiebreaker
    sd_active = db.Column(db.Boolean, nullable=False, default=False)
    sd_question = db.Column(db.Text, nullable=True)  # JSON-encoded question
    sd_eligible_player_ids = db.Column(db.Text, nullable=True)  # JSON-encoded list of player ids
    sd_revealed = db.Column(db.Boolean, nullable=False, default=False)
    sd_accepting_answers = db.Column(db.Boolean, nullable=False, default=False)
    sd_revealed_at = db.Column(db.Float, nullable=True)
    sd_winner_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    players = db.relationship('Player', back_populates='room', order_by=lambda: [Player.joined_at, Player.id])

    def __init__(self, **kwargs):
        # Column defaults only apply on flush; the state machine needs them on fresh objects
        kwargs.setdefault('title', 'Trivia Night')
        kwargs.setdefault('status', 'lobby')
        kwargs.setdefault('current_index', 0)
        kwargs.setdefault('revealed', False)
        kwargs.setdefault('accepting_answers', False)
        kwargs.setdefault('final_wagers_open', False)
        kwargs.setdefault('final_answers_open', False)
        kwargs.setdefault('final_revealed_answer', False)
        kwargs.setdefault('sd_active', False)
        kwargs.setdefault('sd_revealed', False)
        kwargs.setdefault('sd_accepting_answers', False)
        if 'questions' not in kwargs:
            kwargs['questions'] = json.dumps(default_questions())
        super(Room, self).__init__(**kwargs)

    @property
    def question_slots(self):
        return json.loads(self.questions) if self.questions else default_questions()

    @question_slots.setter
    def question_slots(self, slots):
        self.questions = json.dumps(slots)

    @property
    def current_question(self):
        return self.question_slots[self.current_index]

    @property
    def sudden_death_question(self):
        return json.loads(self.sd_question) if self.sd_question else None

    @sudden_death_question.setter
    def sudden_death_question(self, question):
        self.sd_question = json.dumps(question) if question is not None else None

    @property
    def eligible_player_ids(self):
        return json.loads(self.sd_eligible_player_ids) if self.sd_eligible_player_ids else []

    @eligible_player_ids.setter
    def eligible_player_ids(self, player_ids):
        self.sd_eligible_player_ids = json.dumps(list(player_ids))

    def final_state(self):
        return {
            'wagers_open': bool(self.final_wagers_open),
            'answers_open': bool(self.final_answers_open),
            'revealed_answer': bool(self.final_revealed_answer),
        }

    def final_question_visible(self):
        return bool(self.final_answers_open) or self.status in ('final_answer', 'ended')

    def sudden_death_state(self, include_answers=False):
        if not self.sd_active:
            return None
        question = self.sudden_death_question
        if question is not None and not include_answers:
            question = (
                {'question': question['question'], 'category': question['category']}
                if self.sd_revealed else None
            )
        return {
            'active': True,
            'question': question,
            'eligible_player_ids': self.eligible_player_ids,
            'revealed': bool(self.sd_revealed),
            'accepting_answers': bool(self.sd_accepting_answers),
            'revealed_at': self.sd_revealed_at,
            'winner_player_id': self.sd_winner_id,
        }

    def to_dict(self, include_answers=False):
        """Serialize the room. The host secret is never part of the payload.

        Without ``include_answers`` only what players may see is exposed: the
        current question once revealed (just the category of the final question
        while wagers are open), and the final answer key once the host reveals
        it.
        """
        current = self.current_question
        payload = {
            'room_id': self.room_code,
            'title': self.title,
            'status': self.status,
            'current_index': self.current_index,
            'revealed': bool(self.revealed),
            'accepting_answers': bool(self.accepting_answers),
            'revealed_at': self.revealed_at,
            'final': self.final_state(),
            'sudden_death': self.sudden_death_state(include_answers=include_answers),
            'players': [p.to_dict() for p in self.players],
            'created_at': _isoformat(self.created_at),
        }
        if include_answers:
            payload['questions'] = self.question_slots
            payload['current_question'] = current
        elif self.revealed and self.current_index == FINAL_INDEX and not self.final_question_visible():
            # Wagers are placed knowing only the category
            payload['current_question'] = {'category': current['category']}
        elif self.revealed:
            visible = {'question': current['question'], 'category': current['category']}
            if self.current_index == FINAL_INDEX and self.final_revealed_answer:
                visible['answer'] = current['answer']
            payload['current_question'] = visible
        else:
            payload['current_question'] = None
        return payload


class Player(db.Model):
    __tablename__ = 'player'
    __table_args__ = (db.UniqueConstraint('room_id', 'player_id', name='uq_player_room_player'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    player_id = db.Column(db.String(64), nullable=False)  # client-generated opaque token
    name = db.Column(db.String(64), nullable=False)
    score = db.Column(db.Integer, nullable=False, default=0)
    joined_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    room = db.relationship('Room', back_populates='players')

    def to_dict(self):
        return {
            'id': self.player_id,
            'name': self.name,
            'score': self.score or 0,
            'joined_at': _isoformat(self.joined_at),
        }


class Submission(db.Model):
    __tablename__ = 'submission'
    __table_args__ = (db.UniqueConstraint('room_id', 'question_index', 'player_id', name='uq_submission_slot'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    key = db.Column(db.String(80), nullable=False)
    player_id = db.Column(db.String(64), nullable=False)
    player_name = db.Column(db.String(64), nullable=False)
    question_index = db.Column(db.Integer, nullable=False)
    answer = db.Column(db.Text, nullable=False, default='')
    judged = db.Column(db.Boolean, nullable=True)  # None until judged
    points_delta = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            'id': self.key,
            'player_id': self.player_id,
            'player_name': self.player_name,
            'question_index': self.question_index,
            'answer': self.answer,
            'judged': self.judged,
            'points_delta': self.points_delta or 0,
            'created_at': _isoformat(self.created_at),
        }


class Wager(db.Model):
    __tablename__ = 'wager'
    __table_args__ = (db.UniqueConstraint('room_id', 'player_id', name='uq_wager_player'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    player_id = db.Column(db.String(64), nullable=False)
    player_name = db.Column(db.String(64), nullable=False)
    wager = db.Column(db.Integer, nullable=False, default=0)  # declared, unclamped
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            'id': self.player_id,
            'player_id': self.player_id,
            'player_name': self.player_name,
            'wager': self.wager,
            'created_at': _isoformat(self.created_at),
        }


class FinalAnswer(db.Model):
    __tablename__ = 'final_answer'
    __table_args__ = (db.UniqueConstraint('room_id', 'player_id', name='uq_final_answer_player'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    player_id = db.Column(db.String(64), nullable=False)
    player_name = db.Column(db.String(64), nullable=False)
    answer = db.Column(db.Text, nullable=False, default='')
    judged = db.Column(db.Boolean, nullable=True)
    points_delta = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            'id': self.player_id,
            'player_id': self.player_id,
            'player_name': self.player_name,
            'answer': self.answer,
            'judged': self.judged,
            'points_delta': self.points_delta or 0,
            'created_at': _isoformat(self.created_at),
        }
