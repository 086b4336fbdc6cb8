from __future__ import annotations
import asyncio
import logging
import uuid
from functools import partial
from typing import Dict, List, Optional

from .db import InMemoryDatabase, db, settings
from .directory import QuizDirectory, directory
from .errors import InvalidInputError, InvalidStateError, NotFoundError
from .events import EventStore, event_store
from .models import (
    AnswerEntry,
    Player,
    Question,
    QuestionResult,
    Session,
    SessionAction,
    SessionResults,
    SessionState,
)
from .scoring import aggregate_results, score_question
from .timers import TimerRegistry
from .utils import clock, generate_player_name, now_ts

logger = logging.getLogger(__name__)

MAX_ACTIVE_SESSIONS_PER_QUIZ = 10
MAX_AUTO_START_NUM = 50

LEGAL_SOURCES: Dict[SessionAction, frozenset] = {
    SessionAction.NEXT_QUESTION: frozenset(
        {SessionState.LOBBY, SessionState.QUESTION_CLOSE, SessionState.ANSWER_SHOW}
    ),
    SessionAction.SKIP_COUNTDOWN: frozenset({SessionState.QUESTION_COUNTDOWN}),
    SessionAction.GO_TO_ANSWER: frozenset({SessionState.QUESTION_OPEN, SessionState.QUESTION_CLOSE}),
    SessionAction.GO_TO_FINAL_RESULTS: frozenset({SessionState.QUESTION_CLOSE, SessionState.ANSWER_SHOW}),
    SessionAction.END: frozenset(set(SessionState) - {SessionState.END}),
}


class GameController:
    def __init__(
        self,
        database: InMemoryDatabase = db,
        events: EventStore = event_store,
        quizzes: QuizDirectory = directory,
        countdown_seconds: Optional[float] = None,
    ):
        self.db = database
        self.events = events
        self.quizzes = quizzes
        self.countdown_seconds = settings.COUNTDOWN_SECONDS if countdown_seconds is None else countdown_seconds
        self.timers = TimerRegistry()
        self.locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        self.locks.setdefault(key, asyncio.Lock())
        return self.locks[key]

    async def get_session(self, session_id: str) -> Session | None:
        doc = await self.db.sessions.find_one({"id": session_id})
        return Session(**doc) if doc else None

    async def save_session(self, s: Session):
        await self.db.sessions.update_one(
            {"id": s.id},
            {"$set": s.model_dump()},
            upsert=True
        )

    async def _require_session(self, session_id: str, quiz_id: str | None = None) -> Session:
        s = await self.get_session(session_id)
        if not s or (quiz_id is not None and s.quiz_id != quiz_id):
            raise NotFoundError("Session Id does not refer to a valid session within this quiz")
        return s

    async def _require_player_session(self, session_id: str, player_id: str) -> Session:
        s = await self.get_session(session_id)
        if not s or not s.find_player(player_id):
            raise NotFoundError("Player ID does not exist")
        return s

    # ---- owner operations -------------------------------------------------

    async def create_session(self, quiz_id: str, auto_start_num: int, owner_token: str | None) -> Session:
        quiz = await self.quizzes.require_owned_quiz(owner_token, quiz_id)

        if not 0 <= auto_start_num <= MAX_AUTO_START_NUM:
            raise InvalidInputError(f"autoStartNum must be between 0 and {MAX_AUTO_START_NUM}")
        if not quiz.questions:
            raise InvalidInputError("given quiz does not have any questions in it")

        async with self._lock(f"quiz:{quiz_id}"):
            active = await self.db.sessions.count_documents(
                {"quiz_id": quiz_id, "state": {"$ne": SessionState.END}}
            )
            if active >= MAX_ACTIVE_SESSIONS_PER_QUIZ:
                raise InvalidStateError(
                    f"quiz already has {MAX_ACTIVE_SESSIONS_PER_QUIZ} sessions that are not in END state"
                )

            # snapshot of the questions as they are now
            s = Session(
                id=uuid.uuid4().hex,
                quiz_id=quiz.id,
                quiz_name=quiz.name,
                auto_start_num=auto_start_num,
                questions=quiz.questions,
            )
            await self.events.reset(s.id)
            await self.save_session(s)

        logger.info("Session %s created for quiz %s (auto start at %d)", s.id, quiz_id, auto_start_num)
        return s

    async def list_sessions(self, quiz_id: str, owner_token: str | None) -> Dict[str, List[str]]:
        await self.quizzes.require_owned_quiz(owner_token, quiz_id)
        docs = await self.db.sessions.find({"quiz_id": quiz_id}).to_list()
        return {
            "active_sessions": sorted(d["id"] for d in docs if d["state"] != SessionState.END),
            "inactive_sessions": sorted(d["id"] for d in docs if d["state"] == SessionState.END),
        }

    async def session_status(self, quiz_id: str, session_id: str, owner_token: str | None) -> Session:
        await self.quizzes.require_owned_quiz(owner_token, quiz_id)
        return await self._require_session(session_id, quiz_id)

    async def advance(self, quiz_id: str, session_id: str, owner_token: str | None, action: str) -> Session:
        await self.quizzes.require_owned_quiz(owner_token, quiz_id)

        async with self._lock(session_id):
            s = await self._require_session(session_id, quiz_id)
            try:
                act = SessionAction(action)
            except ValueError as exc:
                raise InvalidInputError(f"{action!r} is not a valid action") from exc

            previous = s.state
            await self._apply(s, act)
            await self._commit(s, previous)
            return s

    async def session_results(self, quiz_id: str, session_id: str, owner_token: str | None) -> SessionResults:
        await self.quizzes.require_owned_quiz(owner_token, quiz_id)
        s = await self._require_session(session_id, quiz_id)
        return self._final_results(s)

    # ---- player operations ------------------------------------------------

    async def join(self, session_id: str, name: str) -> Player:
        async with self._lock(session_id):
            s = await self.get_session(session_id)
            if not s:
                raise NotFoundError("Session does not exist")
            if s.state != SessionState.LOBBY:
                raise InvalidStateError("session is not in lobby state")

            taken = {p.name for p in s.players}
            if name in taken:
                raise InvalidInputError("name has already been used by another player")
            if not name:
                name = generate_player_name(taken)

            p = Player(id=uuid.uuid4().hex, name=name)
            s.players.append(p)
            logger.info("Player %s joined session %s as %r", p.id, s.id, p.name)
            await self._publish_players(s)

            if len(s.players) == s.auto_start_num:
                logger.info("Session %s reached %d players, starting", s.id, s.auto_start_num)
                await self._apply(s, SessionAction.NEXT_QUESTION)

            await self._commit(s, SessionState.LOBBY)
            return p

    async def submit_answer(
        self, session_id: str, player_id: str, question_position: int, answer_ids: List[int]
    ) -> AnswerEntry:
        async with self._lock(session_id):
            s = await self._require_player_session(session_id, player_id)
            self._check_position(s, question_position)

            if s.state != SessionState.QUESTION_OPEN:
                raise InvalidStateError("Session is not in QUESTION_OPEN state")
            if question_position != s.current_question_idx:
                raise InvalidStateError("Session is not currently on this question")

            if not answer_ids:
                raise InvalidInputError("Less than 1 answer ID was submitted")
            if len(set(answer_ids)) != len(answer_ids):
                raise InvalidInputError("Duplicate answer IDs provided")
            if not set(answer_ids) <= s.questions[question_position].answer_ids():
                raise InvalidInputError("Answer IDs are not valid for this question")

            # taken under the session lock, so timestamps follow acceptance order
            entry = AnswerEntry(
                player_id=player_id,
                question_index=question_position,
                answer_ids=list(answer_ids),
                timestamp=clock(),
            )
            await self.db.answers.update_one(
                {"session_id": session_id, "player_id": player_id, "question_index": question_position},
                {"$set": {"answer_ids": entry.answer_ids, "timestamp": entry.timestamp}},
                upsert=True,
            )
            return entry

    async def player_status(self, session_id: str, player_id: str) -> Session:
        return await self._require_player_session(session_id, player_id)

    async def player_question(self, session_id: str, player_id: str, question_position: int) -> Question:
        s = await self._require_player_session(session_id, player_id)
        self._check_position(s, question_position)

        if question_position != s.current_question_idx:
            raise InvalidStateError("Session is not currently on this question")
        if s.state in (SessionState.LOBBY, SessionState.END):
            raise InvalidStateError("Session is in LOBBY or END state")

        return s.questions[question_position]

    async def question_results(self, session_id: str, player_id: str, question_position: int) -> QuestionResult:
        s = await self._require_player_session(session_id, player_id)
        self._check_position(s, question_position)

        if question_position > s.current_question_idx:
            raise InvalidStateError("Session is not yet up to this question")
        outcome = s.outcome_for(question_position)
        if outcome is None:
            raise InvalidStateError("Question has not been closed, results are not available")
        return outcome.result

    async def player_results(self, session_id: str, player_id: str) -> SessionResults:
        s = await self._require_player_session(session_id, player_id)
        return self._final_results(s)

    async def clear(self):
        self.timers.cancel_all()
        await self.db.clear()
        self.locks.clear()
        logger.info("All sessions, quizzes and tokens cleared")

    # ---- state machine ----------------------------------------------------

    async def _apply(self, s: Session, action: SessionAction):
        """Run one transition on ``s``; the caller holds the session lock and saves."""

        if s.state not in LEGAL_SOURCES[action]:
            raise InvalidStateError(f"{action.value} is not valid while the session is in {s.state.value}")
        if action == SessionAction.NEXT_QUESTION and s.current_question_idx + 1 >= len(s.questions):
            raise InvalidStateError("There are no more questions in this session")

        self.timers.cancel(s.id)

        if action == SessionAction.NEXT_QUESTION:
            self._start_countdown(s)

        elif action == SessionAction.SKIP_COUNTDOWN:
            self._open_question(s)

        elif action == SessionAction.GO_TO_ANSWER:
            await self._freeze_current(s)
            s.state = SessionState.ANSWER_SHOW
            s.question_deadline_ts = None

        elif action == SessionAction.GO_TO_FINAL_RESULTS:
            await self._freeze_current(s)
            s.state = SessionState.FINAL_RESULTS
            s.results = aggregate_results(s.players, s.outcomes)

        elif action == SessionAction.END:
            if s.state == SessionState.QUESTION_OPEN:
                await self._freeze_current(s)
            s.state = SessionState.END
            s.question_deadline_ts = None
            if s.results is None:
                s.results = aggregate_results(s.players, s.outcomes)

    def _start_countdown(self, s: Session):
        s.current_question_idx += 1
        s.state = SessionState.QUESTION_COUNTDOWN
        s.question_opened_at = None
        s.question_deadline_ts = None
        self.timers.arm(
            s.id,
            self.countdown_seconds,
            partial(self._on_timer, s.id, SessionState.QUESTION_COUNTDOWN, s.current_question_idx),
        )

    def _open_question(self, s: Session):
        q = s.current_question()
        s.state = SessionState.QUESTION_OPEN
        s.question_opened_at = clock()
        s.question_deadline_ts = now_ts() + q.duration
        self.timers.arm(
            s.id,
            q.duration,
            partial(self._on_timer, s.id, SessionState.QUESTION_OPEN, s.current_question_idx),
        )

    async def _close_question(self, s: Session):
        await self._freeze_current(s)
        s.state = SessionState.QUESTION_CLOSE
        s.question_deadline_ts = None

    async def _on_timer(self, session_id: str, armed_in: SessionState, question_idx: int):
        async with self._lock(session_id):
            s = await self.get_session(session_id)
            # (state, index) pairs are never revisited, so a match means this timer is still current
            if not s or s.state != armed_in or s.current_question_idx != question_idx:
                logger.debug("Ignoring stale %s timer for session %s", armed_in.value, session_id)
                return

            if armed_in == SessionState.QUESTION_COUNTDOWN:
                self._open_question(s)
            else:
                await self._close_question(s)
            await self._commit(s, armed_in)

    async def _freeze_current(self, s: Session):
        idx = s.current_question_idx
        if s.outcome_for(idx) is not None:
            return

        docs = await self.db.answers.find({"session_id": s.id, "question_index": idx}).to_list()
        entries = [AnswerEntry(**d) for d in docs]
        outcome = score_question(s.questions[idx], idx, s.players, entries, s.question_opened_at)
        s.outcomes.append(outcome)

        logger.info(
            "Session %s question %d closed: %d answer(s), %d%% correct",
            s.id, idx, len(entries), outcome.result.percent_correct,
        )
        await self.events.append(
            s.id,
            {
                "type": "question_results",
                "question_index": idx,
                "result": outcome.result.model_dump(),
            },
        )

    async def _commit(self, s: Session, previous: SessionState):
        await self.save_session(s)
        if s.state == previous:
            return

        logger.info(
            "Session %s: %s -> %s (question %d)",
            s.id, previous.value, s.state.value, s.current_question_idx,
        )
        await self.events.append(
            s.id,
            {
                "type": "state_changed",
                "state": s.state.value,
                "question_index": s.current_question_idx,
                "deadline_ts": s.question_deadline_ts,
            },
        )
        if s.state == SessionState.FINAL_RESULTS:
            await self.events.append(s.id, {"type": "final_results", "results": s.results.model_dump()})

    def _final_results(self, s: Session) -> SessionResults:
        if s.state not in (SessionState.FINAL_RESULTS, SessionState.END) or s.results is None:
            raise InvalidStateError("Session is not in FINAL_RESULTS state")
        return s.results

    def _check_position(self, s: Session, question_position: int):
        if not 0 <= question_position < len(s.questions):
            raise InvalidInputError("Question position is not valid for this session")

    async def _publish_players(self, s: Session):
        await self.events.append(
            s.id,
            {
                "type": "players_update",
                "players": [p.name for p in s.players],
            },
        )


controller = GameController()
