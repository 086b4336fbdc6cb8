from __future__ import annotations

import logging
import random
import uuid
from typing import List, Optional

from .db import InMemoryDatabase, db
from .errors import AuthorizationError, OwnershipError
from .models import AnswerOption, Question, Quiz
from .schemas import QuestionIn

logger = logging.getLogger(__name__)

ANSWER_COLOURS = ["red", "blue", "green", "yellow", "purple", "brown", "orange"]


class QuizDirectory:
    """Owner tokens and the owners' quizzes that sessions are started from."""

    def __init__(self, database: InMemoryDatabase = db):
        self.db = database

    async def issue_token(self, owner_id: str) -> str:
        token = uuid.uuid4().hex
        await self.db.owner_tokens.insert_one({"token": token, "owner_id": owner_id})
        return token

    async def resolve_owner(self, token: Optional[str]) -> str:
        if not token:
            raise AuthorizationError("Token is empty")
        doc = await self.db.owner_tokens.find_one({"token": token})
        if not doc:
            raise AuthorizationError("Token is invalid")
        return doc["owner_id"]

    async def get_quiz(self, quiz_id: str) -> Quiz | None:
        doc = await self.db.quizzes.find_one({"id": quiz_id})
        return Quiz(**doc) if doc else None

    async def require_owned_quiz(self, token: Optional[str], quiz_id: str) -> Quiz:
        owner_id = await self.resolve_owner(token)
        quiz = await self.get_quiz(quiz_id)
        if not quiz or quiz.owner_id != owner_id:
            raise OwnershipError("Quiz does not exist or does not belong to the user")
        return quiz

    async def upsert_quiz(self, token: Optional[str], quiz_id: str, name: str, questions: List[QuestionIn]) -> Quiz:
        owner_id = await self.resolve_owner(token)
        existing = await self.get_quiz(quiz_id)
        if existing and existing.owner_id != owner_id:
            raise OwnershipError("Quiz does not belong to the user")

        built = [await self._build_question(q) for q in questions]
        quiz = Quiz(id=quiz_id, owner_id=owner_id, name=name, questions=built)
        await self.db.quizzes.update_one({"id": quiz.id}, {"$set": quiz.model_dump()}, upsert=True)
        logger.info("Quiz %s stored with %d question(s) for owner %s", quiz.id, len(built), owner_id)
        return quiz

    async def _build_question(self, q: QuestionIn) -> Question:
        answers = [
            AnswerOption(
                id=await self._next_id("answer"),
                text=a.text,
                colour=a.colour or random.choice(ANSWER_COLOURS),
                correct=a.correct,
            )
            for a in q.answers
        ]
        return Question(
            id=await self._next_id("question"),
            text=q.text,
            duration=q.duration,
            points=q.points,
            answers=answers,
        )

    async def _next_id(self, name: str) -> int:
        doc = await self.db.counters.find_one_and_update(
            {"_id": name},
            {"$inc": {"seq": 1}},
        )
        return int(doc["seq"])


directory = QuizDirectory()
