
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from .models import Question, SessionState


class AnswerOptionIn(BaseModel):
    text: str = Field(min_length=1)
    correct: bool = False
    colour: Optional[str] = None


class QuestionIn(BaseModel):
    text: str = Field(min_length=1)
    duration: float = Field(gt=0)
    points: float = Field(gt=0)
    answers: List[AnswerOptionIn] = Field(min_length=2)

    @model_validator(mode="after")
    def _needs_a_correct_answer(self):
        if not any(a.correct for a in self.answers):
            raise ValueError("question needs at least one correct answer")
        return self


class TokenIn(BaseModel):
    owner_id: str


class UpsertQuizIn(BaseModel):
    name: str = ""
    questions: List[QuestionIn]


class CreateSessionIn(BaseModel):
    auto_start_num: int


class SessionActionIn(BaseModel):
    action: str


class JoinIn(BaseModel):
    session_id: str
    name: str = ""


class AnswerIn(BaseModel):
    answer_ids: List[int]


class PublicAnswerOut(BaseModel):
    id: int
    text: str
    colour: str


class PlayerQuestionOut(BaseModel):
    question_id: int
    text: str
    duration: float
    points: float
    answers: List[PublicAnswerOut]


class QuizSnapshotOut(BaseModel):
    quiz_id: str
    name: str
    num_questions: int
    questions: List[Question]


class SessionStatusOut(BaseModel):
    state: SessionState
    current_question_idx: int
    players: List[str]
    quiz: QuizSnapshotOut
    question_deadline_ts: float | None


class SessionListOut(BaseModel):
    active_sessions: List[str]
    inactive_sessions: List[str]


class PlayerStatusOut(BaseModel):
    state: SessionState
    num_questions: int
    current_question_idx: int
