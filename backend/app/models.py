from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

AnswerId = int


class SessionState(str, Enum):
    LOBBY = "LOBBY"
    QUESTION_COUNTDOWN = "QUESTION_COUNTDOWN"
    QUESTION_OPEN = "QUESTION_OPEN"
    QUESTION_CLOSE = "QUESTION_CLOSE"
    ANSWER_SHOW = "ANSWER_SHOW"
    FINAL_RESULTS = "FINAL_RESULTS"
    END = "END"


class SessionAction(str, Enum):
    NEXT_QUESTION = "NEXT_QUESTION"
    SKIP_COUNTDOWN = "SKIP_COUNTDOWN"
    GO_TO_ANSWER = "GO_TO_ANSWER"
    GO_TO_FINAL_RESULTS = "GO_TO_FINAL_RESULTS"
    END = "END"


class Player(BaseModel):
    id: str
    name: str


class AnswerOption(BaseModel):
    id: AnswerId
    text: str
    colour: str
    correct: bool = False


class Question(BaseModel):
    id: int
    text: str
    duration: float  # seconds
    points: float
    answers: List[AnswerOption]

    def answer_ids(self) -> set[AnswerId]:
        return {a.id for a in self.answers}

    def correct_answer_ids(self) -> set[AnswerId]:
        return {a.id for a in self.answers if a.correct}


class Quiz(BaseModel):
    id: str
    owner_id: str
    name: str = ""
    questions: List[Question] = Field(default_factory=list)


class AnswerEntry(BaseModel):
    """One player's latest submission for one question."""

    player_id: str
    question_index: int
    answer_ids: List[AnswerId]
    timestamp: float  # monotonic seconds, see utils.clock


class QuestionResult(BaseModel):
    question_id: int
    players_correct_list: List[str]
    average_answer_time: int
    percent_correct: int


class QuestionOutcome(BaseModel):
    question_index: int
    points: float
    result: QuestionResult
    awards: Dict[str, float]  # player id -> points for this question
    ranks: Dict[str, int]  # player id -> speed rank, fully correct players only


class RankedUser(BaseModel):
    name: str
    score: float


class SessionResults(BaseModel):
    users_ranked_by_score: List[RankedUser]
    question_results: List[QuestionResult]


# States: LOBBY -> QUESTION_COUNTDOWN -> QUESTION_OPEN -> QUESTION_CLOSE -> ANSWER_SHOW
#         -> (QUESTION_COUNTDOWN ...) -> FINAL_RESULTS -> END
class Session(BaseModel):
    id: str
    quiz_id: str
    quiz_name: str = ""
    auto_start_num: int = 0
    state: SessionState = SessionState.LOBBY
    players: List[Player] = Field(default_factory=list)
    questions: List[Question] = Field(default_factory=list)
    current_question_idx: int = -1
    question_opened_at: Optional[float] = None
    question_deadline_ts: Optional[float] = None
    outcomes: List[QuestionOutcome] = Field(default_factory=list)
    results: Optional[SessionResults] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_question_idx < len(self.questions):
            return self.questions[self.current_question_idx]
        return None

    def outcome_for(self, question_index: int) -> Optional[QuestionOutcome]:
        for outcome in self.outcomes:
            if outcome.question_index == question_index:
                return outcome
        return None

    def find_player(self, player_id: str) -> Optional[Player]:
        return next((p for p in self.players if p.id == player_id), None)
