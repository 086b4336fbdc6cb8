import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional

from .db import settings
from .directory import directory
from .errors import SessionError
from .events import event_store
from .game import controller
from .models import QuestionResult, SessionResults
from .schemas import (
    AnswerIn,
    CreateSessionIn,
    JoinIn,
    PlayerQuestionOut,
    PlayerStatusOut,
    PublicAnswerOut,
    QuizSnapshotOut,
    SessionActionIn,
    SessionListOut,
    SessionStatusOut,
    TokenIn,
    UpsertQuizIn,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Live Quiz Session API")

origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
origin_regex = settings.CORS_ORIGIN_REGEX or None

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SessionError)
async def session_error_handler(request: Request, exc: SessionError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "kind": exc.kind})


def require_admin(x_admin_key: Optional[str] = Header(default=None)):
    if x_admin_key != settings.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


@app.get("/api/session/{session_id}/events")
async def list_events(session_id: str, after: int | None = None, limit: int = 200):
    events = await event_store.list(session_id, after=after, limit=limit)
    latest_seq = events[-1]["seq"] if events else after
    return {"events": events, "latest_seq": latest_seq}


# ---- owner -------------------------------------------------------------------


@app.post("/api/admin/token")
async def issue_token(payload: TokenIn, _: None = Depends(require_admin)):
    token = await directory.issue_token(payload.owner_id)
    return {"token": token}


@app.put("/api/admin/quiz/{quiz_id}")
async def upsert_quiz(quiz_id: str, payload: UpsertQuizIn, x_owner_token: Optional[str] = Header(default=None)):
    quiz = await directory.upsert_quiz(x_owner_token, quiz_id, payload.name, payload.questions)
    return {"quiz_id": quiz.id, "questions": [q.model_dump() for q in quiz.questions]}


@app.post("/api/admin/quiz/{quiz_id}/session/start")
async def start_session(
    quiz_id: str, payload: CreateSessionIn, x_owner_token: Optional[str] = Header(default=None)
):
    s = await controller.create_session(quiz_id, payload.auto_start_num, x_owner_token)
    return {"session_id": s.id}


@app.get("/api/admin/quiz/{quiz_id}/sessions", response_model=SessionListOut)
async def list_sessions(quiz_id: str, x_owner_token: Optional[str] = Header(default=None)):
    return SessionListOut(**await controller.list_sessions(quiz_id, x_owner_token))


@app.get("/api/admin/quiz/{quiz_id}/session/{session_id}", response_model=SessionStatusOut)
async def session_status(quiz_id: str, session_id: str, x_owner_token: Optional[str] = Header(default=None)):
    s = await controller.session_status(quiz_id, session_id, x_owner_token)
    return SessionStatusOut(
        state=s.state,
        current_question_idx=s.current_question_idx,
        players=sorted((p.name for p in s.players), key=lambda n: (n.lower(), n)),
        quiz=QuizSnapshotOut(
            quiz_id=s.quiz_id,
            name=s.quiz_name,
            num_questions=len(s.questions),
            questions=s.questions,
        ),
        question_deadline_ts=s.question_deadline_ts,
    )


@app.put("/api/admin/quiz/{quiz_id}/session/{session_id}")
async def advance_session(
    quiz_id: str, session_id: str, payload: SessionActionIn, x_owner_token: Optional[str] = Header(default=None)
):
    await controller.advance(quiz_id, session_id, x_owner_token, payload.action)
    return {}


@app.get("/api/admin/quiz/{quiz_id}/session/{session_id}/results", response_model=SessionResults)
async def session_results(quiz_id: str, session_id: str, x_owner_token: Optional[str] = Header(default=None)):
    return await controller.session_results(quiz_id, session_id, x_owner_token)


# ---- player ------------------------------------------------------------------


@app.post("/api/player/join")
async def join(payload: JoinIn):
    p = await controller.join(payload.session_id, payload.name)
    return {"player_id": p.id, "name": p.name}


@app.get("/api/session/{session_id}/player/{player_id}", response_model=PlayerStatusOut)
async def player_status(session_id: str, player_id: str):
    s = await controller.player_status(session_id, player_id)
    return PlayerStatusOut(
        state=s.state,
        num_questions=len(s.questions),
        current_question_idx=s.current_question_idx,
    )


@app.get("/api/session/{session_id}/player/{player_id}/question/{position}", response_model=PlayerQuestionOut)
async def player_question(session_id: str, player_id: str, position: int):
    q = await controller.player_question(session_id, player_id, position)
    return PlayerQuestionOut(
        question_id=q.id,
        text=q.text,
        duration=q.duration,
        points=q.points,
        answers=[PublicAnswerOut(id=a.id, text=a.text, colour=a.colour) for a in q.answers],
    )


@app.put("/api/session/{session_id}/player/{player_id}/question/{position}/answer")
async def answer(session_id: str, player_id: str, position: int, payload: AnswerIn):
    await controller.submit_answer(session_id, player_id, position, payload.answer_ids)
    return {}


@app.get(
    "/api/session/{session_id}/player/{player_id}/question/{position}/results",
    response_model=QuestionResult,
)
async def question_results(session_id: str, player_id: str, position: int):
    return await controller.question_results(session_id, player_id, position)


@app.get("/api/session/{session_id}/player/{player_id}/results", response_model=SessionResults)
async def player_results(session_id: str, player_id: str):
    return await controller.player_results(session_id, player_id)


@app.delete("/api/clear")
async def clear(_: None = Depends(require_admin)):
    await controller.clear()
    return {}
