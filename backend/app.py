from typing import List, Optional
from fastapi import FastAPI, Depends, HTTPException, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from config import CORS_ORIGINS, HOST, LOG_FILE, LOG_LEVEL, PORT
from db import Base, engine, get_session
from logging_config import get_logger, setup_logging
from models import User
from schemas import AuthSignup, AuthLogin, UserOut, StoryIn, StoryUpdate, StoryOut, StoryBrief, StoryPage, MessageOut
from auth import authed, authenticate, hash_password, make_token
from ws import PresenceHub, get_hub
import stories

setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Stories API")
app.add_middleware(CORSMiddleware, allow_origins=CORS_ORIGINS, allow_credentials=True, allow_methods=["*"], allow_headers=["*"])

@app.get("/")
def root(hub: PresenceHub = Depends(get_hub)):
    return {"status": "running", "online": hub.registry.online}

@app.post("/auth/signup", response_model=UserOut)
def signup(p: AuthSignup, session: Session = Depends(get_session)):
    if session.query(User).filter_by(email=p.email).first():
        raise HTTPException(400, "EMAIL_ALREADY_EXISTS")
    u = User(email=p.email, name=p.name, password_hash=hash_password(p.password))
    session.add(u)
    session.commit()
    session.refresh(u)
    return u

@app.post("/auth/login")
def login(p: AuthLogin, session: Session = Depends(get_session)):
    u = authenticate(session, p.email, p.password)
    if not u:
        raise HTTPException(401, "Invalid credentials")
    return {"token": make_token(u.email, p.remember)}

@app.get("/me", response_model=UserOut)
def me(user: User = Depends(authed)):
    return user

# /stories/all must be registered before /stories/{story_id}
@app.get("/stories/all", response_model=List[StoryBrief])
def stories_all(user: User = Depends(authed), session: Session = Depends(get_session)):
    return stories.list_all(session)

@app.get("/stories", response_model=StoryPage)
def stories_list(
    filter: Optional[str] = None,
    fields: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(stories.DEFAULT_LIMIT, ge=1, le=stories.MAX_LIMIT),
    sort: str = "created_at",
    order: int = Query(-1),
    user: User = Depends(authed),
    session: Session = Depends(get_session),
):
    return stories.list_page(session, filter=filter, fields=fields, page=page, limit=limit, sort=sort, order=order)

@app.post("/stories", response_model=StoryOut, status_code=201)
def stories_create(p: StoryIn, user: User = Depends(authed), session: Session = Depends(get_session)):
    return stories.story_out(stories.create(session, user, p.title, p.content))

@app.get("/stories/{story_id}", response_model=StoryOut)
def stories_get(story_id: int, user: User = Depends(authed), session: Session = Depends(get_session)):
    """Return a story and mark it read by the caller."""
    return stories.story_out(stories.read(session, story_id, user))

@app.patch("/stories/{story_id}", response_model=StoryOut)
def stories_update(story_id: int, p: StoryUpdate, user: User = Depends(authed), session: Session = Depends(get_session)):
    changes = p.model_dump(exclude_unset=True)
    return stories.story_out(stories.update(session, story_id, user, changes))

@app.delete("/stories/{story_id}", response_model=MessageOut)
def stories_delete(story_id: int, user: User = Depends(authed), session: Session = Depends(get_session)):
    stories.delete(session, story_id, user)
    return {"msg": "DELETED"}

@app.websocket("/ws")
async def ws_endpoint(ws: WebSocket, hub: PresenceHub = Depends(get_hub)):
    await hub.serve(ws)

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host=HOST, port=PORT, log_level=LOG_LEVEL.lower())
