import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Depends
from fastapi.middleware.cors import CORSMiddleware

from .auth import routers as auth_router
from .chat import routers as chat_router
from .products import routers as product_router
from .favorites import routers as favorite_router
from .profiles import routers as profile_router

from .core.dependencies import CurrentUser, get_current_user
from .core.middleware import logging_middleware
from .core.supabase_client import create_realtime_client, close_realtime_client
from .utils.env_helper import env_list
from .utils.logging_config import setup_logging

load_dotenv()
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned = None
    if getattr(app.state, "realtime", None) is None:
        try:
            owned = await create_realtime_client()
        except Exception:
            # REST keeps working; live sockets close with 1011
            logger.exception("realtime_client_unavailable")
        app.state.realtime = owned

    yield

    if owned is not None:
        await close_realtime_client(owned)
        app.state.realtime = None


app = FastAPI(title="Barter", lifespan=lifespan)
app.include_router(auth_router.router, prefix="/auth", tags=["Authentication"])
app.include_router(chat_router.router, prefix="/chat", tags=["Chat"])
app.include_router(product_router.router, prefix="/products", tags=["Products"])
app.include_router(favorite_router.router, prefix="/favorites", tags=["Favorites"])
app.include_router(profile_router.router, prefix="/profiles", tags=["Profiles"])


origins = env_list(
    "CORS_ORIGINS",
    [
        "http://localhost:5173",
        "http://localhost:8080",
        "http://localhost:8081",  # Expo web
    ],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(logging_middleware)


@app.get("/health")
def health():
    return {"status": "ok"}


# For testing auth purposes
@app.get("/protected")
def protected_route(user: CurrentUser = Depends(get_current_user)):
    return {"message": f"Hello {user.email or user.id}, you are authenticated!"}
