from fastapi import APIRouter

from app.api.calls import router as calls_router
from app.api.friends import router as friends_router
from app.api.messages import router as messages_router

router = APIRouter()

router.include_router(messages_router)
router.include_router(calls_router)
router.include_router(friends_router)


@router.get("/", tags=["root"])
def read_root() -> dict[str, str]:
    return {"message": "Welcome to the GenChat API"}
