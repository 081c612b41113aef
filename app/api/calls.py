"""HTTP endpoints for call history."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_user
from app.database import get_db
from app.models import User
from app.services.call_logs import list_call_logs

router = APIRouter(prefix="/calls", tags=["calls"])


@router.get("/logs")
async def call_history(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[dict]:
    """Call logs of the current user, newest first, each with ``receiverId``."""

    return [call_log.for_viewer(current_user.id) for call_log in list_call_logs(db, current_user.id)]
