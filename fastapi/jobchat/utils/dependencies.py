from fastapi import Header, HTTPException, status

from jobchat.errors import InvalidParticipants
from jobchat.utils.conversation_ids import validate_id


async def get_current_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    """Caller identity, verified upstream by the auth gateway and forwarded as a header."""
    try:
        return validate_id(x_user_id)
    except InvalidParticipants:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid caller identity")
