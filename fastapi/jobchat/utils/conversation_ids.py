import re
from typing import Iterable, List, Optional, Tuple

from jobchat.errors import InvalidParticipants


SEPARATOR = "|"
DIRECT_MARKER = "direct"
JOB_PREFIX = "job:"

# '|' and ':' are outside this alphabet, so joined ids can never collide.
_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_id(value: str, kind: str = "participant id") -> str:
    if not isinstance(value, str) or not _ID_PATTERN.match(value):
        raise InvalidParticipants(f"Invalid {kind}: {value!r}")
    return value


def normalize_participants(participants: Iterable[str]) -> List[str]:
    unique = sorted({validate_id(p) for p in participants})
    if len(unique) != 2:
        raise InvalidParticipants(
            f"A conversation needs exactly 2 distinct participants, got {len(unique)}"
        )
    return unique


def canonical_conversation_id(participants: Iterable[str], context_id: Optional[str] = None) -> str:
    """Derive the conversation id shared by every replica of a conversation.

    The id depends only on the unordered participant set and the optional job
    id: ``job:<job_id>|<a>|<b>`` or ``direct|<a>|<b>`` with ``a < b``.
    """
    members = normalize_participants(participants)
    if context_id is None:
        prefix = DIRECT_MARKER
    else:
        prefix = JOB_PREFIX + validate_id(context_id, kind="job id")
    return SEPARATOR.join([prefix, *members])


def parse_conversation_id(conversation_id: str) -> Tuple[List[str], Optional[str]]:
    if not isinstance(conversation_id, str):
        raise InvalidParticipants(f"Not a conversation id: {conversation_id!r}")
    parts = conversation_id.split(SEPARATOR)
    if len(parts) != 3:
        raise InvalidParticipants(f"Not a conversation id: {conversation_id!r}")
    prefix, members = parts[0], parts[1:]
    if prefix == DIRECT_MARKER:
        context_id = None
    elif prefix.startswith(JOB_PREFIX):
        context_id = prefix[len(JOB_PREFIX):]
    else:
        raise InvalidParticipants(f"Not a conversation id: {conversation_id!r}")
    # Round-trip so that unsorted or otherwise non-canonical spellings are rejected.
    if canonical_conversation_id(members, context_id) != conversation_id:
        raise InvalidParticipants(f"Not a canonical conversation id: {conversation_id!r}")
    return members, context_id


def is_conversation_id(value: str) -> bool:
    try:
        parse_conversation_id(value)
    except InvalidParticipants:
        return False
    return True
