from __future__ import annotations

import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from smartmess.core.logger import get_logger
from smartmess.models import ChatRoom, ChatRoomMember, MessProfile

logger = get_logger(__name__)


def ensure_default_room(db: Session, mess: MessProfile) -> ChatRoom:
    """Return the mess group room, creating it with the owner as admin. Flushes only."""
    room = (
        db.query(ChatRoom)
        .filter(ChatRoom.mess_id == mess.id, ChatRoom.is_default.is_(True))
        .first()
    )
    if room is None:
        room = ChatRoom(mess_id=mess.id, name=f"{mess.name} Community", is_default=True)
        db.add(room)
        db.flush()
        db.add(ChatRoomMember(room_id=room.id, user_id=mess.owner_id, role="admin"))
        db.flush()
    return room


def auto_join_mess_rooms(db: Session, user_id: uuid.UUID, mess_id: uuid.UUID) -> int:
    """Add the user to every room of the mess they are not in yet. Returns rooms joined."""
    rooms = db.query(ChatRoom).filter(ChatRoom.mess_id == mess_id).all()
    if not rooms:
        mess = db.get(MessProfile, mess_id)
        if mess is None:
            return 0
        rooms = [ensure_default_room(db, mess)]

    member_of = {
        row.room_id
        for row in db.query(ChatRoomMember.room_id).filter(
            ChatRoomMember.user_id == user_id,
            ChatRoomMember.room_id.in_([room.id for room in rooms]),
        )
    }
    joined = 0
    for room in rooms:
        if room.id in member_of:
            continue
        db.add(ChatRoomMember(room_id=room.id, user_id=user_id, role="member"))
        joined += 1
    db.flush()
    return joined


def join_after_approval(db: Session, user_id: uuid.UUID, mess_id: uuid.UUID) -> int:
    """Best-effort chat auto-join run after an approval has committed."""
    try:
        joined = auto_join_mess_rooms(db, user_id, mess_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Chat auto-join failed for user %s in mess %s", user_id, mess_id)
        return 0
    if joined:
        logger.info("User %s joined %s chat room(s) of mess %s", user_id, joined, mess_id)
    return joined
