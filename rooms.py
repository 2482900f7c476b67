"""Room identifiers. Structural only: nothing here touches storage."""

PUBLIC_ROOM = "public"

# Not a legal username character, so a derived id names exactly one pair.
ROOM_SEPARATOR = "~"


def canonical_room_id(user_a: str, user_b: str) -> str:
    return ROOM_SEPARATOR.join(sorted([user_a, user_b]))


def is_public_room(room_id: str) -> bool:
    return room_id == PUBLIC_ROOM