from constants import CACHE_KEY_PREFIX

KEY_DELIMITER = ":"
ESCAPE_CHAR = "\\"

PRESENCE = "presence"  # hash: connection id -> json metadata
ENGAGEMENT_DEDUP = "engagement-dedup"  # set of visitor ids, per (action, resource kind, resource id)
ENGAGEMENT_COUNT = "engagement-count"  # integer, per (action, resource kind, resource id)

KEY_KINDS = frozenset({PRESENCE, ENGAGEMENT_DEDUP, ENGAGEMENT_COUNT})


class InvalidKeyPart(ValueError):
    pass


def escape_part(part: str) -> str:
    """Escape the delimiter so a part can never be split on it."""
    if not isinstance(part, str):
        raise InvalidKeyPart(f"Key part must be a string, got {type(part).__name__}")
    if not part:
        raise InvalidKeyPart("Key part must not be empty")
    return part.replace(ESCAPE_CHAR, ESCAPE_CHAR * 2).replace(KEY_DELIMITER, ESCAPE_CHAR + KEY_DELIMITER)


def render_key(kind: str, *parts: str, prefix: str = CACHE_KEY_PREFIX) -> str:
    """Render ``<prefix>:<kind>[:<part>...]``.

    Every part is escaped, so two different (prefix, kind, parts) tuples
    never produce the same string.
    """
    if kind not in KEY_KINDS:
        raise InvalidKeyPart(f"Unknown key kind: {kind!r}")
    if not prefix or KEY_DELIMITER in prefix or ESCAPE_CHAR in prefix:
        raise InvalidKeyPart(f"Invalid key prefix: {prefix!r}")
    return KEY_DELIMITER.join([prefix, kind, *(escape_part(p) for p in parts)])


# **Key layout** (prefix defaults to `ephemeral`)
# - `ephemeral:presence` - hash, one field per live connection id, value = json metadata.
#   Deleted once at process start.
# - `ephemeral:engagement-dedup:{action}:{resource_kind}:{resource_id}` - set of visitor ids.
#   TTL = dedup window, started by the first accepted visitor.
# - `ephemeral:engagement-count:{action}:{resource_kind}:{resource_id}` - integer counter, no TTL.
