import logging
import os

from tinylink import codes
from tinylink.errors import AuthenticationRequired, Conflict, InvalidInput, NotFound, ResourceExhausted, Unauthorized
from tinylink.records import ANONYMOUS_OWNER, Link, Stats, User
from tinylink.store import LinkStore

logger = logging.getLogger("tinylink.crud")

MAX_CODE_RETRIES = int(os.getenv("MAX_CODE_RETRIES", 10))


def _owner_id(owner: User | None) -> int | None:
    return owner.id if owner is not None else ANONYMOUS_OWNER


def allocate(
    store: LinkStore,
    owner: User | None,
    destination: str,
    requested_code: str | None = None,
    active: bool = True,
    *,
    generator=None,
    max_retries: int | None = None,
    min_length: int | None = None,
) -> Link:
    """Create a link, either under the requested code or a fresh random one.

    All validation happens before the store is touched. A requested code that
    is taken raises Conflict; a random code that is taken (found by the
    pre-check or by the store's uniqueness constraint) is replaced by a new
    candidate, up to ``max_retries`` attempts.
    """
    destination = codes.normalize_destination(destination)
    owner_id = _owner_id(owner)

    if requested_code is not None and requested_code.strip():
        if owner is None:
            raise AuthenticationRequired("Custom short codes require authentication")
        code = codes.validate_custom_code(requested_code, min_length=min_length)
        if store.code_exists(code):
            raise Conflict(f"Short code '{code}' already in use")
        link = store.insert_link(destination, code, owner_id, is_active=active)
        logger.info("Allocated custom code=%s target=%s owner=%s", code, destination, owner_id)
        return link

    generator = generator or codes.generate_code
    attempts = MAX_CODE_RETRIES if max_retries is None else max_retries
    for attempt in range(1, attempts + 1):
        code = generator()
        # Reserved route names can never redirect, treat them as taken
        if codes.is_reserved(code) or store.code_exists(code):
            logger.debug("Collision on candidate %s (attempt %d)", code, attempt)
            continue
        try:
            link = store.insert_link(destination, code, owner_id, is_active=active)
        except Conflict:
            logger.debug("Lost insert race for candidate %s (attempt %d)", code, attempt)
            continue
        logger.info("Allocated code=%s target=%s owner=%s", code, destination, owner_id)
        return link

    logger.error("No free short code after %d attempts", attempts)
    raise ResourceExhausted(f"Could not allocate a free short code after {attempts} attempts")


def get_owned_link(store: LinkStore, owner: User, link_id: int) -> Link:
    link = store.get_link(link_id)
    if link is None:
        raise NotFound("Link not found")
    if owner is None or link.is_anonymous or link.owner_id != owner.id:
        raise Unauthorized("Not authorized to access this link")
    return link


def update_link(
    store: LinkStore,
    owner: User,
    link_id: int,
    destination: str | None = None,
    code: str | None = None,
    active: bool | None = None,
    *,
    min_length: int | None = None,
) -> Link:
    link = get_owned_link(store, owner, link_id)

    changes = {}
    if destination is not None:
        changes["destination"] = codes.normalize_destination(destination)
    if code is not None and code.strip() != link.code:
        new_code = codes.validate_custom_code(code, min_length=min_length)
        if store.code_exists(new_code, exclude_id=link.id):
            raise Conflict(f"Short code '{new_code}' already in use")
        changes["code"] = new_code
    if active is not None:
        changes["is_active"] = bool(active)

    if not changes:
        return link
    updated = store.update_link(link.id, **changes)
    logger.info("Updated link id=%s %s by=%s", link.id, sorted(changes), owner.id)
    return updated


def delete_link(store: LinkStore, owner: User, link_id: int) -> None:
    link = get_owned_link(store, owner, link_id)
    if not store.delete_link(link.id):
        raise NotFound("Link not found")
    logger.info("Deleted link id=%s code=%s by=%s", link.id, link.code, owner.id)


def list_links(store: LinkStore, owner: User, skip: int = 0, limit: int = 100) -> tuple[list[Link], int]:
    return store.list_links(owner.id, skip=skip, limit=limit), store.count_links(owner.id)


def resolve(store: LinkStore, code: str) -> str:
    """Return the destination for an active code and count the click.

    Missing and inactive codes raise the same NotFound. A failed increment is
    logged and the destination is still returned.
    """
    link = store.get_link_by_code(code)
    if link is None or not link.is_active:
        logger.info("Resolve miss for code=%s", code)
        raise NotFound()
    try:
        store.increment_clicks(link.id)
    except Exception:
        logger.exception("Failed to increment click for %s", code)
    return link.destination


def stats(store: LinkStore, owner: User) -> Stats:
    total_links, total_clicks = store.click_totals(owner.id)
    average = total_clicks / total_links if total_links else 0
    return Stats(total_links=total_links, total_clicks=total_clicks, average_clicks=average)


def register_user(store: LinkStore, external_id: str, display_name: str, email: str) -> tuple[User, bool]:
    """Register the identity, or repair the existing row on recovery.

    Returns ``(user, created)``.
    """
    external_id = (external_id or "").strip()
    display_name = (display_name or "").strip()
    email = (email or "").strip()
    if not external_id:
        raise InvalidInput("Missing identity reference")
    if not display_name or "@" not in email:
        raise InvalidInput("A display name and a valid email are required")

    existing = store.get_user_by_external_id(external_id)
    if existing is None:
        try:
            user = store.insert_user(external_id, display_name, email)
        except Conflict:
            # Concurrent registration of the same identity
            existing = store.get_user_by_external_id(external_id)
            if existing is None:
                raise
        else:
            logger.info("Registered user id=%s", user.id)
            return user, True

    repairs = {}
    if existing.display_name != display_name:
        repairs["display_name"] = display_name
    if existing.email != email:
        repairs["email"] = email
    if repairs:
        existing = store.update_user(existing.id, **repairs)
        logger.info("Repaired user id=%s fields=%s", existing.id, sorted(repairs))
    return existing, False
