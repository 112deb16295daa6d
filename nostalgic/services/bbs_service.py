"""
BBS service: a bounded, paginated message board.

Design notes
------------
- Messages are pushed to the head of ``bbs:{id}:messages`` (newest
  first).  Once the log grows past ``max_messages`` it is trimmed in one
  ``LTRIM``, which drops the oldest messages from the tail.
- Every message stores the author hash of whoever posted it.  Editing or
  removing a message needs either that hash or the owner token.
- Edits use a single-key check-and-set on the list slot; if the slot
  changed in between, the message is located again and the edit retried.
- Page *n* is the slice ``[(n - 1) * per_page, n * per_page - 1]``.
"""
import logging
import math
import secrets

import redis.asyncio as redis

from nostalgic.config import Settings
from nostalgic.keys import BBSKeys
from nostalgic.repositories import ListRepository
from nostalgic.result import (
    Err,
    NotFoundError,
    Ok,
    Result,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from nostalgic.schemas import (
    BBSCreateParams,
    BBSData,
    BBSEntity,
    BBSMessage,
    BBSPostParams,
    BBSSettings,
    BBSSettingsUpdate,
    BBSUpdateParams,
)
from nostalgic.services.base import BaseService, Clock, utcnow
from nostalgic.validation import parse_input, validate_output

logger = logging.getLogger(__name__)

_EDIT_ATTEMPTS = 3


class BBSService(BaseService[BBSEntity, BBSData, BBSCreateParams]):
    service_name = "bbs"
    entity_model = BBSEntity
    data_model = BBSData
    params_model = BBSCreateParams
    activity_field = "last_message"

    keys: BBSKeys

    def __init__(self, client: redis.Redis, settings: Settings, clock: Clock = utcnow) -> None:
        super().__init__(client, settings, BBSKeys(), clock)
        self.messages: ListRepository[BBSMessage] = ListRepository(client, BBSMessage)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def build_entity(self, public_id: str, url: str, params: BBSCreateParams) -> Result:
        board = parse_input(BBSSettings, {
            "title": params.title if params.title is not None else self.settings.BBS_DEFAULT_TITLE,
            "max_messages": params.max_messages or self.settings.BBS_MAX_MESSAGES,
            "messages_per_page": params.messages_per_page or self.settings.BBS_MESSAGES_PER_PAGE,
            "icons": params.icons or [],
            "selects": [s.model_dump() for s in params.selects or []],
        })
        if board.success:
            board = self._check_settings(board.data)
        if not board.success:
            return board
        return Ok(BBSEntity(id=public_id, url=url, created=self.clock(), settings=board.data))

    async def to_data(self, entity: BBSEntity, page: int = 1) -> Result:
        board = entity.settings
        key = self.keys.messages(entity.id)
        length = await self.messages.length(key)
        if not length.success:
            return length
        total = min(length.data, board.max_messages)
        total_pages = math.ceil(total / board.messages_per_page) if total > 0 else 0
        page = max(page, 1)
        start = (page - 1) * board.messages_per_page
        messages = await self.messages.range(key, start, start + board.messages_per_page - 1)
        if not messages.success:
            return messages
        # Items past max_messages are pending a trim.
        visible = messages.data[:max(total - start, 0)]
        return validate_output(BBSData, {
            "id": entity.id,
            "url": entity.url,
            "title": board.title,
            "messages": visible,
            "total_messages": total,
            "current_page": page,
            "total_pages": total_pages,
            "pagination": {
                "page": page,
                "total_pages": total_pages,
                "has_prev": page > 1,
                "has_next": page < total_pages,
            },
            "settings": board,
            "last_message": entity.last_message,
        })

    async def cleanup(self, entity: BBSEntity) -> Result:
        return await self.messages.clear(self.keys.messages(entity.id))

    # ------------------------------------------------------------------
    # Validation against configured limits
    # ------------------------------------------------------------------

    def _check_settings(self, board: BBSSettings) -> Result:
        cfg = self.settings
        if board.max_messages > cfg.BBS_MAX_MESSAGES:
            return Err(ValidationError(f"max_messages must not exceed {cfg.BBS_MAX_MESSAGES}"))
        if len(board.icons) > cfg.BBS_MAX_ICONS:
            return Err(ValidationError(f"At most {cfg.BBS_MAX_ICONS} icons are allowed"))
        if len(board.selects) > cfg.BBS_MAX_SELECTS:
            return Err(ValidationError(f"At most {cfg.BBS_MAX_SELECTS} selects are allowed"))
        for select in board.selects:
            if len(select.label) > cfg.BBS_MAX_SELECT_LABEL_LENGTH:
                return Err(ValidationError(f"Select label too long: {select.label!r}"))
            if len(select.options) > cfg.BBS_MAX_SELECT_OPTIONS:
                return Err(ValidationError(
                    f"Select {select.label!r} has more than {cfg.BBS_MAX_SELECT_OPTIONS} options"
                ))
        return Ok(board)

    def _check_message(
        self,
        board: BBSSettings,
        author: str,
        message: str,
        icon: str | None,
        selects: list[str] | None,
    ) -> Result:
        if len(author) > self.settings.BBS_MAX_AUTHOR_LENGTH:
            return Err(ValidationError(
                f"author exceeds maximum length of {self.settings.BBS_MAX_AUTHOR_LENGTH}"
            ))
        if len(message) > self.settings.BBS_MAX_MESSAGE_LENGTH:
            return Err(ValidationError(
                f"message exceeds maximum length of {self.settings.BBS_MAX_MESSAGE_LENGTH}"
            ))
        if icon and icon not in board.icons:
            return Err(ValidationError(f"Unknown icon: {icon!r}"))
        if selects:
            if len(selects) > len(board.selects):
                return Err(ValidationError("Too many select values"))
            for value, select in zip(selects, board.selects):
                if value and value not in select.options:
                    return Err(ValidationError(f"Invalid value {value!r} for {select.label!r}"))
        return Ok(None)

    def _new_message_id(self, public_id: str) -> str:
        millis = int(self.clock().timestamp() * 1000)
        return f"{public_id}_{millis:x}_{secrets.token_hex(3)}"

    async def _touch(self, entity: BBSEntity, **changes) -> Result:
        return await self._refresh(entity.model_copy(update=changes), fallback=entity)

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    async def post_message(
        self,
        url: str,
        token: str,
        params: BBSPostParams | dict,
        viewer_hash: str | None = None,
    ) -> Result:
        """
        Prepend a message and trim the log to ``max_messages``.

        A failed trim is logged and the stored post still returned; the
        next post trims again.

        With *viewer_hash*, a repost inside ``BBS_POST_COOLDOWN`` returns
        the first page unchanged.
        """
        return await self._timed("post", self._post_message(url, token, params, viewer_hash))

    async def _post_message(self, url, token, params, viewer_hash) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        if isinstance(params, BBSPostParams):
            params = params.model_dump()
        parsed = parse_input(BBSPostParams, params)
        if not parsed.success:
            return parsed
        post = parsed.data
        board = entity.data.settings
        checked = self._check_message(board, post.author, post.message, post.icon, post.selects)
        if not checked.success:
            return checked

        claim = None
        if viewer_hash:
            claim = await self.claims.acquire(
                self.keys.cooldown(entity.data.id, viewer_hash), self.settings.BBS_POST_COOLDOWN
            )
            if not claim.success:
                return claim
            if not claim.data.acquired:
                logger.debug("bbs.post: cooldown active for %s", entity.data.id)
                return await self.to_data(entity.data)

        now = self.clock()
        message = BBSMessage(
            id=self._new_message_id(entity.data.id),
            author=post.author,
            message=post.message,
            timestamp=now,
            icon=post.icon,
            selects=post.selects,
            author_hash=post.author_hash,
        )
        key = self.keys.messages(entity.data.id)
        length = await self.messages.push(key, message)
        if not length.success:
            if claim is not None:
                await self.claims.release(claim.data)
            return length
        if length.data > board.max_messages:
            trimmed = await self.messages.trim(key, 0, board.max_messages - 1)
            if not trimmed.success:
                # The message is stored; the next post trims again.
                logger.warning("bbs.post: trim of %s failed: %s", key, trimmed.error)

        updated = await self._touch(
            entity.data,
            total_messages=min(length.data, board.max_messages),
            last_message=now,
        )
        if not updated.success:
            return updated
        return await self.to_data(updated.data)

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------

    async def _authorize(
        self,
        url: str,
        message: BBSMessage,
        author_hash: str | None,
        token: str | None,
    ) -> Result:
        if author_hash is not None and secrets.compare_digest(message.author_hash, author_hash):
            return Ok(None)
        if token is not None:
            ownership = await self.verify_ownership(url, token)
            if not ownership.success:
                return ownership
            if ownership.data.is_owner:
                return Ok(None)
        return Err(UnauthorizedError("Not the author of this message"))

    async def update_message(
        self,
        url: str,
        params: BBSUpdateParams | dict,
        author_hash: str | None = None,
        token: str | None = None,
    ) -> Result:
        """Edit a message as its author (*author_hash*) or as the owner (*token*)."""
        return await self._timed("update", self._update_message(url, params, author_hash, token))

    async def _update_message(self, url, params, author_hash, token) -> Result:
        if author_hash is None and token is None:
            return Err(ValidationError("author_hash or token is required"))
        if isinstance(params, BBSUpdateParams):
            params = params.model_dump()
        parsed = parse_input(BBSUpdateParams, params)
        if not parsed.success:
            return parsed
        edit = parsed.data
        entity = await self.get_by_url(url)
        if not entity.success:
            return entity
        checked = self._check_message(
            entity.data.settings, edit.author, edit.message, edit.icon, edit.selects
        )
        if not checked.success:
            return checked

        key = self.keys.messages(entity.data.id)
        for attempt in range(_EDIT_ATTEMPTS):
            found = await self.messages.locate(key, lambda m: m.id == edit.message_id)
            if not found.success:
                return found
            if found.data is None:
                return Err(NotFoundError("Message", edit.message_id))
            if attempt == 0:
                allowed = await self._authorize(url, found.data.item, author_hash, token)
                if not allowed.success:
                    return allowed
            edited = found.data.item.model_copy(update={
                "author": edit.author,
                "message": edit.message,
                "icon": edit.icon,
                "selects": edit.selects,
                "updated": self.clock(),
            })
            replaced = await self.messages.replace(key, found.data.index, found.data.raw, edited)
            if not replaced.success:
                return replaced
            if replaced.data:
                return await self.to_data(entity.data)
            logger.debug("bbs.update: message %s moved, retrying", edit.message_id)
        return Err(StorageError("update message", "message kept changing concurrently"))

    async def remove_message(
        self,
        url: str,
        message_id: str,
        author_hash: str | None = None,
        token: str | None = None,
    ) -> Result:
        return await self._timed("remove", self._remove_message(url, message_id, author_hash, token))

    async def _remove_message(self, url, message_id, author_hash, token) -> Result:
        if author_hash is None and token is None:
            return Err(ValidationError("author_hash or token is required"))
        entity = await self.get_by_url(url)
        if not entity.success:
            return entity
        key = self.keys.messages(entity.data.id)
        for attempt in range(_EDIT_ATTEMPTS):
            found = await self.messages.locate(key, lambda m: m.id == message_id)
            if not found.success:
                return found
            if found.data is None:
                return Err(NotFoundError("Message", message_id))
            if attempt == 0:
                allowed = await self._authorize(url, found.data.item, author_hash, token)
                if not allowed.success:
                    return allowed
            removed = await self.messages.remove(key, found.data.raw)
            if not removed.success:
                return removed
            if removed.data:
                length = await self.messages.length(key)
                if not length.success:
                    return length
                updated = await self._touch(entity.data, total_messages=length.data)
                if not updated.success:
                    return updated
                return await self.to_data(updated.data)
        return Err(StorageError("remove message", "message kept changing concurrently"))

    # ------------------------------------------------------------------
    # Owner operations
    # ------------------------------------------------------------------

    async def clear_bbs(self, url: str, token: str) -> Result:
        return await self._timed("clear", self._clear_bbs(url, token))

    async def _clear_bbs(self, url, token) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        cleared = await self.messages.clear(self.keys.messages(entity.data.id))
        if not cleared.success:
            return cleared
        updated = await self._touch(entity.data, total_messages=0)
        if not updated.success:
            return updated
        return await self.to_data(updated.data)

    async def update_settings(
        self, url: str, token: str, changes: BBSSettingsUpdate | dict
    ) -> Result:
        """Change board settings; lowering ``max_messages`` trims the log at once."""
        return await self._timed("settings", self._update_settings(url, token, changes))

    async def _update_settings(self, url, token, changes) -> Result:
        entity = await self.require_owner(url, token)
        if not entity.success:
            return entity
        if isinstance(changes, BBSSettingsUpdate):
            changes = changes.model_dump(exclude_unset=True)
        parsed = parse_input(BBSSettingsUpdate, changes)
        if not parsed.success:
            return parsed
        merged = entity.data.settings.model_copy(
            update={k: v for k, v in parsed.data.model_dump(exclude_unset=True).items() if v is not None}
        )
        board = parse_input(BBSSettings, merged.model_dump())
        if not board.success:
            return board
        board = self._check_settings(board.data)
        if not board.success:
            return board

        key = self.keys.messages(entity.data.id)
        length = await self.messages.length(key)
        if not length.success:
            return length
        if length.data > board.data.max_messages:
            trimmed = await self.messages.trim(key, 0, board.data.max_messages - 1)
            if not trimmed.success:
                return trimmed
        updated = await self._refresh(entity.data.model_copy(update={
            "settings": board.data,
            "total_messages": min(length.data, board.data.max_messages),
        }))
        if not updated.success:
            return updated
        return await self.to_data(updated.data)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_bbs_data(self, public_id: str, page: int = 1) -> Result:
        entity = await self.get_by_id(public_id)
        if not entity.success:
            return entity
        return await self.to_data(entity.data, page)
