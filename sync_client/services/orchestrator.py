"""
Synchronization orchestrator.

Keeps the local view of rooms, timelines and members in step with the
bridge and publishes normalized updates on Channels.

Flow:
  start()
    → auth, room list subscription, sync indicator subscription
  room list update
    → apply diffs, publish, then for each newly listed room (fire-and-forget):
        room info subscription, power levels
  room info
    → publish; DMs also get members and timeline; invites go to auto-join
  timeline update
    → parse diffs, serialize items, apply, publish

Updates for one subscription are handled strictly in arrival order: the
transport awaits each handler before delivering the next event.

Error classes:
  data errors      one bad item → None placeholder + ProcessingError, sync continues
  resource errors  a failed RPC → ResourceError raised to the caller
  protocol errors  a diff that doesn't apply → that subscription goes to
                   "error", its handle is released, SubscriptionFailure is
                   published; resubscribe(key) recovers from a fresh snapshot
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

from pydantic import BaseModel

from sync_client.config import settings
from sync_client.models import (
    BackPaginationStatus,
    MatrixAuth,
    Room,
    RoomMember,
    RoomPowerLevels,
    SearchResults,
)
from sync_client.services import serializers
from sync_client.services.auto_join import AutoJoinPolicy
from sync_client.services.channels import (
    Channels,
    MembersUpdate,
    PowerLevelsUpdate,
    ProcessingError,
    RoomListUpdate,
    SubscriptionFailure,
    TimelineUpdate,
)
from sync_client.services.serializers import MalformedItemError
from sync_client.services.subscriptions import (
    ROOM_LIST_KEY,
    STATUS_KEY,
    SubscriptionKey,
    SubscriptionRegistry,
    SubscriptionState,
    info_key,
    members_key,
    timeline_key,
)
from sync_client.services.transport import OBSERVABLE_UPDATE, BridgeTransport, TransportError
from sync_engine.kernel.consolidation import room_events
from sync_engine.kernel.content import content_body, content_to_wire
from sync_engine.kernel.diffs import DiffProtocolError, initial_reset, map_diffs, new_values, parse_diffs
from sync_engine.kernel.events import text_content
from sync_engine.kernel.mentions import prepare_mentions_payload
from sync_engine.kernel.replies import reply_fallback_body
from sync_engine.kernel.types import Diff, Event, RoomListItem

logger = logging.getLogger(__name__)

UpdateHandler = Callable[[Any], Awaitable[None]]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ResourceError(Exception):
    """A request/response operation failed. The subscriptions are unaffected."""

    def __init__(self, operation: str, message: str, code: str | None = None) -> None:
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message
        self.code = code


class SubscriptionError(Exception):
    """A subscription could not be started."""

    def __init__(self, key: SubscriptionKey, message: str) -> None:
        super().__init__(f"{'/'.join(key)}: {message}")
        self.key = key
        self.message = message


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class SyncOrchestrator:
    def __init__(
        self,
        transport: BridgeTransport,
        channels: Channels | None = None,
        *,
        auto_join: bool | None = None,
        page_size: int | None = None,
        link_base: str | None = None,
    ):
        self.transport = transport
        self.channels = channels or Channels()
        self.subscriptions = SubscriptionRegistry()
        self.auto_join = AutoJoinPolicy(
            self.join_room,
            enabled=settings.AUTO_JOIN_INVITES if auto_join is None else auto_join,
        )
        self.page_size = page_size or settings.TIMELINE_PAGE_SIZE
        self.link_base = link_base or settings.MENTION_LINK_BASE

        self.auth: MatrixAuth | None = None
        self.rooms: dict[str, Room] = {}
        self.members: dict[str, list[RoomMember]] = {}
        self.power_levels: dict[str, RoomPowerLevels] = {}

        self._tasks: set[asyncio.Task] = set()
        self._started = False
        self._stopped = False

    # -- lifecycle --

    async def start(self) -> MatrixAuth | None:
        """Start syncing. A second call is a no-op and returns the known auth."""
        if self._started:
            return self.auth
        self._started = True
        self.transport.add_listener(OBSERVABLE_UPDATE, self.handle_observable_update)
        self.channels.status.publish("initialSync")

        try:
            await self.refresh_auth()
        except ResourceError as e:
            logger.warning("orchestrator: account session unavailable: %s", e)

        await self.observe_room_list()
        await self.observe_sync_status()
        logger.info("orchestrator: started")
        return self.auth

    async def stop(self) -> None:
        """Cancel every live subscription exactly once and publish "stopped"."""
        if self._stopped:
            return
        self._stopped = True

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for sub in self.subscriptions:
            handle = sub.release()
            self.subscriptions.unbind(handle)
            if handle is not None:
                await self._cancel_handle(handle)

        self.transport.remove_listener(OBSERVABLE_UPDATE, self.handle_observable_update)
        self.channels.status.publish("stopped")
        logger.info("orchestrator: stopped")

    async def settle(self) -> None:
        """Wait until every fire-and-forget task, including ones they spawn, has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -- inbound updates --

    async def handle_observable_update(self, event: Any) -> None:
        """Route {"id": handle, "update": ...} to the subscription that owns the handle."""
        handle = event.get("id") if isinstance(event, dict) else None
        sub = self.subscriptions.by_handle(handle)
        if sub is None or sub.on_update is None:
            logger.info("orchestrator: update for unknown handle %s", handle)
            if isinstance(handle, int):
                await self._cancel_handle(handle)
            return
        await sub.on_update(event.get("update"))

    # -- subscriptions --

    async def observe_room_list(self) -> bool:
        return await self._subscribe_list(
            ROOM_LIST_KEY,
            "matrixRoomList",
            {},
            convert=serializers.room_list_item,
            placeholder=RoomListItem(status="loading"),
            publish=self._publish_room_list,
        )

    async def observe_sync_status(self) -> bool:
        async def on_value(indicator: Any) -> None:
            status = serializers.sync_status(indicator)
            sub = self.subscriptions.ensure(STATUS_KEY)
            sub.value = status
            self.channels.status.publish(status)

        return await self._subscribe(STATUS_KEY, "matrixObserveSyncIndicator", {}, on_value, on_value)

    async def observe_timeline(self, room_id: str) -> bool:
        return await self._subscribe_list(
            timeline_key(room_id),
            "matrixRoomTimelineItems",
            {"roomId": room_id},
            convert=lambda raw: serializers.timeline_item(raw, room_id),
            placeholder=None,
            publish=lambda diffs, items: self.channels.room_timeline.publish(
                TimelineUpdate(room_id=room_id, diffs=diffs, items=tuple(items))
            ),
        )

    async def observe_room_info(self, room_id: str) -> bool:
        key = info_key(room_id)

        async def on_initial(raw: Any) -> None:
            room = self._room_info(key, raw)
            if room is not None and room.is_direct:
                # DMs are small and feed the recent-contacts view
                self._spawn(self.observe_room_members(room_id), f"observe members of {room_id}")
                self._spawn(self.observe_timeline(room_id), f"observe timeline of {room_id}")

        async def on_update(raw: Any) -> None:
            self._room_info(key, raw)

        return await self._subscribe(key, "matrixRoomObserveInfo", {"roomId": room_id}, on_initial, on_update)

    async def observe_room_members(self, room_id: str) -> bool:
        """Members are fetched, not streamed. The subscription goes active once loaded."""
        key = members_key(room_id)
        sub = self.subscriptions.ensure(key)
        if not sub.begin():
            logger.debug("orchestrator: %s already %s", key, sub.state.value)
            return False
        try:
            await self.refresh_room_members(room_id)
        except ResourceError as e:
            if sub.state is SubscriptionState.SUBSCRIBING:
                sub.fail(e.message)
            self.channels.failures.publish(SubscriptionFailure(key=key, message=str(e)))
            raise SubscriptionError(key, e.message) from e
        if sub.state is SubscriptionState.SUBSCRIBING:
            sub.activate(None)
        return True

    def observe_room(self, room_id: str) -> None:
        """Fire-and-forget: timeline, members and power levels of one room."""
        self._spawn(self.observe_timeline(room_id), f"observe timeline of {room_id}")
        self._spawn(self.observe_room_members(room_id), f"observe members of {room_id}")
        self._spawn(self.refresh_power_levels(room_id), f"power levels of {room_id}")

    async def unsubscribe(self, key: SubscriptionKey) -> None:
        """Release a subscription. Unknown or already released keys are a no-op."""
        sub = self.subscriptions.get(key)
        if sub is None or sub.state is SubscriptionState.UNSUBSCRIBED:
            logger.info("orchestrator: %s is not subscribed", key)
            return
        handle = sub.release()
        self.subscriptions.unbind(handle)
        if handle is not None:
            await self._cancel_handle(handle)

    async def resubscribe(self, key: SubscriptionKey) -> bool:
        """Drop whatever state `key` has and subscribe again from a fresh snapshot."""
        await self.unsubscribe(key)
        kind = key[0]
        if kind == "roomList":
            return await self.observe_room_list()
        elif kind == "status":
            return await self.observe_sync_status()
        elif kind == "timeline":
            return await self.observe_timeline(key[1])
        elif kind == "info":
            return await self.observe_room_info(key[1])
        elif kind == "members":
            return await self.observe_room_members(key[1])
        else:
            raise SubscriptionError(key, "unknown subscription kind")

    # -- read side --

    def room_list(self) -> list[RoomListItem]:
        sub = self.subscriptions.get(ROOM_LIST_KEY)
        return list(sub.items) if sub else []

    def timeline(self, room_id: str) -> list[Event | None]:
        """The raw timeline, placeholders included, index-aligned with the bridge."""
        sub = self.subscriptions.get(timeline_key(room_id))
        return list(sub.items) if sub else []

    def room_events(self, room_id: str) -> list[Event]:
        """The timeline as rendered: placeholders dropped, payments consolidated."""
        return room_events(self.timeline(room_id))

    # -- request/response operations --

    async def refresh_auth(self) -> MatrixAuth | None:
        raw = await self._rpc("matrixGetAccountSession", {})
        try:
            self.auth = serializers.auth(raw)
        except MalformedItemError as e:
            raise ResourceError("matrixGetAccountSession", str(e)) from e
        self.channels.auth.publish(self.auth)
        return self.auth

    async def join_room(self, room_id: str, is_public: bool = False) -> None:
        method = "matrixRoomJoinPublic" if is_public else "matrixRoomJoin"
        await self._rpc(method, {"roomId": room_id})

    async def leave_room(self, room_id: str) -> None:
        await self._rpc("matrixRoomLeave", {"roomId": room_id})
        for key in (timeline_key(room_id), info_key(room_id), members_key(room_id)):
            await self.unsubscribe(key)

    async def create_room(self, options: dict[str, Any] | None = None) -> str:
        """Create a room. Returns its id."""
        return await self._rpc("matrixRoomCreate", {"request": options or {}})

    async def send_message(self, room_id: str, content: dict[str, Any] | BaseModel) -> None:
        """
        Send any content kind. The result shows up as a local echo on the
        timeline; its status tracks the send.
        """
        wire = content_to_wire(content) if isinstance(content, BaseModel) else dict(content)
        msgtype = wire.pop("msgtype", None)
        body = wire.pop("body", "")
        if not msgtype:
            raise ResourceError("matrixSendMessageJson", "content has no msgtype")
        await self._rpc(
            "matrixSendMessageJson",
            {"roomId": room_id, "msgtype": msgtype, "body": body, "data": wire},
        )

    async def send_text(self, room_id: str, text: str, reply_to: Event | None = None) -> dict[str, Any]:
        """
        Send a text message, linking mentions of this room's members.
        Mention fields are only present when something was mentioned.
        Returns the content that was sent.
        """
        members = [member.to_member() for member in self.members.get(room_id, [])]
        mentions, extra = prepare_mentions_payload(
            text,
            members,
            exclude_user_id=self.auth.user_id if self.auth else None,
            link_base=self.link_base,
        )
        body = text
        in_reply_to = None
        if reply_to is not None and reply_to.event_id:
            in_reply_to = reply_to.event_id
            body = reply_fallback_body(reply_to.sender_id or "", content_body(reply_to.content), text)

        content = text_content(body, mentions=mentions, extra=extra, in_reply_to=in_reply_to)
        await self.send_message(room_id, content)
        return content

    async def set_display_name(self, display_name: str) -> None:
        await self._rpc("matrixSetDisplayName", {"displayName": display_name})

    async def set_avatar_url(self, avatar_url: str) -> None:
        await self._rpc("matrixSetAvatarUrl", {"avatarUrl": avatar_url})

    async def set_room_name(self, room_id: str, name: str) -> None:
        await self._rpc("matrixRoomSetName", {"roomId": room_id, "name": name})

    async def set_room_power_levels(
        self, room_id: str, changes: dict[str, Any] | RoomPowerLevels
    ) -> RoomPowerLevels:
        """Read the current levels, merge `changes` over them and write the result."""
        current = await self._get_power_levels(room_id)
        return await self._set_power_levels(room_id, current.merged(changes))

    async def set_member_power_level(self, room_id: str, user_id: str, level: int) -> RoomPowerLevels:
        current = await self._get_power_levels(room_id)
        return await self._set_power_levels(room_id, current.with_user_level(user_id, level))

    async def refresh_power_levels(self, room_id: str) -> RoomPowerLevels:
        levels = await self._get_power_levels(room_id)
        self._store_power_levels(room_id, levels)
        return levels

    async def refresh_room_members(self, room_id: str) -> list[RoomMember]:
        raw = await self._rpc("matrixRoomGetMembers", {"roomId": room_id})
        key = members_key(room_id)
        members: list[RoomMember] = []
        for item in raw or []:
            try:
                members.append(serializers.room_member(item, room_id))
            except MalformedItemError as e:
                self._data_error(key, e)
        self.members[room_id] = members
        self.subscriptions.ensure(key).value = members
        self.channels.room_members.publish(MembersUpdate(room_id=room_id, members=members))
        return members

    async def paginate_timeline(self, room_id: str, event_num: int | None = None) -> dict[str, bool]:
        """
        Load older events into the timeline subscription.

        The paginate RPC returns before the events arrive; completion is
        signalled on a pagination-status observable going back to "idle"
        (more history) or "timelineStartReached" (no more).
        """
        try:
            observable = await self.transport.observe(
                "matrixRoomObserveTimelineItemsPaginateBackwards", {"roomId": room_id}
            )
        except TransportError as e:
            raise ResourceError("paginate_timeline", e.message, code=e.code) from e

        if observable.initial == "timelineStartReached":
            await self._cancel_handle(observable.id)
            return {"end": True}

        key = ("pagination", room_id, str(observable.id))
        sub = self.subscriptions.ensure(key)
        sub.begin()
        done: asyncio.Future[bool] = asyncio.get_running_loop().create_future()

        async def on_update(status: BackPaginationStatus) -> None:
            if done.done():
                return
            if status == "idle":
                done.set_result(False)
            elif status == "timelineStartReached":
                done.set_result(True)

        sub.activate(observable.id, on_update)
        self.subscriptions.bind(key, observable.id)
        try:
            await self._rpc(
                "matrixRoomTimelineItemsPaginateBackwards",
                {"roomId": room_id, "eventNum": event_num or self.page_size},
            )
            end = await done
        finally:
            await self.unsubscribe(key)
            self.subscriptions.discard(key)
        return {"end": end}

    async def search_user_directory(self, search_term: str, limit: int | None = None) -> SearchResults:
        raw = await self._rpc(
            "matrixUserDirectorySearch",
            {"searchTerm": search_term, "limit": limit or settings.USER_SEARCH_LIMIT},
        )
        try:
            return serializers.search_results(raw)
        except MalformedItemError as e:
            raise ResourceError("matrixUserDirectorySearch", str(e)) from e

    async def send_read_receipt(self, room_id: str, event_id: str) -> None:
        await self._rpc("matrixRoomSendReceipt", {"roomId": room_id, "eventId": event_id})

    # -- internals: subscribing --

    async def _subscribe(
        self,
        key: SubscriptionKey,
        method: str,
        payload: dict[str, Any],
        on_initial: UpdateHandler,
        on_update: UpdateHandler,
    ) -> bool:
        """
        Drive `key` from unsubscribed/error to active.
        Returns False when it was already subscribing or active, or when the
        initial value was rejected as a protocol error.
        """
        if self._stopped:
            raise SubscriptionError(key, "orchestrator is stopped")

        sub = self.subscriptions.ensure(key)
        if not sub.begin():
            logger.debug("orchestrator: %s already %s", key, sub.state.value)
            return False

        try:
            observable = await self.transport.observe(method, payload)
        except TransportError as e:
            if sub.state is SubscriptionState.SUBSCRIBING:
                sub.fail(e.message)
            logger.warning("orchestrator: subscribing %s failed: %s", key, e)
            self.channels.failures.publish(SubscriptionFailure(key=key, message=str(e)))
            raise SubscriptionError(key, e.message) from e

        if sub.state is not SubscriptionState.SUBSCRIBING:
            # Unsubscribed while the request was in flight
            await self._cancel_handle(observable.id)
            return False

        sub.activate(observable.id, on_update)
        self.subscriptions.bind(key, observable.id)
        logger.debug("orchestrator: %s active with handle %s", key, observable.id)
        await on_initial(observable.initial)
        return sub.state is SubscriptionState.ACTIVE

    async def _subscribe_list(
        self,
        key: SubscriptionKey,
        method: str,
        payload: dict[str, Any],
        convert: Callable[[Any], Any],
        placeholder: Any,
        publish: Callable[[list[Diff], list[Any]], Any],
    ) -> bool:
        """List subscription: the snapshot is applied as a reset diff, updates as diffs."""

        async def on_initial(initial: Any) -> None:
            if not isinstance(initial, list):
                error = DiffProtocolError("MALFORMED_SNAPSHOT: initial snapshot must be a list", initial)
                await self._protocol_error(key, error)
                return
            await self._apply_diffs(key, initial_reset(initial), convert, placeholder, publish)

        async def on_update(update: Any) -> None:
            try:
                diffs = parse_diffs(update)
            except DiffProtocolError as e:
                await self._protocol_error(key, e)
                return
            await self._apply_diffs(key, diffs, convert, placeholder, publish)

        return await self._subscribe(key, method, payload, on_initial, on_update)

    async def _apply_diffs(
        self,
        key: SubscriptionKey,
        raw_diffs: list[Diff],
        convert: Callable[[Any], Any],
        placeholder: Any,
        publish: Callable[[list[Diff], list[Any]], Any],
    ) -> None:
        sub = self.subscriptions.get(key)
        if sub is None or sub.state is not SubscriptionState.ACTIVE:
            return

        diffs = map_diffs(raw_diffs, lambda raw: self._convert(key, convert, raw, placeholder))
        try:
            items = sub.apply(diffs)
        except DiffProtocolError as e:
            await self._protocol_error(key, e)
            return
        publish(diffs, items)

    async def _protocol_error(self, key: SubscriptionKey, error: DiffProtocolError) -> None:
        sub = self.subscriptions.ensure(key)
        logger.error("orchestrator: protocol error on %s: %s (diff=%r)", key, error, error.diff)
        handle = sub.fail(str(error))
        self.subscriptions.unbind(handle)
        self.channels.failures.publish(SubscriptionFailure(key=key, message=str(error)))
        if handle is not None:
            await self._cancel_handle(handle)

    def _convert(self, key: SubscriptionKey, convert: Callable[[Any], Any], raw: Any, placeholder: Any) -> Any:
        """One item through its serializer. Any failure is a data error: the placeholder stands in."""
        try:
            return convert(raw)
        except MalformedItemError as e:
            self._data_error(key, e)
        except Exception as e:
            self._data_error(key, MalformedItemError(f"{type(e).__name__}: {e}", raw))
        return placeholder

    def _data_error(self, key: SubscriptionKey, error: MalformedItemError) -> None:
        logger.warning("orchestrator: skipping malformed item on %s: %s, raw=%r", key, error, error.raw)
        self.channels.errors.publish(ProcessingError(key=key, message=str(error), raw=error.raw))

    async def _cancel_handle(self, handle: int) -> None:
        try:
            await self.transport.cancel(handle)
        except TransportError as e:
            logger.warning("orchestrator: failed to cancel handle %s: %s", handle, e)

    # -- internals: room list and room info --

    def _publish_room_list(self, diffs: list[Diff[RoomListItem]], items: list[RoomListItem]) -> None:
        self.channels.room_list.publish(RoomListUpdate(diffs=diffs, items=tuple(items)))
        for room_id in new_values(diffs, serializers.room_list_key):
            self._spawn(self.observe_room_info(room_id), f"observe info of {room_id}")
            self._spawn(self.refresh_power_levels(room_id), f"power levels of {room_id}")

    def _room_info(self, key: SubscriptionKey, raw: Any) -> Room | None:
        room = self._convert(key, serializers.room_info, raw, None)
        if room is None:
            return None
        self.rooms[room.id] = room
        self.subscriptions.ensure(key).value = room
        self.channels.room_info.publish(room)
        if self.auto_join.should_join(room):
            self._spawn(self.auto_join.handle_room(room), f"auto-join {room.id}")
        return room

    # -- internals: power levels --

    async def _get_power_levels(self, room_id: str) -> RoomPowerLevels:
        raw = await self._rpc("matrixRoomGetPowerLevels", {"roomId": room_id})
        try:
            return serializers.power_levels(raw)
        except MalformedItemError as e:
            raise ResourceError("matrixRoomGetPowerLevels", str(e)) from e

    async def _set_power_levels(self, room_id: str, levels: RoomPowerLevels) -> RoomPowerLevels:
        await self._rpc("matrixRoomSetPowerLevels", {"roomId": room_id, "new": levels.to_wire()})
        self._store_power_levels(room_id, levels)
        return levels

    def _store_power_levels(self, room_id: str, levels: RoomPowerLevels) -> None:
        self.power_levels[room_id] = levels
        self.channels.room_power_levels.publish(PowerLevelsUpdate(room_id=room_id, power_levels=levels))

    # -- internals: rpc and tasks --

    async def _rpc(self, method: str, payload: dict[str, Any]) -> Any:
        try:
            return await self.transport.rpc(method, payload)
        except TransportError as e:
            logger.warning("orchestrator: %s failed: %s", method, e)
            raise ResourceError(method, e.message, code=e.code) from e

    def _spawn(self, coro: Coroutine[Any, Any, Any], description: str) -> None:
        if self._stopped:
            coro.close()
            return
        task = asyncio.create_task(self._guard(coro, description))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _guard(self, coro: Coroutine[Any, Any, Any], description: str) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning("orchestrator: %s failed: %s", description, e)
