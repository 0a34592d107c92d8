"""Notification dispatcher.

Turns a stage change into per-role delivery groups and runs them
concurrently. Each group is independent: a policy refusal, an empty token
list or a transport failure affects only that group. Failures are logged,
counted and reported, never raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from fulfillment_stepper.core.domain.errors import NotificationFailure
from fulfillment_stepper.core.domain.stages import STEP_CANCELLED, STEP_REJECTED, STEP_RETURNED
from fulfillment_stepper.core.domain.types import Order
from fulfillment_stepper.core.events.event_bus import EventBus
from fulfillment_stepper.core.events.events import NotificationWaveEvent, now_ns
from fulfillment_stepper.core.ports.notifications import MessageSender, NotificationPolicy, TokenDirectory
from fulfillment_stepper.notifications.policy import canonical_role
from fulfillment_stepper.notifications.prometheus_metrics import PrometheusMetricsClient
from fulfillment_stepper.notifications.templates import MessageTemplates, RenderedMessage

LOGGER = logging.getLogger(__name__)

PURCHASE_EVENT = "purchase"

SUB_STAGES = frozenset({STEP_CANCELLED, STEP_REJECTED, STEP_RETURNED})


# ---------------------------------------------------------------------------
# Payload and report models
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class StepNotification:
    """Recipients and wording inputs for one notification wave.

    seller_keys / courier_keys are the parties of the touched items only,
    never the whole order.
    """

    stage_id: str
    stage_name: str
    order_key: str = ""
    order_id: str = ""
    buyer_key: str | None = None
    seller_keys: tuple[str, ...] = ()
    courier_keys: tuple[str, ...] = ()
    acting_user_id: str | None = None
    user_name: str | None = None


@dataclass(slots=True)
class GroupResult:
    role: str
    recipients: tuple[str, ...]
    delivered: bool
    skipped_reason: str | None = None
    error: str | None = None


@dataclass(slots=True)
class NotificationReport:
    stage_id: str
    wave: str
    results: list[GroupResult] = field(default_factory=list)

    @property
    def delivered(self) -> int:
        return sum(1 for r in self.results if r.delivered)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.error is not None)

    @property
    def failed_roles(self) -> list[str]:
        return [r.role for r in self.results if r.error is not None]

    def roles_notified(self) -> list[str]:
        return [r.role for r in self.results if r.delivered]

    def result_for(self, role: str) -> GroupResult | None:
        for result in self.results:
            if result.role == role:
                return result
        return None


@dataclass(slots=True)
class _Group:
    role: str
    recipients: tuple[str, ...]
    resolve_tokens: Callable[[], Awaitable[list[str]]]
    message: RenderedMessage


def _order_id_text(order_id: str, prefix: str) -> str:
    return f"{prefix}#{order_id}" if order_id else ""


def _without(keys: Sequence[str], excluded: str | None) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for key in keys:
        if key and key != excluded:
            seen.setdefault(key, None)
    return tuple(seen)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class NotificationDispatcher:
    """Computes recipient groups and delivers them concurrently."""

    def __init__(
        self,
        *,
        policy: NotificationPolicy,
        tokens: TokenDirectory,
        sender: MessageSender,
        templates: MessageTemplates | None = None,
        metrics: PrometheusMetricsClient | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._policy = policy
        self._tokens = tokens
        self._sender = sender
        self._templates = templates if templates is not None else MessageTemplates()
        self._metrics = metrics
        self._event_bus = event_bus

    @property
    def templates(self) -> MessageTemplates:
        return self._templates

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    async def should_notify(self, event_key: str, role: str) -> bool:
        """Consult the policy; if the lookup itself fails, notify."""
        try:
            return bool(await self._policy.should_notify(event_key, role))
        except Exception:  # pylint: disable=broad-exception-caught
            LOGGER.warning(
                "Notification policy lookup failed; defaulting to notify",
                extra={"event_key": event_key, "role": role},
                exc_info=True,
            )
            return True

    # ------------------------------------------------------------------
    # Public collaborator contracts
    # ------------------------------------------------------------------

    async def notify_on_step_activation(self, payload: StepNotification) -> NotificationReport:
        """Main wave: buyer, admins, relevant sellers and couriers."""
        groups = await self._step_groups(payload, payload.stage_id)
        return await self._run_wave(payload, "main", groups)

    async def notify_on_sub_step_activation(self, payload: StepNotification) -> NotificationReport:
        """Second wave for cancelled / rejected / returned items.

        Recipients are the stakeholders of the affected items only.
        """
        if payload.stage_id not in SUB_STAGES:
            raise ValueError(f"not a sub-step stage: {payload.stage_id}")
        groups = await self._step_groups(payload, payload.stage_id)
        return await self._run_wave(payload, "sub", groups)

    async def notify_buyer_on_step_change(
        self,
        buyer_key: str,
        stage_id: str,
        stage_name: str,
        order_id: str = "",
    ) -> NotificationReport:
        payload = StepNotification(
            stage_id=stage_id,
            stage_name=stage_name,
            order_id=order_id,
            buyer_key=buyer_key,
        )
        groups: list[_Group] = []
        if buyer_key:
            groups.append(self._buyer_group(payload))
        return await self._run_wave(payload, "buyer", groups)

    async def handle_purchase_notifications(self, order: Order) -> NotificationReport:
        """Announce a new order to admins, its sellers, its buyer and its couriers."""
        order_id = order.display_id
        placeholders = {"order_id": order_id or "N/A"}
        payload = StepNotification(
            stage_id=PURCHASE_EVENT,
            stage_name=PURCHASE_EVENT,
            order_key=order.order_key,
            order_id=order_id,
            buyer_key=order.user_key,
        )

        sellers = _without([item.seller_key for item in order.order_items], None)
        couriers = _without([k for item in order.order_items for k in item.courier_keys()], None)

        groups: list[_Group] = []
        if await self.should_notify(PURCHASE_EVENT, "admin"):
            groups.append(
                _Group(
                    role="admin",
                    recipients=(),
                    resolve_tokens=self._tokens.admin_tokens,
                    message=self._templates.render("purchase.admin", placeholders),
                )
            )
        if sellers and await self.should_notify(PURCHASE_EVENT, "seller"):
            # One group per seller so a failing seller does not hide the others.
            for seller in sellers:
                groups.append(
                    _Group(
                        role=f"seller:{seller}",
                        recipients=(seller,),
                        resolve_tokens=self._user_tokens((seller,)),
                        message=self._templates.render("purchase.seller", placeholders),
                    )
                )
        if order.user_key and await self.should_notify(PURCHASE_EVENT, "buyer"):
            groups.append(
                _Group(
                    role="buyer",
                    recipients=(order.user_key,),
                    resolve_tokens=self._user_tokens((order.user_key,)),
                    message=self._templates.render("purchase.buyer", placeholders),
                )
            )
        if couriers and await self.should_notify(PURCHASE_EVENT, "courier"):
            groups.append(
                _Group(
                    role="courier",
                    recipients=couriers,
                    resolve_tokens=self._user_tokens(couriers),
                    message=self._templates.render("purchase.courier", placeholders),
                )
            )

        return await self._run_wave(payload, "purchase", groups)

    # ------------------------------------------------------------------
    # Group construction
    # ------------------------------------------------------------------

    def _user_tokens(self, user_ids: tuple[str, ...]) -> Callable[[], Awaitable[list[str]]]:
        async def resolve() -> list[str]:
            return await self._tokens.user_tokens(list(user_ids))

        return resolve

    def _buyer_group(self, payload: StepNotification) -> _Group:
        buyer = payload.buyer_key or ""
        message = self._templates.render_step(
            payload.stage_id,
            "buyer",
            {
                "stage_name": payload.stage_name,
                "order_id_text": _order_id_text(payload.order_id, " Number "),
            },
        )
        return _Group(
            role="buyer",
            recipients=(buyer,),
            resolve_tokens=self._user_tokens((buyer,)),
            message=message,
        )

    async def _step_groups(self, payload: StepNotification, event_key: str) -> list[_Group]:
        actor = payload.acting_user_id
        groups: list[_Group] = []

        if payload.buyer_key and payload.buyer_key != actor and await self.should_notify(event_key, "buyer"):
            groups.append(self._buyer_group(payload))

        if await self.should_notify(event_key, "admin"):
            async def admin_tokens() -> list[str]:
                return await self._tokens.admin_tokens(actor)

            groups.append(
                _Group(
                    role="admin",
                    recipients=(),
                    resolve_tokens=admin_tokens,
                    message=self._templates.render(
                        "steps.general_update.admin",
                        {
                            "stage_name": payload.stage_name,
                            "order_id_text": _order_id_text(payload.order_id, " for order "),
                            "user_info": f" by {payload.user_name}" if payload.user_name else "",
                        },
                    ),
                )
            )

        sellers = _without(payload.seller_keys, actor)
        if sellers and await self.should_notify(event_key, "seller"):
            groups.append(self._party_group("seller", sellers, payload))

        couriers = _without(payload.courier_keys, actor)
        if couriers and await self.should_notify(event_key, "courier"):
            groups.append(self._party_group("courier", couriers, payload))

        return groups

    def _party_group(self, role: str, recipients: tuple[str, ...], payload: StepNotification) -> _Group:
        message = self._templates.render_step(
            payload.stage_id,
            role,
            {
                "stage_name": payload.stage_name,
                "order_id_text": _order_id_text(payload.order_id, " "),
            },
        )
        return _Group(
            role=canonical_role(role),
            recipients=recipients,
            resolve_tokens=self._user_tokens(recipients),
            message=message,
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(self, group: _Group) -> GroupResult:
        tokens = await group.resolve_tokens()
        if not tokens:
            return GroupResult(
                role=group.role,
                recipients=group.recipients,
                delivered=False,
                skipped_reason="no_tokens",
            )
        await self._sender.send(tokens, group.message.title, group.message.body)
        return GroupResult(role=group.role, recipients=group.recipients, delivered=True)

    async def _run_wave(self, payload: StepNotification, wave: str, groups: list[_Group]) -> NotificationReport:
        report = NotificationReport(stage_id=payload.stage_id, wave=wave)
        if not groups:
            return report

        outcomes: list[Any] = await asyncio.gather(
            *(self._deliver(group) for group in groups),
            return_exceptions=True,
        )

        for group, outcome in zip(groups, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                failure = NotificationFailure(stage_id=payload.stage_id, role=group.role, cause=outcome)
                LOGGER.warning(
                    str(failure),
                    extra={
                        "order_key": payload.order_key,
                        "stage_id": payload.stage_id,
                        "wave": wave,
                        "role": group.role,
                    },
                )
                report.results.append(
                    GroupResult(
                        role=group.role,
                        recipients=group.recipients,
                        delivered=False,
                        error=repr(outcome),
                    )
                )
            else:
                report.results.append(outcome)

        self._publish(payload, report)
        return report

    def _publish(self, payload: StepNotification, report: NotificationReport) -> None:
        LOGGER.info(
            "Notification wave finished",
            extra={
                "order_key": payload.order_key,
                "stage_id": report.stage_id,
                "wave": report.wave,
                "delivered": report.delivered,
                "failed": report.failed,
            },
        )

        if self._event_bus is not None:
            self._event_bus.emit(
                NotificationWaveEvent(
                    ts_ns=now_ns(),
                    order_key=payload.order_key,
                    stage_id=report.stage_id,
                    wave=report.wave,
                    delivered=report.delivered,
                    failed=report.failed,
                    failed_roles=report.failed_roles,
                )
            )

        if self._metrics is not None:
            self._metrics.record_notification_wave(
                stage_id=report.stage_id,
                wave=report.wave,
                delivered=report.delivered,
                failed=report.failed,
            )
