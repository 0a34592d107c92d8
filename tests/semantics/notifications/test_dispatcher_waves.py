"""
Semantic test: notification fan-out.

Invariant:
Every recipient group is delivered independently. A failing group is
reported and logged but never raised, and never hides the other groups.
The acting user is never notified about their own change.
"""

# pylint: disable=missing-function-docstring
from __future__ import annotations

import asyncio
import logging

import pytest

from fulfillment_stepper.core.domain.types import Order
from fulfillment_stepper.notifications.dispatcher import NotificationDispatcher, StepNotification
from fulfillment_stepper.notifications.prometheus_metrics import PrometheusMetricsClient


def payload(**overrides) -> StepNotification:
    data = {
        "stage_id": "step-shipped",
        "stage_name": "Order shipped",
        "order_key": "ord-1",
        "order_id": "1001",
        "buyer_key": "buyer_1",
        "seller_keys": ("seller_key_1", "seller_key_2"),
        "courier_keys": ("courier_1",),
        "acting_user_id": "seller_key_1",
        "user_name": "Sam Seller",
    }
    data.update(overrides)
    return StepNotification(**data)


def test_main_wave_reaches_every_group_but_the_actor(notifier) -> None:
    report = asyncio.run(notifier.dispatcher.notify_on_step_activation(payload()))

    assert report.wave == "main"
    assert sorted(report.roles_notified()) == ["admin", "buyer", "courier", "seller"]
    assert report.result_for("seller").recipients == ("seller_key_2",)
    assert report.failed == 0


def test_actor_admin_is_excluded_from_admin_tokens(fakes) -> None:
    notifier = fakes.Notifier(tokens=fakes.Tokens(admins=["admin_1", "admin_2"]))

    asyncio.run(notifier.dispatcher.notify_on_step_activation(payload(acting_user_id="admin_1")))

    admin_sends = [tokens for tokens, _, _ in notifier.sender.sent if "tok-admin_2" in tokens]
    assert admin_sends == [("tok-admin_2",)]
    assert notifier.sender.titles_for("tok-admin_1") == []


def test_buyer_actor_gets_no_buyer_group(notifier) -> None:
    report = asyncio.run(notifier.dispatcher.notify_on_step_activation(payload(acting_user_id="buyer_1")))

    assert report.result_for("buyer") is None
    assert report.result_for("seller").recipients == ("seller_key_1", "seller_key_2")


def test_partial_failure_is_reported_not_raised(fakes, caplog) -> None:
    notifier = fakes.Notifier(sender=fakes.Sender(fail_tokens=["tok-courier_1"]))

    with caplog.at_level(logging.WARNING, logger="fulfillment_stepper.notifications.dispatcher"):
        report = asyncio.run(notifier.dispatcher.notify_on_step_activation(payload()))

    assert report.failed == 1
    assert report.failed_roles == ["courier"]
    assert "ConnectionError" in (report.result_for("courier").error or "")
    assert sorted(report.roles_notified()) == ["admin", "buyer", "seller"]
    assert any("notification to courier" in rec.getMessage() for rec in caplog.records)


def test_policy_failure_defaults_to_notify(fakes) -> None:
    notifier = fakes.Notifier(policy=fakes.Policy(error=RuntimeError("config store down")))

    report = asyncio.run(notifier.dispatcher.notify_on_step_activation(payload()))

    assert sorted(report.roles_notified()) == ["admin", "buyer", "courier", "seller"]


def test_policy_failure_also_fails_open_for_purchases(fakes, order_factory) -> None:
    notifier = fakes.Notifier(policy=fakes.Policy(error=RuntimeError("config store down")))
    order = Order.model_validate(order_factory())

    report = asyncio.run(notifier.dispatcher.handle_purchase_notifications(order))

    assert report.result_for("admin").delivered
    assert report.result_for("seller:seller_key_1").delivered
    assert report.result_for("courier").delivered


def test_disabled_role_is_skipped(fakes) -> None:
    notifier = fakes.Notifier(policy=fakes.Policy({("step-shipped", "seller"): False}))

    report = asyncio.run(notifier.dispatcher.notify_on_step_activation(payload()))

    assert report.result_for("seller") is None
    assert report.result_for("courier").delivered


def test_group_without_tokens_is_skipped(fakes) -> None:
    notifier = fakes.Notifier(tokens=fakes.Tokens(without=["courier_1"]))

    report = asyncio.run(notifier.dispatcher.notify_on_step_activation(payload()))

    courier = report.result_for("courier")
    assert not courier.delivered
    assert courier.skipped_reason == "no_tokens"
    assert courier.error is None


def test_sub_wave_uses_the_stage_template(notifier) -> None:
    report = asyncio.run(
        notifier.dispatcher.notify_on_sub_step_activation(
            payload(stage_id="step-rejected", stage_name="Items rejected", seller_keys=("seller_key_2",))
        )
    )

    assert report.wave == "sub"
    assert "Items rejected" in notifier.sender.titles_for("tok-buyer_1")


def test_sub_wave_refuses_ranked_stages(notifier) -> None:
    with pytest.raises(ValueError):
        asyncio.run(notifier.dispatcher.notify_on_sub_step_activation(payload()))


def test_buyer_only_update(notifier) -> None:
    report = asyncio.run(
        notifier.dispatcher.notify_buyer_on_step_change("buyer_1", "step-delivered", "Order delivered", "1001")
    )

    assert report.wave == "buyer"
    assert report.roles_notified() == ["buyer"]
    [(tokens, _, body)] = notifier.sender.sent
    assert tokens == ("tok-buyer_1",)
    assert body == "Your order Number #1001 moved to: Order delivered"


def test_purchase_notifies_each_seller_separately(fakes, order_factory, monkeypatch) -> None:
    monkeypatch.delenv("PROMETHEUS_PUSHGATEWAY_URL", raising=False)
    monkeypatch.delenv("PROMETHEUS_PUSHGATEWAY_GROUPING_KEY_JSON", raising=False)
    payload_order = order_factory()
    payload_order["order_items"][2]["seller_key"] = "seller_key_2"
    order = Order.model_validate(payload_order)

    metrics = PrometheusMetricsClient()
    sender = fakes.Sender(fail_tokens=["tok-seller_key_2"])
    dispatcher = NotificationDispatcher(policy=fakes.Policy(), tokens=fakes.Tokens(), sender=sender, metrics=metrics)

    report = asyncio.run(dispatcher.handle_purchase_notifications(order))

    assert report.wave == "purchase"
    assert report.result_for("seller:seller_key_1").delivered
    assert report.failed_roles == ["seller:seller_key_2"]
    assert report.result_for("admin").delivered
    assert report.result_for("courier").recipients == ("courier_1", "courier_2")
    assert "New order" in sender.titles_for("tok-admin_1")

    labels = {"stage_id": "purchase", "wave": "purchase"}
    assert metrics.registry.get_sample_value("stepper_notifications_delivered", labels) == report.delivered
    assert metrics.registry.get_sample_value("stepper_notifications_failed", labels) == 1
