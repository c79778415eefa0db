from __future__ import annotations

import pytest
from pydantic import ValidationError

from cardflow.schema.automation import (
    MoveCardAction,
    SendNotificationAction,
    SendWebhookAction,
    dump_actions,
    parse_actions,
    parse_trigger_config,
)


def test_blank_action_fields_fall_back_to_defaults():
    actions = parse_actions(
        [
            {"type": "move_card", "targetListId": "  "},
            {"type": "send_webhook", "webhook_url": "", "webhookMethod": "", "webhook_payload": " "},
            {"type": "send_notification", "notify_type": "", "notification_title": ""},
        ]
    )

    move, webhook, notify = actions
    assert isinstance(move, MoveCardAction)
    assert move.target_list_id is None
    assert move.missing_fields() == ["target_list_id"]
    assert isinstance(webhook, SendWebhookAction)
    assert webhook.webhook_url is None
    assert webhook.webhook_method == "POST"
    assert webhook.webhook_payload is None
    assert isinstance(notify, SendNotificationAction)
    assert notify.notify_type == "assignee"
    assert dump_actions(actions) == [{"type": "move_card"}, {"type": "send_webhook"}, {"type": "send_notification"}]


def test_camel_case_keys_and_unknown_types():
    [move] = parse_actions([{"type": "move_card", "targetListId": "list-1"}])
    assert move.target_list_id == "list-1"

    with pytest.raises(ValidationError):
        parse_actions([{"type": "teleport_card"}])
    with pytest.raises(ValidationError):
        parse_actions([{"type": ""}])


def test_blank_trigger_config_values_are_wildcards():
    config = parse_trigger_config({"toListId": "", "daysBeforeDue": 2, "legacyKey": " "})
    assert config.to_list_id is None
    assert config.days_before_due == 2
