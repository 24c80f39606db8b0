import pytest

from minipomodoro.errors import WriteError
from minipomodoro.notifications import AlertChannel, CompletionAnnouncer, NotificationPermission


def test_report_and_dismiss():
    channel = AlertChannel()
    seen = []
    unsubscribe = channel.subscribe(lambda op, err: seen.append(op))

    alert = channel.report("add item", WriteError("disk full"))
    assert alert.message == "disk full"
    assert channel.alerts == [alert]
    assert seen == ["add item"]

    unsubscribe()
    channel.report("save countdown", WriteError())
    assert seen == ["add item"]
    assert channel.alerts[-1].message == "WriteError"

    channel.dismiss(alert.id)
    assert [a.operation for a in channel.alerts] == ["save countdown"]
    with pytest.raises(KeyError):
        channel.dismiss(alert.id)

    channel.clear()
    assert channel.alerts == []


def test_broken_subscriber_does_not_stop_others():
    channel = AlertChannel()
    seen = []

    def broken(op, err):
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(lambda op, err: seen.append(op))
    channel.report("delete countdown", WriteError("locked"))

    assert seen == ["delete countdown"]


@pytest.mark.parametrize(
    "permission, expected",
    [
        (NotificationPermission.GRANTED, ["Time is up!"]),
        (NotificationPermission.DEFAULT, []),
        (NotificationPermission.DENIED, []),
    ],
)
def test_announcer_respects_permission(permission, expected):
    calls = []
    announcer = CompletionAnnouncer(hook=calls.append, permission=permission)
    assert announcer.announce_completion() == bool(expected)
    assert calls == expected
