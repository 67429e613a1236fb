"""
Unit tests for renewer.notification
"""

from datetime import datetime, timezone
import pytest
import requests
from renewer.config_loader import NotificationsConfig, TeamsNotificationConfig
from renewer.notification import NotificationContext, NotificationManager, TeamsWebhookNotifier

WEBHOOK_URL = 'https://example.webhook.office.com/webhookb2/abc'
EXPIRY = datetime(2026, 10, 20, 12, 0, tzinfo=timezone.utc)
NEW_EXPIRY = datetime(2026, 10, 23, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(name='teams_config')
def fixture_teams_config():
    """ Enabled Teams channel """
    return TeamsNotificationConfig(enabled=True, webhook_url=WEBHOOK_URL)


@pytest.fixture(name='post')
def fixture_post(mocker):
    """ Teams accepts the message """
    response = mocker.Mock(status_code=200, text='1')
    return mocker.patch('renewer.notification.requests.post', return_value=response)


def success_context():
    """ Context for a completed renewal """
    return NotificationContext(cert_path='/etc/scion/as.pem', status='SUCCESS', expiry_date=EXPIRY,
                               new_expiry_date=NEW_EXPIRY, host='as110')


def test_send_success(teams_config, post):
    """ A successful renewal posts a green card with the new expiry """
    assert TeamsWebhookNotifier(teams_config).send(success_context())

    post.assert_called_once()
    assert post.call_args.args[0] == WEBHOOK_URL
    payload = post.call_args.kwargs['json']
    assert payload['themeColor'] == '28a745'
    facts = {fact['name']: fact['value'] for fact in payload['sections'][0]['facts']}
    assert facts['Host'] == 'as110'
    assert facts['New Expiry'] == '2026-10-23 12:00 UTC'
    assert 'Reason' not in facts


def test_send_failure_reason(teams_config, post):
    """ A failed renewal posts a red card with the reason """
    context = NotificationContext(cert_path='/etc/scion/as.pem', status='FAILED', expiry_date=EXPIRY,
                                  failure_reason='unknown issuer')
    assert TeamsWebhookNotifier(teams_config).send(context)

    payload = post.call_args.kwargs['json']
    assert payload['themeColor'] == 'dc3545'
    facts = {fact['name']: fact['value'] for fact in payload['sections'][0]['facts']}
    assert facts['Reason'] == 'unknown issuer'
    assert 'New Expiry' not in facts


def test_send_rejected(mocker, teams_config):
    """ A non-200 answer is a failed delivery """
    mocker.patch('renewer.notification.requests.post',
                 return_value=mocker.Mock(status_code=400, text='Bad payload'))
    assert not TeamsWebhookNotifier(teams_config).send(success_context())


def test_send_request_exception(mocker, teams_config):
    """ Network errors are a failed delivery, not an exception """
    mocker.patch('renewer.notification.requests.post', side_effect=requests.ConnectionError('no route'))
    assert not TeamsWebhookNotifier(teams_config).send(success_context())


def test_send_without_url(post):
    """ Without a URL nothing is posted """
    assert not TeamsWebhookNotifier(TeamsNotificationConfig(enabled=True)).send(success_context())
    post.assert_not_called()


def test_manager_disabled(post):
    """ No channels, no messages """
    manager = NotificationManager(NotificationsConfig())
    assert not manager.is_enabled()
    manager.notify(success_context())
    post.assert_not_called()


def test_manager_notifies_teams(teams_config, post):
    """ Enabled channels receive the notification """
    manager = NotificationManager(NotificationsConfig(teams=teams_config))
    assert manager.is_enabled()
    manager.notify(success_context())
    post.assert_called_once()


def test_manager_survives_notifier_error(mocker, teams_config, caplog):
    """ Exceptions from a channel are logged, never raised """
    mocker.patch.object(TeamsWebhookNotifier, 'build_payload', side_effect=TypeError('bad context'))
    NotificationManager(NotificationsConfig(teams=teams_config)).notify(success_context())
    assert 'Notification failed (TeamsWebhookNotifier): bad context' in caplog.text
