import argparse
import json
import logging
from unittest import mock

import pytest

from runningorder.cli.rocli import RunningOrderCli, main
from runningorder.cloud.model.tasks import EventKind, SyncEvent

CLI_BASE = 'runningorder.cli.rocli'


class TestRunningOrderCli:

    @pytest.fixture(autouse=True)
    def isolate(self, monkeypatch, tmp_path):
        root = logging.getLogger()
        handlers = list(root.handlers)
        level = root.level
        monkeypatch.setattr(RunningOrderCli, 'SETTINGS', dict(RunningOrderCli.SETTINGS))
        monkeypatch.setattr('{}.config'.format(CLI_BASE), lambda name, default=None: default)
        monkeypatch.setattr('runningorder.helpers.DATA_LOCATION', tmp_path / "data")
        yield
        for handler in [h for h in root.handlers if h not in handlers]:
            root.removeHandler(handler)
            handler.close()
        root.setLevel(level)

    @staticmethod
    def __args(tmp_path, command: str, **kwargs) -> argparse.Namespace:
        log_dir = tmp_path / "logs"
        log_dir.mkdir(exist_ok=True)
        return argparse.Namespace(command=command, log_level='debug', log_dir=log_dir, **kwargs)

    def test_scope(self, tmp_path, capsys):
        payload = tmp_path / "payload.json"
        payload.write_text(json.dumps({'ck': {'met': {'dbs': 1, 'sid': 'privateDBSubscription'}}}))
        RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'scope', payload=payload))
        assert capsys.readouterr().out.strip() == "private"

        payload.write_text(json.dumps({'aps': {'content-available': 1}}))
        RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'scope', payload=payload))
        assert capsys.readouterr().out.strip() == "unrecognized"

        with pytest.raises(SystemExit) as e:
            RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'scope', payload=tmp_path / "missing.json"))
        assert e.value.code == 7

    def test_merge_settings(self, tmp_path):
        conf_file = tmp_path / "conf.json"
        conf_file.write_text(json.dumps({'container': 'iCloud.com.example.Test', 'retry_interval': 1, 'unknown': 3}))
        RunningOrderCli.merge_settings(conf_file)
        assert RunningOrderCli.SETTINGS['container'] == 'iCloud.com.example.Test'
        assert RunningOrderCli.SETTINGS['retry_interval'] == 1
        assert RunningOrderCli.SETTINGS['environment'] == 'development'
        assert 'unknown' not in RunningOrderCli.SETTINGS

        conf_file.write_text('{"container": ')
        with pytest.raises(SystemExit) as e:
            RunningOrderCli.merge_settings(conf_file)
        assert e.value.code == 2

    def test_missing_config(self, tmp_path):
        with pytest.raises(SystemExit) as e:
            RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'setup', config=tmp_path / "missing.json"))
        assert e.value.code == 2

    def test_missing_token(self, tmp_path):
        with mock.patch('keyring.get_password', return_value=None):
            with pytest.raises(SystemExit) as e:
                RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'setup'))
        assert e.value.code == 3

    def test_add_collaborator(self, tmp_path):
        succeed = True

        class MockSyncZoneManager:
            instances = []

            def __init__(self, container, **kwargs):
                self.container = container
                self.kwargs = kwargs
                self.added = []
                MockSyncZoneManager.instances.append(self)

            def save_owner_name(self, name):
                self.added.append(name)
                return (True, "Added") if succeed else (False, "Failed")

        with mock.patch('keyring.get_password', return_value='token'), \
                mock.patch('{}.SyncZoneManager'.format(CLI_BASE), MockSyncZoneManager):
            # Success
            succeed = True
            RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'add-collaborator', identity='alice'))
            manager = MockSyncZoneManager.instances[-1]
            assert manager.added == ['alice']
            assert manager.container.api_token == 'token'
            assert manager.container.identifier == 'iCloud.com.worldline.RunningOrder'
            assert manager.kwargs['request_permission'] is False

            # Fail
            succeed = False
            with pytest.raises(SystemExit) as e:
                RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'add-collaborator', identity='bob'))
            assert e.value.code == 5

    def test_setup(self, tmp_path):
        fail = False

        class MockSyncZoneManager:
            def __init__(self, container, on_event=None, **kwargs):
                on_event(SyncEvent(EventKind.ZONE_CREATION, True, "Created zone"))
                on_event(SyncEvent(EventKind.SUBSCRIPTION_CREATION, not fail, "Subscription"))

            def wait_for_tasks(self, timeout=None):
                return True

        with mock.patch('keyring.get_password', return_value='token'), \
                mock.patch('{}.SyncZoneManager'.format(CLI_BASE), MockSyncZoneManager):
            RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'setup'))

            fail = True
            with pytest.raises(SystemExit) as e:
                RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'setup'))
            assert e.value.code == 4

    def test_remove_subscriptions(self, tmp_path):
        class MockSyncZoneManager:
            def __init__(self, container, **kwargs):
                assert kwargs['setup'] is False

            # noinspection PyMethodMayBeStatic
            def remove_subscriptions(self):
                return False, {'private': 'privateDBSubscription', 'shared': 'Failed'}

        with mock.patch('keyring.get_password', return_value='token'), \
                mock.patch('{}.SyncZoneManager'.format(CLI_BASE), MockSyncZoneManager):
            with pytest.raises(SystemExit) as e:
                RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'remove-subscriptions'))
            assert e.value.code == 6

    def test_api_token_prompt(self, tmp_path):
        with mock.patch('{}.getpass'.format(CLI_BASE), return_value='new-token'), \
                mock.patch('keyring.set_password') as set_password, \
                mock.patch('keyring.get_password', return_value='new-token'), \
                mock.patch('{}.SyncZoneManager'.format(CLI_BASE)) as manager:
            manager.return_value.remove_subscriptions.return_value = (True, {})
            RunningOrderCli(TestRunningOrderCli.__args(tmp_path, 'remove-subscriptions', api_token=True))
        set_password.assert_called_once_with("RunningOrder", "CLOUDKIT-API-TOKEN", "new-token")

    def test_log_level_setting(self, tmp_path):
        conf_file = tmp_path / "conf.json"
        conf_file.write_text(json.dumps({'log_level': 'warning'}))
        payload = tmp_path / "payload.json"
        payload.write_text(json.dumps({'aps': {}}))
        log_dir = tmp_path / "logs"
        log_dir.mkdir()

        RunningOrderCli(argparse.Namespace(command='scope', payload=payload, config=conf_file, log_dir=log_dir))
        assert logging.getLogger().level == logging.WARNING

        # --log-level wins over the setting
        RunningOrderCli(argparse.Namespace(command='scope', payload=payload, config=conf_file, log_dir=log_dir,
                                           log_level='debug'))
        assert logging.getLogger().level == logging.DEBUG

        conf_file.write_text(json.dumps({'log_level': 'verbose'}))
        with pytest.raises(SystemExit) as e:
            RunningOrderCli(argparse.Namespace(command='scope', payload=payload, config=conf_file, log_dir=log_dir))
        assert e.value.code == 2

    def test_main_without_log_level(self, tmp_path):
        with mock.patch('sys.argv', ['rocli', 'scope', str(tmp_path / "payload.json")]), \
                mock.patch('{}.RunningOrderCli'.format(CLI_BASE)) as cli:
            main()
        args = cli.call_args.args[0]
        assert args.command == 'scope'
        assert 'log_level' not in args
