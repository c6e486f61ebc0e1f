"""Tests for component wiring, logging setup and shutdown."""

import logging

import pytest

from camstream.capture_supervisor import CaptureState
from camstream.process_manager import ProcessManager
import main
from main import cli_overrides, parse_args
from tests.helpers import RecordingTransport, make_which


@pytest.fixture
def manager(config, fake_popen):
    manager = ProcessManager(config, popen=fake_popen)
    manager.selector._which = make_which('raspivid')
    manager.selector._exists = lambda path: False
    return manager


def test_components_share_one_hub(manager):
    assert manager.dispatcher.hub is manager.hub
    assert manager.dispatcher.supervisor is manager.supervisor
    assert manager.dispatcher.registry is manager.registry


def test_restart_policy_comes_from_config(config, fake_popen):
    config['capture']['restart_delay'] = 2.5
    config['capture']['max_restarts'] = 10
    manager = ProcessManager(config, popen=fake_popen)
    assert manager.supervisor.restart_delay == 2.5
    assert manager.supervisor.max_restarts == 10


def test_stop_all_terminates_capture(manager, fake_popen):
    manager.dispatcher.connect('viewer', RecordingTransport())
    assert manager.supervisor.state is CaptureState.RUNNING

    manager.stop_all()

    assert fake_popen.last.terminated
    assert manager.supervisor.state is CaptureState.IDLE


def test_stop_all_when_idle(manager):
    manager.stop_all()
    assert manager.supervisor.state is CaptureState.IDLE


def test_camera_probe_is_logged(manager, caplog):
    with caplog.at_level(logging.INFO):
        manager.log_camera_probe()
    assert 'Backend LegacyCapture: available' in caplog.text
    assert 'Camera detected: LegacyCapture' in caplog.text


def test_setup_logging_creates_log_directory(config, fake_popen, tmp_path):
    log_file = tmp_path / 'logs' / 'server.log'
    config['logging']['file'] = str(log_file)
    manager = ProcessManager(config, popen=fake_popen)
    root = logging.getLogger()
    saved = root.handlers[:]
    saved_level = root.level
    try:
        manager.setup_logging()
        logging.info("hello from the test")
        for handler in root.handlers:
            handler.flush()
        assert 'hello from the test' in log_file.read_text()
    finally:
        for handler in root.handlers:
            if handler not in saved:
                handler.close()
        root.handlers = saved
        root.setLevel(saved_level)


def test_parse_args():
    args = parse_args(['--config', 'x.yaml', '--port', '8000', '--log-level', 'debug'])
    assert args.config == 'x.yaml'
    assert args.port == 8000
    assert args.log_level == 'debug'


def test_cli_overrides_only_include_given_flags():
    assert cli_overrides(parse_args([])) == {}
    assert cli_overrides(parse_args(['--port', '8000', '--log-level', 'debug'])) == {
        'server': {'port': 8000},
        'logging': {'level': 'debug'},
    }


@pytest.mark.parametrize('flags', [['--port', '70000'], ['--log-level', 'foo']])
def test_invalid_cli_override_is_rejected_before_startup(tmp_path, monkeypatch, flags):
    started = []
    monkeypatch.setattr(main, 'ProcessManager', lambda config: started.append(config))
    monkeypatch.delenv('PORT', raising=False)

    with pytest.raises(SystemExit) as exc:
        main.main(['--config', str(tmp_path / 'absent.yaml')] + flags)

    assert exc.value.code == 1
    assert started == []
