import json

import yaml

from helpers import CERT_DIR, free_port_range, stub_command, tcp_implementation
from run_interop_tests import main


def write_config(tmp_path, implementations):
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'certificates': {'dir': str(CERT_DIR)},
        'scenarios': ['handshake', 'greeting'],
        'implementations': implementations,
        'test_execution': {
            'host': '127.0.0.1',
            'default_timeout': 20,
            'port_range': free_port_range(),
            'poll_interval': 0.02,
            'log_dir': str(tmp_path / 'logs'),
        },
    }))
    return str(path)


def test_missing_config(tmp_path, capsys):
    assert main(['--config', str(tmp_path / 'missing.yaml')]) == 1
    assert "Configuration file not found" in capsys.readouterr().out


def test_list_scenarios(tmp_path, capsys):
    config = write_config(tmp_path, {'python-tcp': tcp_implementation()})
    assert main(['--config', config, '--list-scenarios']) == 0
    out = capsys.readouterr().out
    assert "* handshake" in out
    assert "  large_data_download_with_frequent_key_updates" in out


def test_list_implementations(tmp_path, capsys):
    config = write_config(tmp_path, {
        'python-tcp': tcp_implementation(),
        'off': {'client': ['true'], 'enabled': False},
    })
    assert main(['--config', config, '--list-implementations']) == 0
    out = capsys.readouterr().out
    assert "python-tcp" in out
    assert "(client) [disabled]" in out


def test_unknown_client(tmp_path, capsys):
    config = write_config(tmp_path, {'python-tcp': tcp_implementation()})
    assert main(['--config', config, '--client', 'openssl']) == 1
    assert "Unknown or disabled client(s): openssl" in capsys.readouterr().out


def test_full_run_writes_reports(tmp_path, capsys, subprocess_env):
    config = write_config(tmp_path, {'python-tcp': tcp_implementation()})
    table, report = tmp_path / 'results.csv', tmp_path / 'results.json'

    code = main(['--config', config, '--table', str(table), '--json', str(report)])

    assert code == 0
    assert table.read_text(encoding='utf-8').splitlines() == [
        "handshake, python-tcp, python-tcp, 🥳",
        "greeting, python-tcp, python-tcp, 🥳",
    ]
    assert json.loads(report.read_text(encoding='utf-8'))['summary']['success'] == 2


def test_defects_fail_the_sweep(tmp_path, subprocess_env):
    config = write_config(tmp_path, {
        'python-tcp': tcp_implementation(),
        'wrong-greeting': {'server': stub_command('wrong_greeting_server.py')},
    })
    assert main(['--config', config, '--scenario', 'greeting', '--server', 'wrong-greeting']) == 1
