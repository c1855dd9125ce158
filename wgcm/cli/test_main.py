"""
Tests for the wgcm command line
"""

import json
import sqlite3
import stat
import tempfile
from pathlib import Path

import pytest

from wgcm.schema import SCHEMA_VERSION
from wgcm.keygen import generate_keypair, generate_preshared_key
from wgcm.cli.main import main


@pytest.fixture
def workspace(monkeypatch):
    """Point wgcm at a temporary database and an absent settings file"""
    with tempfile.TemporaryDirectory() as tmpdir:
        tmp = Path(tmpdir)
        monkeypatch.setenv('WGCM_DB', str(tmp / 'wgcm.db'))
        monkeypatch.setenv('WGCM_CONFIG', str(tmp / 'config.yaml'))
        monkeypatch.setenv('COLUMNS', '200')
        monkeypatch.delenv('WGCM_OUTPUT', raising=False)
        monkeypatch.delenv('WGCM_LOG_LEVEL', raising=False)
        yield tmp


def run(capsys, *argv):
    """Run one command; returns (exit code, stdout, stderr)"""
    code = main(list(argv))
    captured = capsys.readouterr()
    return code, captured.out, captured.err


@pytest.fixture
def peered(workspace, capsys):
    """potato and banana, peered"""
    assert run(capsys, 'add', 'potato', '192.168.10.1/24')[0] == 0
    assert run(capsys, 'add', 'banana', '192.168.10.2/24')[0] == 0
    assert run(capsys, 'peer', 'potato', 'banana')[0] == 0
    return workspace


@pytest.fixture
def routed(workspace, capsys):
    """leaf routed through hub"""
    assert run(capsys, 'add', 'hub', '10.0.0.1/24')[0] == 0
    assert run(capsys, 'add', 'leaf', '10.0.0.2/24')[0] == 0
    assert run(capsys, 'route', 'leaf', 'hub')[0] == 0
    return workspace


class TestScenarios:
    """End-to-end command sequences"""

    def test_peer_and_export(self, peered, capsys):
        code, out, _ = run(capsys, 'export', 'potato')

        assert code == 0
        assert "[Peer]\n# banana\n" in out
        assert "AllowedIPs = 192.168.10.2/32\n" in out

    def test_route_and_export(self, routed, capsys):
        _, leaf_out, _ = run(capsys, 'export', 'leaf')
        _, hub_out, _ = run(capsys, 'export', 'hub')

        assert leaf_out.count("[Peer]") == 1
        assert "# hub\n" in leaf_out
        assert "AllowedIPs = 10.0.0.1/24\n" in leaf_out
        assert hub_out.count("[Peer]") == 1
        assert "AllowedIPs = 10.0.0.2/32\n" in hub_out

    def test_remove_router(self, routed, capsys):
        assert run(capsys, 'remove', 'hub')[0] == 0

        code, _, err = run(capsys, 'export', 'hub')
        assert code == 1
        assert "Error: no interface named 'hub'" in err

        code, out, _ = run(capsys, 'export', 'leaf')
        assert code == 0
        assert "[Peer]" not in out


class TestAdd:
    """wgcm add"""

    def test_default_single_host(self, workspace, capsys):
        run(capsys, 'add', 'solo', '10.0.0.7')

        _, out, _ = run(capsys, 'export', 'solo')

        assert "Address = 10.0.0.7/32\n" in out

    def test_supplied_key(self, workspace, capsys):
        private, public = generate_keypair()

        code, out, _ = run(capsys, '--json', 'add', 'solo', '10.0.0.7/24', '--privkey', private)

        assert code == 0
        assert json.loads(out)['public_key'] == public

    def test_duplicate(self, peered, capsys):
        code, _, err = run(capsys, 'add', 'potato', '192.168.10.9/24')

        assert code == 1
        assert "conflicts with an existing one" in err

    def test_bad_ip(self, workspace, capsys):
        code, _, err = run(capsys, 'add', 'solo', '10.0.0.300/24')

        assert code == 1
        assert err.startswith("Error: ")

    def test_path_in_name(self, workspace, capsys):
        """A name that cannot be a file name is refused before dump ever sees it"""
        code, _, err = run(capsys, 'add', 'site/a', '10.0.0.1/24')

        assert code == 1
        assert err.startswith("Error: interface name 'site/a'")

        code, _, _ = run(capsys, 'dump', str(workspace / 'out'))
        assert code == 0
        assert list((workspace / 'out').iterdir()) == []


class TestPeeringCommands:
    """peer, unpeer, route, allow, unallow"""

    def test_self_peer_rejected(self, peered, capsys):
        code, _, err = run(capsys, 'peer', 'potato', 'potato')

        assert code == 1
        assert "itself" in err

    def test_peer_twice(self, peered, capsys):
        code, _, err = run(capsys, 'peer', 'banana', 'potato')

        assert code == 1
        assert "already peered" in err

    def test_unpeer(self, peered, capsys):
        assert run(capsys, 'unpeer', 'potato', 'banana')[0] == 0

        _, out, _ = run(capsys, 'export', 'potato')
        assert "[Peer]" not in out

    def test_allow_and_unallow(self, peered, capsys):
        assert run(capsys, 'allow', 'potato', 'banana', '10.1.0.0/16')[0] == 0
        _, out, _ = run(capsys, 'export', 'potato')
        assert "AllowedIPs = 10.1.0.0/16, 192.168.10.2/32\n" in out

        _, banana_out, _ = run(capsys, 'export', 'banana')
        assert "10.1.0.0/16" not in banana_out

        assert run(capsys, 'unallow', 'potato', 'banana', '10.1.0.0/16')[0] == 0
        _, out, _ = run(capsys, 'export', 'potato')
        assert "AllowedIPs = 192.168.10.2/32\n" in out

    def test_allow_duplicate(self, peered, capsys):
        code, _, err = run(capsys, 'allow', 'potato', 'banana', '192.168.10.2')

        assert code == 1
        assert "already allowed" in err

    def test_unallow_missing(self, peered, capsys):
        code, _, err = run(capsys, 'unallow', 'potato', 'banana', '10.9.9.9')

        assert code == 1
        assert "not allowed" in err


class TestEdgeCommands:
    """Preshared keys and keepalive"""

    def test_genpsk_symmetric(self, peered, capsys):
        assert run(capsys, 'genpsk', 'potato', 'banana')[0] == 0

        _, potato_out, _ = run(capsys, 'export', 'potato')
        _, banana_out, _ = run(capsys, 'export', 'banana')
        potato_psk = [l for l in potato_out.splitlines() if l.startswith("PresharedKey")]
        banana_psk = [l for l in banana_out.splitlines() if l.startswith("PresharedKey")]

        assert len(potato_psk) == 1
        assert potato_psk == banana_psk

    def test_setpsk_and_clearpsk(self, peered, capsys):
        psk = generate_preshared_key()

        assert run(capsys, 'setpsk', 'potato', 'banana', psk)[0] == 0
        assert f"PresharedKey = {psk}\n" in run(capsys, 'export', 'banana')[1]

        assert run(capsys, 'clearpsk', 'banana', 'potato')[0] == 0
        assert "PresharedKey" not in run(capsys, 'export', 'potato')[1]

    def test_setpsk_invalid(self, peered, capsys):
        code, _, err = run(capsys, 'setpsk', 'potato', 'banana', 'short')

        assert code == 1
        assert err.startswith("Error: ")

    def test_psk_not_peered(self, workspace, capsys):
        run(capsys, 'add', 'a', '10.0.0.1')
        run(capsys, 'add', 'b', '10.0.0.2')

        code, _, err = run(capsys, 'genpsk', 'a', 'b')

        assert code == 1
        assert "not peered" in err

    def test_keepalive(self, peered, capsys):
        assert run(capsys, 'keepalive', 'potato', 'banana', '25')[0] == 0
        assert "PersistentKeepalive = 25\n" in run(capsys, 'export', 'banana')[1]

        assert run(capsys, 'keepalive', 'potato', 'banana', '0')[0] == 0
        assert "PersistentKeepalive" not in run(capsys, 'export', 'banana')[1]

    def test_keepalive_invalid(self, peered, capsys):
        code, _, err = run(capsys, 'keepalive', 'potato', 'banana', '-1')

        assert code == 1
        assert "keepalive" in err


class TestSet:
    """wgcm set"""

    def test_set_endpoint(self, peered, capsys):
        run(capsys, 'set', 'banana', 'hostname', 'banana.example.com')
        run(capsys, 'set', 'banana', 'port', '51820')

        _, out, _ = run(capsys, 'export', 'potato')

        assert "Endpoint = banana.example.com:51820\n" in out

    def test_clear(self, peered, capsys):
        run(capsys, 'set', 'potato', 'dns', '1.1.1.1')
        assert "DNS = 1.1.1.1\n" in run(capsys, 'export', 'potato')[1]

        assert run(capsys, 'set', 'potato', 'dns')[0] == 0
        assert "DNS" not in run(capsys, 'export', 'potato')[1]

    def test_address_change_follows(self, peered, capsys):
        assert run(capsys, 'set', 'banana', 'address', '192.168.10.20')[0] == 0

        _, out, _ = run(capsys, 'export', 'potato')

        assert "AllowedIPs = 192.168.10.20/32\n" in out

    def test_cannot_clear_name(self, peered, capsys):
        code, _, err = run(capsys, 'set', 'potato', 'name')

        assert code == 1
        assert "cannot be cleared" in err

    def test_privkey_not_echoed(self, peered, capsys):
        private, public = generate_keypair()

        code, out, _ = run(capsys, 'set', 'potato', 'privkey', private)
        assert code == 0
        assert private not in out

        code, out, _ = run(capsys, '--json', 'set', 'potato', 'privkey', generate_keypair()[0])
        assert code == 0
        assert json.loads(out)['value'] == '<hidden>'

    def test_privkey_conflict_not_echoed(self, workspace, capsys):
        private, _ = generate_keypair()
        run(capsys, 'add', 'a', '10.0.0.1', '--privkey', private)
        run(capsys, 'add', 'b', '10.0.0.2')

        code, _, err = run(capsys, 'set', 'b', 'privkey', private)

        assert code == 1
        assert "conflicts with another interface" in err
        assert private not in err

    def test_unknown_field_is_usage_error(self, peered, capsys):
        with pytest.raises(SystemExit) as excinfo:
            main(['set', 'potato', 'colour', 'red'])

        assert excinfo.value.code == 2


class TestOutput:
    """list, names, openbsd, dump, bash"""

    def test_list_json(self, peered, capsys):
        code, out, _ = run(capsys, '--json', 'list')

        data = json.loads(out)
        assert code == 0
        assert [entry['name'] for entry in data] == ['potato', 'banana']
        assert all(entry['peers'] == 1 for entry in data)
        assert 'private_key' not in data[0]

    def test_list_json_from_environment(self, peered, capsys, monkeypatch):
        monkeypatch.setenv('WGCM_OUTPUT', 'json')

        _, out, _ = run(capsys, 'list', 'potato')

        data = json.loads(out)
        assert data['name'] == 'potato'
        assert data['peers'][0]['name'] == 'banana'
        assert data['peers'][0]['allowed_ips'] == ['192.168.10.2/32']

    def test_list_table(self, peered, capsys):
        code, out, _ = run(capsys, 'list')

        assert code == 0
        assert "potato" in out
        assert "192.168.10.2/24" in out

    def test_list_detail_table(self, peered, capsys):
        code, out, _ = run(capsys, 'list', 'potato')

        assert code == 0
        assert "banana" in out
        assert "192.168.10.2/32" in out

    def test_names(self, peered, capsys):
        _, out, _ = run(capsys, 'names')

        assert out == "banana\npotato\n"

    def test_openbsd(self, peered, capsys):
        code, out, _ = run(capsys, 'openbsd', 'potato')

        assert code == 0
        assert out.startswith("inet 192.168.10.1/24\n")
        assert "wgaip 192.168.10.2/32 # banana\n" in out
        assert out.endswith("up\n")

    def test_export_to_file(self, peered, capsys):
        output = peered / 'out' / 'potato.conf'

        code, out, _ = run(capsys, 'export', 'potato', '-o', str(output))

        assert code == 0
        assert output.read_text().startswith("[Interface]\n")
        assert stat.S_IMODE(output.stat().st_mode) == 0o600
        assert "[Interface]" not in out

    def test_dump_stdout(self, peered, capsys):
        code, out, _ = run(capsys, 'dump', '-')

        assert code == 0
        assert "### potato.conf\n[Interface]\n" in out
        assert "### banana.conf\n[Interface]\n" in out

    def test_dump_directory(self, peered, capsys):
        output_dir = peered / 'configs'

        assert run(capsys, 'dump', str(output_dir))[0] == 0
        assert sorted(p.name for p in output_dir.iterdir()) == ['banana.conf', 'potato.conf']

    def test_bash(self, capsys):
        code, out, _ = run(capsys, 'bash')

        assert code == 0
        assert "complete -F _wgcm_completions wgcm" in out
        assert "keepalive" in out


class TestErrors:
    """Exit codes"""

    def test_no_command(self, workspace, capsys):
        assert run(capsys)[0] == 1

    def test_unknown_interface(self, workspace, capsys):
        code, out, err = run(capsys, 'export', 'ghost')

        assert code == 1
        assert out == ""
        assert err == "Error: no interface named 'ghost'\n"

    def test_schema_too_new(self, workspace, capsys):
        db_path = workspace / 'wgcm.db'
        conn = sqlite3.connect(db_path)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 5}")
        conn.commit()
        conn.close()

        code, _, err = run(capsys, 'list')

        assert code == 2
        assert "newer than this wgcm supports" in err

    def test_bad_settings_file(self, workspace, capsys):
        (workspace / 'config.yaml').write_text("output: xml\n")

        code, _, err = run(capsys, 'list')

        assert code == 1
        assert "output mode" in err
