import pytest
from click.testing import CliRunner

import narextract.CLI
from conftest import FakeLookup
from narextract.ArchiveEngine import NarExtractor
from narextract.CLI import extract
from narwriter import nar, tree

STORE_PATH = "/nix/store/0c8g2b6d0v6kr1iiq6q4gcb3rrhngq4b-hello-2.12.1"
JOB = "nixpkgs/trunk/hello.x86_64-linux"


@pytest.fixture
def runner(monkeypatch, fake_cache):
    fake_cache.add(STORE_PATH, nar(tree({"bin/hello": b"binary", "hello-2.12.1": b"top"})))
    extractor = NarExtractor(fake_cache, FakeLookup({(JOB, "out"): STORE_PATH}))
    configs = []

    def from_config(config=None):
        configs.append(config)
        return extractor

    monkeypatch.setattr(narextract.CLI.NarExtractor, "from_config", from_config)
    runner = CliRunner()
    runner.configs = configs
    return runner


def test_extract_member(runner, tmp_path):
    output = tmp_path / "hello"
    result = runner.invoke(extract, [JOB, str(output), "-m", "bin/hello"])
    assert result.exit_code == 0, result.output
    assert output.read_bytes() == b"binary"
    assert "Wrote /bin/hello" in result.output


def test_default_target(runner, tmp_path):
    output = tmp_path / "top"
    result = runner.invoke(extract, [STORE_PATH, str(output)])
    assert result.exit_code == 0, result.output
    assert output.read_bytes() == b"top"


def test_not_found_exits_with_error(runner, tmp_path):
    output = tmp_path / "nothing"
    result = runner.invoke(extract, [JOB, str(output), "--member", "bin/goodbye"])
    assert result.exit_code == 1
    assert "Error:" in result.output
    assert not output.exists()


def test_url_overrides(runner, tmp_path):
    result = runner.invoke(extract, [JOB, str(tmp_path / "x"), "-m", "bin/hello",
                                     "--cache-url", "https://cache.example.org/", "--hydra-url", "https://h.example"])
    assert result.exit_code == 0, result.output
    (config,) = runner.configs
    assert config.cache_url == "https://cache.example.org"
    assert config.hydra_url == "https://h.example"


def test_config_from_environment(runner, tmp_path, monkeypatch):
    monkeypatch.setenv("NAREXTRACT_CACHE_URL", "https://env-cache.example.org/")
    result = runner.invoke(extract, [JOB, str(tmp_path / "x"), "-m", "bin/hello"])
    assert result.exit_code == 0, result.output
    assert runner.configs[0].cache_url == "https://env-cache.example.org"


def test_missing_arguments(runner):
    result = runner.invoke(extract, [JOB])
    assert result.exit_code == 2
