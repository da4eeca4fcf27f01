from datetime import timedelta

import pytest

from imagebuild.warmer_cli import (
    WarmerOptions,
    WarmerOptionsError,
    build_parser,
    ensure_cache_dir,
    is_url,
    parse_args,
    validate,
    validate_dockerfile_path,
)


def test_parse_defaults():
    opts = parse_args([])
    assert opts.cache_dir == "/cache"
    assert opts.images == []
    assert opts.force is False
    assert opts.cache_ttl == timedelta(hours=336)
    assert opts.dockerfile_path == ""


def test_default_platform_is_filled_in():
    opts = parse_args([])
    assert opts.custom_platform
    assert "/" in opts.custom_platform


def test_explicit_platform_is_kept():
    opts = parse_args(["--customPlatform", "linux/arm64"])
    assert opts.custom_platform == "linux/arm64"


def test_invalid_platform_rejected():
    with pytest.raises(WarmerOptionsError):
        parse_args(["--customPlatform", "linux//amd64"])


def test_repeated_images_and_flags():
    opts = parse_args(["-i", "alpine", "--image", "busybox", "-c", "/tmp/c", "-f", "-d", "Dockerfile"])
    assert opts.images == ["alpine", "busybox"]
    assert opts.cache_dir == "/tmp/c"
    assert opts.force is True
    assert opts.dockerfile_path == "Dockerfile"


def test_registry_certificates_become_mapping():
    opts = parse_args(["--registry-certificate", "reg.example.com=/certs/ca.pem"])
    assert opts.registries_certificates == {"reg.example.com": "/certs/ca.pem"}


def test_cache_ttl_duration():
    opts = parse_args(["--cache-ttl", "6h"])
    assert opts.cache_ttl == timedelta(hours=6)


def test_parser_prog():
    assert build_parser().prog == "cache warmer"


@pytest.mark.parametrize(
    "path, expected",
    [
        ("http://test", True),
        ("https://test", True),
        ("", False),
        ("/tmp/test", False),
        (".././test", False),
    ],
)
def test_is_url(path, expected):
    assert is_url(path) is expected


def test_validate_requires_image_or_dockerfile():
    with pytest.raises(WarmerOptionsError, match="at least one image"):
        validate(WarmerOptions())


def test_validate_rejects_bad_log_level():
    with pytest.raises(WarmerOptionsError):
        validate(WarmerOptions(images=["alpine"], verbosity="loud"))


def test_validate_resolves_relative_dockerfile(tmp_path, monkeypatch):
    (tmp_path / "Dockerfile").write_text("FROM alpine\n")
    monkeypatch.chdir(tmp_path)
    opts = WarmerOptions(dockerfile_path="Dockerfile")
    validate(opts)
    assert opts.dockerfile_path == str(tmp_path / "Dockerfile")


def test_validate_missing_dockerfile(tmp_path):
    opts = WarmerOptions(dockerfile_path=str(tmp_path / "missing"))
    with pytest.raises(WarmerOptionsError, match="error validating dockerfile path"):
        validate(opts)


def test_validate_dockerfile_url_untouched():
    opts = WarmerOptions(dockerfile_path="https://example.com/Dockerfile")
    validate_dockerfile_path(opts)
    assert opts.dockerfile_path == "https://example.com/Dockerfile"


def test_validate_dockerfile_path_missing(tmp_path):
    with pytest.raises(WarmerOptionsError):
        validate_dockerfile_path(WarmerOptions(dockerfile_path=str(tmp_path / "nope")))


def test_ensure_cache_dir_creates(tmp_path):
    target = tmp_path / "a" / "b"
    result = ensure_cache_dir(WarmerOptions(cache_dir=str(target)))
    assert result == str(target)
    assert target.is_dir()


def test_ensure_cache_dir_existing(tmp_path):
    assert ensure_cache_dir(WarmerOptions(cache_dir=str(tmp_path))) == str(tmp_path)
    assert tmp_path.is_dir()


def test_ensure_cache_dir_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(WarmerOptionsError, match="Failed to create cache directory"):
        ensure_cache_dir(WarmerOptions(cache_dir=str(blocker / "sub")))