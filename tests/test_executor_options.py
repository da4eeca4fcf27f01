from datetime import timedelta

import pytest

from imagebuild.buildcontext import BuildOptions
from imagebuild.executor_options import (
    ExecutorOptions,
    OptionsError,
    build_parser,
    cache_flags_valid,
    check_no_deprecated_flags,
    is_url,
    parse_args,
    resolve_environment_build_args,
    should_skip,
)


@pytest.mark.parametrize(
    "path, expected",
    [
        ("http://test", True),
        ("https://test", True),
        ("", True),
        ("/tmp/test", True),
        (".././test", False),
    ],
)
def test_should_skip(path, expected):
    assert should_skip(path) is expected


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


def _only_variable1(name):
    return "value1" if name == "variable1" else ""


@pytest.mark.parametrize(
    "arguments, expected, resolver",
    [
        (["variable1"], ["variable1=value1"], _only_variable1),
        (
            ["variable1=value1", "variable2=value2"],
            ["variable1=value1", "variable2=value2"],
            lambda name: "unexpected",
        ),
        (["variable1="], ["variable1="], lambda name: "unexpected"),
        (["variable1", "variable2=value2"], ["variable1=", "variable2=value2"], lambda name: ""),
    ],
)
def test_resolve_environment_build_args(arguments, expected, resolver):
    assert resolve_environment_build_args(arguments, resolver) == expected


def test_parse_args_defaults():
    opts = parse_args([])
    assert opts == ExecutorOptions()
    assert opts.dockerfile_path == "Dockerfile"
    assert opts.src_context == "/workspace/"
    assert opts.cache_ttl == timedelta(hours=336)
    assert opts.ignore_var_run is True
    assert opts.cache_run_layers is True
    assert opts.compression_level == -1


def test_parse_args_short_flags_and_repeats():
    opts = parse_args(
        ["-f", "Dockerfile.dev", "-c", "dir:///src", "-d", "reg/a:1", "-d", "reg/b:2",
         "--build-arg", "A=1", "--build-arg", "B", "-v", "debug"]
    )
    assert opts.dockerfile_path == "Dockerfile.dev"
    assert opts.src_context == "dir:///src"
    assert opts.destinations == ["reg/a:1", "reg/b:2"]
    assert opts.build_args == ["A=1", "B"]
    assert opts.verbosity == "debug"


def test_parse_args_booleans():
    opts = parse_args(["--no-push", "--cache", "--cache-run-layers=false", "--ignore-var-run=false"])
    assert opts.no_push is True
    assert opts.cache is True
    assert opts.cache_run_layers is False
    assert opts.ignore_var_run is False


def test_whitelist_var_run_sets_ignore_var_run():
    assert parse_args(["--whitelist-var-run=false"]).ignore_var_run is False


def test_parse_args_bad_boolean_exits():
    with pytest.raises(SystemExit):
        parse_args(["--cache=maybe"])


@pytest.mark.parametrize(
    "text, expected",
    [
        ("6h", timedelta(hours=6)),
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("90s", timedelta(seconds=90)),
        ("0", timedelta(0)),
    ],
)
def test_parse_args_cache_ttl(text, expected):
    assert parse_args([f"--cache-ttl={text}"]).cache_ttl == expected


def test_parse_args_bad_duration_exits():
    with pytest.raises(SystemExit):
        parse_args(["--cache-ttl", "two weeks"])


def test_parse_args_registry_certificates():
    opts = parse_args(
        ["--registry-certificate", "my.registry.url=/path/cert",
         "--registry-client-cert", "other.url=/c.pem,/k.pem"]
    )
    assert opts.registries_certificates == {"my.registry.url": "/path/cert"}
    assert opts.registries_client_certificates == {"other.url": "/c.pem,/k.pem"}


def test_parse_args_registry_certificate_without_equals_exits():
    with pytest.raises(SystemExit):
        parse_args(["--registry-certificate", "no-equals"])


def test_parse_args_git_options():
    opts = parse_args(["--git", "branch=main,single-branch=true"])
    assert opts.build_options() == BuildOptions(
        git_branch="main", git_single_branch=True, git_recurse_submodules=False
    )


def test_parse_args_bad_git_option_exits():
    with pytest.raises(SystemExit):
        parse_args(["--git", "colour=blue"])


def test_parse_args_compression_choices():
    assert parse_args(["--compression", "zstd"]).compression == "zstd"
    with pytest.raises(SystemExit):
        parse_args(["--compression", "bzip2"])


def test_build_parser_rejects_abbreviations():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--dockerf", "x"])


def test_check_no_deprecated_flags_moves_values():
    opts = parse_args(["--customPlatform", "linux/arm64", "--snapshotMode", "time", "--tarPath", "out.tar"])
    used = check_no_deprecated_flags(opts)
    assert used == ["customPlatform", "snapshotMode", "tarPath"]
    assert opts.custom_platform == "linux/arm64"
    assert opts.snapshot_mode == "time"
    assert opts.tar_path == "out.tar"


def test_check_no_deprecated_flags_without_deprecated():
    opts = parse_args(["--snapshot-mode", "redo"])
    assert check_no_deprecated_flags(opts) == []
    assert opts.snapshot_mode == "redo"


def test_cache_flags_invalid_with_no_push_and_no_repo():
    with pytest.raises(OptionsError, match="--cache-repo"):
        cache_flags_valid(ExecutorOptions(cache=True, no_push=True))


@pytest.mark.parametrize(
    "opts",
    [
        ExecutorOptions(cache=False, no_push=True),
        ExecutorOptions(cache=True, no_push=True, cache_repo="reg/cache"),
        ExecutorOptions(cache=True, no_push=False),
    ],
)
def test_cache_flags_valid_combinations(opts):
    assert cache_flags_valid(opts) is None