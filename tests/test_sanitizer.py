import pytest

from skillsmith.exceptions import UnsafeTokenError
from skillsmith.sandbox.sanitizer import (
    check_argv,
    partition_dependencies,
    sanitize_container_name,
    sanitize_dep_name,
    sanitize_dependencies,
    sanitize_env_key,
    sanitize_path_component,
    sanitize_runtime,
)


@pytest.mark.parametrize(
    "dep",
    ["requests", "pydantic>=2.0", "uvicorn[standard]", "@scope/pkg", "lodash@^4.17.0", "zope.interface", "pkg~=1.4"],
)
def test_accepts_package_specifiers(dep):
    assert sanitize_dep_name(dep) == dep


@pytest.mark.parametrize(
    "dep, reason",
    [
        ("", "Empty"),
        ("--index-url=http://evil", "flag injection"),
        ("-e", "flag injection"),
        ("../../etc/passwd", "path traversal"),
        ("requests; rm -rf /", "Invalid character"),
        ("pkg`whoami`", "Invalid character"),
        ("pkg$(id)", "Invalid character"),
        ("pkg name", "Invalid character"),
        ("pkg\nother", "Invalid character"),
    ],
)
def test_rejects_unsafe_dependencies(dep, reason):
    with pytest.raises(UnsafeTokenError) as excinfo:
        sanitize_dep_name(dep)
    assert reason in str(excinfo.value)
    assert excinfo.value.token == dep


def test_dependency_list_is_all_or_nothing():
    with pytest.raises(UnsafeTokenError):
        sanitize_dependencies(["requests", "bad;dep", "httpx"])


def test_partition_keeps_order_and_reports_rejections():
    accepted, rejected = partition_dependencies(["requests", "bad;dep", "httpx"])
    assert accepted == ["requests", "httpx"]
    assert [error.token for error in rejected] == ["bad;dep"]


def test_runtime_and_container_tokens():
    assert sanitize_runtime("docker") == "docker"
    assert sanitize_container_name("skillsmith-probe-abc123") == "skillsmith-probe-abc123"
    for bad in ("Docker", "docker;ls", "", "-podman"):
        with pytest.raises(UnsafeTokenError):
            sanitize_runtime(bad)
    with pytest.raises(UnsafeTokenError):
        sanitize_container_name("-rm")


def test_env_keys_and_path_components():
    assert sanitize_env_key("PYTHONPATH") == "PYTHONPATH"
    with pytest.raises(UnsafeTokenError):
        sanitize_env_key("A=B")
    assert sanitize_path_component("test.py") == "test.py"
    for bad in ("..", ".", "../x", "a/b", ""):
        with pytest.raises(UnsafeTokenError):
            sanitize_path_component(bad)


def test_check_argv_rejects_control_characters():
    assert check_argv(["echo", "ok"]) == ("echo", "ok")
    with pytest.raises(UnsafeTokenError):
        check_argv([])
    with pytest.raises(UnsafeTokenError):
        check_argv(["echo", "a\x00b"])
