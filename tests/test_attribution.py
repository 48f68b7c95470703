import pytest

from rsprof.attribution import (
    Location,
    find_user_frame,
    is_internal_file,
    is_internal_location,
    is_utility_function,
)

USER_FILE = "/home/dev/proj/src/app.rs"


@pytest.mark.parametrize(
    "path",
    [
        "",
        "[vdso]",
        "<std>/vec.rs",
        "/rustc/abc123/library/core/src/ptr/mod.rs",
        "/home/dev/.cargo/registry/src/hashbrown/src/raw.rs",
        "/usr/lib/rust/library/alloc/src/vec.rs",
        "/work/crates/rsprof-trace/src/lib.rs",
        "lib.rs",
        "time.rs",
        "unix.rs",
        "/x/memchr.rs",
        "/x/maybe_uninit.rs",
        "/x/methods.rs",
        "mod.rs",
    ],
)
def test_internal_files(path):
    assert is_internal_file(path) is True


@pytest.mark.parametrize(
    "path",
    [USER_FILE, "/home/dev/proj/src/net/mod.rs", "examples/target_app/cache.rs"],
)
def test_user_files(path):
    assert is_internal_file(path) is False


def test_internal_location_by_function():
    loc = Location(USER_FILE, 10, 0, "alloc::raw_vec::RawVec<T>::grow")
    assert is_internal_location(loc) is True
    closure = Location(USER_FILE, 10, 0, "app::tick::{{closure}}")
    assert is_internal_location(closure) is True


def test_user_location_is_not_internal():
    assert is_internal_location(Location(USER_FILE, 1, 0, "target_app::app::tick")) is False


@pytest.mark.parametrize(
    "func",
    [
        "<app::Request as core::clone::Clone>::clone",
        "target_app::utils::format_bytes",
        "x::sanitize_for_log",
        "String::to_string",
    ],
)
def test_utility_functions(func):
    assert is_utility_function(func) is True


def test_non_utility_function():
    assert is_utility_function("target_app::processing::RequestProcessor::process") is False


def make_resolver(table):
    unknown = Location("", 0, 0, "[unknown]")
    return lambda addr: table.get(addr, unknown)


def test_skips_internal_frames():
    user = Location(USER_FILE, 42, 5, "target_app::app::Application::tick")
    table = {
        1: Location("/rustc/x/library/alloc/src/raw_vec.rs", 1, 0, "alloc::raw_vec::grow"),
        2: Location(USER_FILE, 3, 0, "__rust_alloc"),
        3: user,
    }
    assert find_user_frame([1, 2, 3], make_resolver(table)) == user


def test_utility_attributed_to_caller():
    helper = Location("/p/src/utils.rs", 5, 0, "target_app::utils::format_bytes")
    caller = Location("/p/src/validation.rs", 90, 0, "target_app::validation::check")
    table = {
        1: helper,
        2: Location("/p/src/fmt.rs", 1, 0, "core::fmt::write"),
        3: caller,
    }
    assert find_user_frame([1, 2, 3], make_resolver(table)) == caller


def test_utility_caller_may_come_from_library_file():
    helper = Location("/p/src/utils.rs", 5, 0, "target_app::utils::sanitize_for_log")
    caller = Location("lib.rs", 7, 0, "target_app::run")
    table = {1: helper, 2: caller}
    assert find_user_frame([1, 2], make_resolver(table)) == caller


def test_utility_without_caller_kept():
    helper = Location("/p/src/utils.rs", 5, 0, "target_app::utils::format_bytes")
    table = {1: helper, 2: Location("", 0, 0, "[unknown]")}
    assert find_user_frame([1, 2], make_resolver(table)) == helper


def test_fallback_to_unnamed_user_frame():
    unnamed = Location(USER_FILE, 8, 0, "[unknown]")
    table = {1: Location("[vdso]", 0, 0, "x"), 2: unnamed}
    assert find_user_frame([1, 2], make_resolver(table)) == unnamed


def test_all_internal_gives_marker():
    table = {1: Location("<std>/io.rs", 0, 0, "std::io::write")}
    result = find_user_frame([1], make_resolver(table))
    assert result == Location("[internal]", 0, 0, "[internal]")
    assert is_internal_location(result) is True


def test_empty_stack_gives_marker():
    result = find_user_frame([], make_resolver({}))
    assert result.function == "[internal]"
    assert is_internal_location(result) is True