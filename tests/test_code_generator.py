import pytest

from subscription_activation.services.code_generator import (
    CODE_ALPHABET,
    build_activation_url,
    make_code,
    normalize_code,
)


@pytest.mark.parametrize("length", [8, 12, 24])
def test_codes_are_uppercase_url_safe_and_sized(length: int) -> None:
    code = make_code(length)

    assert len(code) == length
    assert set(code) <= set(CODE_ALPHABET)
    assert code == code.upper()


def test_default_code_length_is_twelve() -> None:
    assert len(make_code()) == 12


def test_hundred_thousand_codes_do_not_collide() -> None:
    codes = [make_code() for _ in range(100_000)]

    assert len(set(codes)) == len(codes)


def test_short_codes_are_refused() -> None:
    with pytest.raises(ValueError):
        make_code(4)


def test_normalize_code_strips_and_uppercases() -> None:
    assert normalize_code("  ab12cd34ef56 ") == "AB12CD34EF56"
    assert normalize_code(None) == ""


def test_activation_url_escapes_query_values() -> None:
    url = build_activation_url("https://activate.test/", "AB-12_CD34EF", "sub 1&x")

    assert url == "https://activate.test/api/activate?code=AB-12_CD34EF&subId=sub%201%26x"
