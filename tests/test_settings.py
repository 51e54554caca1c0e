import pytest

from voucher_api.core.settings import Settings


@pytest.mark.parametrize("raw", ["0", "0.0", "0.00", "-1", "", "  ", None, 0, 0.0])
def test_non_positive_storage_timeout_disables_the_bound(raw) -> None:
    settings = Settings(voucher_storage_timeout_seconds=raw)

    assert settings.voucher_storage_timeout_seconds is None


def test_storage_timeout_accepts_fractional_seconds() -> None:
    settings = Settings(voucher_storage_timeout_seconds="2.5")

    assert settings.voucher_storage_timeout_seconds == 2.5


def test_storage_timeout_is_read_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("VOUCHER_STORAGE_TIMEOUT_SECONDS", "0.0")

    assert Settings().voucher_storage_timeout_seconds is None
