"""
Tests for the database manager: cache discipline, handle swaps, refresh
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from geoipd.errors import (
    ChecksumMismatchError,
    ConfigError,
    DecodeError,
    InvalidAddressError,
    NotReadyError,
    OpenError,
)
from geoipd.manager import DatabaseManager, RefreshOutcome
from geoipd.schemas.record import Record
from tests.fakes import (
    ARCHIVE_URL,
    CHECKSUM_URL,
    ESTONIA,
    ESTONIA_IP,
    GERMANY,
    FakeHandle,
    make_release,
    md5,
)

OTHER_IP = "8.8.8.8"


class TestLookup:

    def test_invalid_cache_size(self, pipeline):
        with pytest.raises(ConfigError):
            DatabaseManager(pipeline, cache_size=0)

    def test_not_ready_before_install(self, manager):
        assert not manager.ready
        with pytest.raises(NotReadyError):
            manager.lookup(ESTONIA_IP)

    def test_second_lookup_is_cache_hit(self, manager):
        handle = FakeHandle({ESTONIA_IP: ESTONIA})
        manager.install_new_handle(handle)

        first = manager.lookup(ESTONIA_IP)
        second = manager.lookup(ESTONIA_IP)

        assert first.country_code == "EE"
        assert second == first
        assert handle.calls == [ESTONIA_IP]

    def test_no_data_result_is_cached(self, manager):
        handle = FakeHandle({})
        manager.install_new_handle(handle)

        assert manager.lookup("10.1.2.3") == Record.empty()
        assert manager.lookup("10.1.2.3") == Record.empty()
        assert handle.calls == ["10.1.2.3"]
        assert manager.cached_addresses() == ["10.1.2.3"]

    def test_present_but_empty_iso_code_kept(self, manager):
        manager.install_new_handle(FakeHandle({ESTONIA_IP: {"country": {"names": {"en": "Nowhere"}}}}))
        record = manager.lookup(ESTONIA_IP)
        assert record.country is not None
        assert record.country_code is None
        assert record.found

    def test_address_normalization_shares_cache_entry(self, manager):
        handle = FakeHandle({ESTONIA_IP: ESTONIA})
        manager.install_new_handle(handle)

        manager.lookup(f" {ESTONIA_IP} ")
        manager.lookup(f"::ffff:{ESTONIA_IP}")

        assert handle.calls == [ESTONIA_IP]

    def test_ipv6_lookup_uses_compressed_form(self, manager):
        handle = FakeHandle({})
        manager.install_new_handle(handle)
        manager.lookup("2001:0db8:0000:0000:0000:0000:0000:0001")
        assert handle.calls == ["2001:db8::1"]

    @pytest.mark.parametrize("value", ["not-an-ip", "", "1.2.3.4/24", "999.1.1.1", None])
    def test_invalid_address(self, manager, value):
        handle = FakeHandle({})
        manager.install_new_handle(handle)
        with pytest.raises(InvalidAddressError):
            manager.lookup(value)
        assert handle.calls == []

    def test_decode_error_is_isolated(self, manager):
        handle = FakeHandle({ESTONIA_IP: ESTONIA}, fail={OTHER_IP})
        manager.install_new_handle(handle)

        with pytest.raises(DecodeError) as exc_info:
            manager.lookup(OTHER_IP)
        assert isinstance(exc_info.value.__cause__, ValueError)

        assert manager.lookup(ESTONIA_IP).country_code == "EE"
        # failures are not cached
        with pytest.raises(DecodeError):
            manager.lookup(OTHER_IP)
        assert handle.calls.count(OTHER_IP) == 2
        assert not handle.closed

    def test_lookup_after_ghost_list_overflow(self, pipeline):
        manager = DatabaseManager(pipeline, cache_size=2)
        handle = FakeHandle({})
        manager.install_new_handle(handle)

        for i in range(1, 5):
            manager.lookup(f"10.0.0.{i}")
        assert manager.lookup("10.0.0.1") == Record.empty()

        assert handle.calls.count("10.0.0.1") == 2
        assert len(manager.cached_addresses()) == 2
        manager.close()


class TestInstall:

    def test_install_purges_cache(self, manager):
        old = FakeHandle({ESTONIA_IP: ESTONIA}, name="old")
        new = FakeHandle({ESTONIA_IP: ESTONIA}, name="new")
        manager.install_new_handle(old)
        manager.lookup(ESTONIA_IP)
        manager.lookup(OTHER_IP)

        manager.install_new_handle(new)

        assert manager.cached_addresses() == []
        manager.lookup(ESTONIA_IP)
        manager.lookup(OTHER_IP)
        # identical data, still decoded again from the new handle
        assert new.calls == [ESTONIA_IP, OTHER_IP]
        assert old.closed
        assert not new.closed
        assert manager.version == 2

    def test_in_flight_lookup_keeps_old_handle_open(self, manager):
        old = FakeHandle({ESTONIA_IP: GERMANY}, name="old")
        new = FakeHandle({ESTONIA_IP: ESTONIA}, name="new")
        manager.install_new_handle(old)
        old.gate = threading.Event()

        results = []
        reader = threading.Thread(target=lambda: results.append(manager.lookup(ESTONIA_IP)))
        reader.start()
        assert old.entered.wait(5)

        manager.install_new_handle(new)
        assert not old.closed

        old.gate.set()
        reader.join(5)

        assert results[0].country_code == "DE"
        assert old.closed
        assert manager.lookup(ESTONIA_IP).country_code == "EE"

    def test_old_snapshot_entries_do_not_leak_into_new_cache(self, manager):
        old = FakeHandle({ESTONIA_IP: GERMANY}, name="old")
        manager.install_new_handle(old)
        old.gate = threading.Event()

        reader = threading.Thread(target=manager.lookup, args=(ESTONIA_IP,))
        reader.start()
        assert old.entered.wait(5)
        manager.install_new_handle(FakeHandle({ESTONIA_IP: ESTONIA}, name="new"))
        old.gate.set()
        reader.join(5)

        # the old reader populated only its own snapshot's cache
        assert manager.cached_addresses() == []
        assert manager.lookup(ESTONIA_IP).country_code == "EE"

    def test_close(self, manager):
        handle = FakeHandle({})
        manager.install_new_handle(handle)
        manager.close()

        assert handle.closed
        assert not manager.ready
        with pytest.raises(NotReadyError):
            manager.lookup(ESTONIA_IP)

    def test_install_after_close_discards_handle(self, manager):
        manager.close()
        handle = FakeHandle({})
        manager.install_new_handle(handle)
        assert handle.closed
        assert not manager.ready

    def test_close_error_is_logged_not_raised(self, manager, caplog):
        class Stubborn(FakeHandle):
            def close(self):
                raise OSError("device busy")

        manager.install_new_handle(Stubborn({}))
        manager.install_new_handle(FakeHandle({}))
        assert manager.ready
        assert "failed to close previous database" in caplog.text


class TestRefresh:

    def test_startup_refresh_then_lookup(self, manager, remote):
        remote.publish(make_release({ESTONIA_IP: ESTONIA}))

        assert manager.refresh() is RefreshOutcome.INSTALLED
        assert manager.lookup(ESTONIA_IP).country_code == "EE"
        assert manager.last_refresh["outcome"] == "installed"

    def test_refresh_is_idempotent(self, manager, remote, opener):
        remote.publish(make_release({ESTONIA_IP: ESTONIA}))
        manager.refresh()
        manager.lookup(ESTONIA_IP)
        manager.lookup(OTHER_IP)
        cached = manager.cached_addresses()
        remote.calls.clear()

        assert manager.refresh() is RefreshOutcome.NO_CHANGE
        assert manager.refresh() is RefreshOutcome.NO_CHANGE

        assert remote.calls == [CHECKSUM_URL, CHECKSUM_URL]
        assert manager.cached_addresses() == cached
        assert len(opener.opened) == 1
        assert manager.version == 1

    def test_failed_refresh_keeps_serving(self, manager, remote, files, opener):
        remote.publish(make_release({ESTONIA_IP: ESTONIA}))
        manager.refresh()
        handle = opener.opened[0]
        before = (files.data_path.read_bytes(), files.checksum_path.read_bytes())

        remote.publish(make_release({ESTONIA_IP: GERMANY}), checksum="0" * 32)
        with pytest.raises(ChecksumMismatchError):
            manager.refresh()

        assert (files.data_path.read_bytes(), files.checksum_path.read_bytes()) == before
        assert not handle.closed
        assert manager.version == 1
        assert manager.lookup(ESTONIA_IP).country_code == "EE"
        assert manager.last_refresh["outcome"] == "error"
        assert "checksum mismatch" in manager.last_refresh["error"]

    def test_failed_open_is_retried_on_next_refresh(self, manager, remote, files, opener):
        remote.publish(make_release({ESTONIA_IP: ESTONIA}))
        manager.refresh()
        assert manager.lookup(ESTONIA_IP).country_code == "EE"

        update = make_release({ESTONIA_IP: GERMANY}, folder="GeoLite2-Country_20240109")
        remote.publish(update)
        opener.fail_next = True
        with pytest.raises(OpenError):
            manager.refresh()

        # new files are on disk but the old handle still serves
        assert files.read_checksum() == md5(update)
        assert manager.serving_checksum != md5(update)
        assert manager.version == 1
        assert manager.lookup(ESTONIA_IP).country_code == "EE"

        remote.calls.clear()
        assert manager.refresh() is RefreshOutcome.INSTALLED
        assert remote.calls == [CHECKSUM_URL]
        assert manager.serving_checksum == md5(update)
        assert manager.version == 2
        assert manager.lookup(ESTONIA_IP).country_code == "DE"
        assert opener.opened[0].closed

        assert manager.refresh() is RefreshOutcome.NO_CHANGE

    def test_update_swaps_data(self, manager, remote, opener):
        remote.publish(make_release({ESTONIA_IP: GERMANY}))
        manager.refresh()
        assert manager.lookup(ESTONIA_IP).country_code == "DE"

        remote.publish(make_release({ESTONIA_IP: ESTONIA}, folder="GeoLite2-Country_20240109"))
        remote.calls.clear()

        assert manager.refresh() is RefreshOutcome.INSTALLED
        assert remote.calls == [CHECKSUM_URL, ARCHIVE_URL]
        assert manager.lookup(ESTONIA_IP).country_code == "EE"
        assert opener.opened[0].closed

    def test_refresh_does_not_block_lookups(self, manager, remote):
        remote.publish(make_release({ESTONIA_IP: GERMANY}))
        manager.refresh()

        remote.publish(make_release({ESTONIA_IP: ESTONIA}, folder="GeoLite2-Country_20240109"))
        in_download = threading.Event()
        release = threading.Event()
        real_fetch = manager.pipeline.fetch

        def slow_fetch(url):
            if url == ARCHIVE_URL:
                in_download.set()
                release.wait(5)
            return real_fetch(url)

        manager.pipeline.fetch = slow_fetch
        refresher = threading.Thread(target=manager.refresh)
        refresher.start()
        try:
            assert in_download.wait(5)
            # download in progress: reads proceed against the current snapshot
            assert manager.lookup(ESTONIA_IP).country_code == "DE"
        finally:
            release.set()
            refresher.join(5)
        assert manager.lookup(ESTONIA_IP).country_code == "EE"

    def test_concurrent_lookups_during_install(self, manager, remote):
        remote.publish(make_release({ESTONIA_IP: GERMANY}))
        manager.refresh()
        remote.publish(make_release({ESTONIA_IP: ESTONIA}, folder="GeoLite2-Country_20240109"))

        addresses = [ESTONIA_IP] + [f"10.0.{i // 256}.{i % 256}" for i in range(200)]

        def hammer(n):
            out = []
            for i in range(50):
                out.append(manager.lookup(addresses[(n + i) % len(addresses)]).country_code)
            return out

        with ThreadPoolExecutor(max_workers=16) as pool:
            futures = [pool.submit(hammer, n) for n in range(32)]
            assert manager.refresh() is RefreshOutcome.INSTALLED
            results = [f.result() for f in futures]

        seen = {code for batch in results for code in batch}
        assert seen <= {"DE", "EE", None}
        assert manager.lookup(ESTONIA_IP).country_code == "EE"

    def test_status(self, manager, remote, files):
        assert manager.status()["ready"] is False
        remote.publish(make_release({ESTONIA_IP: ESTONIA}))
        manager.refresh()
        manager.lookup(ESTONIA_IP)

        status = manager.status()
        assert status["ready"] is True
        assert status["version"] == 1
        assert status["checksum"] == manager.serving_checksum == files.read_checksum()
        assert status["cache_size"] == 1
        assert status["cache_capacity"] == 16
        assert status["last_refresh"]["outcome"] == "installed"
