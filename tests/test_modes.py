import threading

from slamkit.modes import MapChangeWatcher, ModeChange, ModeRequests


def test_no_pending_change_initially():
    requests = ModeRequests()
    change = requests.take_mode_change()
    assert change == ModeChange(activate=False, deactivate=False)
    assert not change


def test_activate_is_taken_once():
    requests = ModeRequests()
    requests.activate_localization_mode()
    change = requests.take_mode_change()
    assert change.activate is True
    assert change.deactivate is False
    assert bool(change) is True
    assert not requests.take_mode_change()


def test_deactivate_is_taken_once():
    requests = ModeRequests()
    requests.deactivate_localization_mode()
    assert requests.take_mode_change() == ModeChange(activate=False, deactivate=True)
    assert requests.take_mode_change() == ModeChange()


def test_both_requests_are_reported_together():
    requests = ModeRequests()
    requests.activate_localization_mode()
    requests.deactivate_localization_mode()
    assert requests.take_mode_change() == ModeChange(activate=True, deactivate=True)


def test_reset_is_taken_once():
    requests = ModeRequests()
    assert requests.take_reset() is False
    requests.request_reset()
    assert requests.take_reset() is True
    assert requests.take_reset() is False


def test_reset_and_mode_are_independent():
    requests = ModeRequests()
    requests.request_reset()
    assert not requests.take_mode_change()
    assert requests.take_reset() is True


def test_requests_from_many_threads_are_seen():
    requests = ModeRequests()
    threads = [threading.Thread(target=requests.activate_localization_mode) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert requests.take_mode_change().activate is True
    assert requests.take_mode_change().activate is False


def test_map_change_watcher_sequence():
    watcher = MapChangeWatcher()
    assert watcher.changed(0) is False
    assert watcher.changed(1) is True
    assert watcher.changed(1) is False
    assert watcher.changed(0) is False
    assert watcher.changed(3) is True
    assert watcher.changed(2) is False


def test_map_change_watchers_are_independent():
    first = MapChangeWatcher()
    second = MapChangeWatcher()
    assert first.changed(2) is True
    assert second.changed(2) is True