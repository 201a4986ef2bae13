import itertools

from zway_pump.models import DeviceSnapshot
from zway_pump.reconcile import discover, is_supported_device, reconcile

from conftest import make_device


def test_added_and_removed_preserve_order():
    delta = reconcile([3, 1, 2], [5, 2, 4, 3])
    assert delta.added == (5, 4)
    assert delta.removed == (1,)


def test_every_id_is_accounted_for():
    ids = [1, 2, 3, 4]
    for t_size, d_size in itertools.product(range(5), repeat=2):
        for tracked in itertools.combinations(ids, t_size):
            for discovered in itertools.combinations(ids, d_size):
                delta = reconcile(tracked, discovered)
                both = set(tracked) & set(discovered)
                assert set(delta.added) | set(delta.removed) | both == set(tracked) | set(discovered)
                assert not set(delta.added) & set(delta.removed)


def test_ignored_ids_never_added():
    tracked = {1}
    discovered = [1, 2, 3, 4]
    ignore = {3, 9}
    delta = reconcile(tracked, discovered, ignore)
    assert not set(delta.added) & ignore
    # ignored ids are excluded, everything else is accounted for
    accounted = set(delta.added) | set(delta.removed) | (tracked & set(discovered)) | (set(discovered) & ignore)
    assert accounted == tracked | set(discovered)


def test_nuke_removes_everything_tracked():
    for discovered in ([], [1, 2], [4, 5, 6]):
        delta = reconcile([1, 2, 3], discovered, nuke=True)
        assert delta.removed == (1, 2, 3)
        assert delta.added == ()


def test_only_supported_profile_is_discovered():
    snapshots = {
        7: DeviceSnapshot.from_json(7, make_device()),
        8: DeviceSnapshot.from_json(8, make_device(vendor="Aeotec")),
        9: DeviceSnapshot.from_json(9, make_device(device_type="Binary Power Switch ")),
        10: DeviceSnapshot.from_json(10, make_device()),
    }
    assert is_supported_device(snapshots[7])
    assert not is_supported_device(snapshots[8])
    assert discover(snapshots) == [7, 10]


def test_discover_skips_ignored_devices():
    snapshots = {
        7: DeviceSnapshot.from_json(7, make_device()),
        10: DeviceSnapshot.from_json(10, make_device()),
    }
    assert discover(snapshots, ignore=[7]) == [10]
