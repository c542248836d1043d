from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from prayer_guard.moderation.errors import PersistenceError
from prayer_guard.moderation.policy import PolicyCache
from prayer_guard.moderation.schemas import DEFAULT_POLICY, DEFAULT_THRESHOLDS, PolicyConfig


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestPolicyConfig:
    def test_defaults(self):
        assert DEFAULT_POLICY.enabled
        assert not DEFAULT_POLICY.strict_mode
        assert DEFAULT_POLICY.auto_reject
        assert DEFAULT_POLICY.thresholds == DEFAULT_THRESHOLDS

    def test_partial_thresholds_are_completed(self):
        policy = PolicyConfig(thresholds={"spam": 0.9})
        assert policy.thresholds["spam"] == 0.9
        assert policy.thresholds["self_harm"] == 0.4

    @pytest.mark.parametrize("value", [-0.1, 1.01])
    def test_out_of_range_threshold(self, value):
        with pytest.raises(ValidationError):
            PolicyConfig(thresholds={"spam": value})

    def test_unknown_category(self):
        with pytest.raises(ValidationError):
            PolicyConfig(thresholds={"blasphemy": 0.5})


class TestPolicyCache:
    def test_missing_row_falls_back_to_defaults(self, store):
        assert PolicyCache(store).get() == DEFAULT_POLICY

    def test_store_failure_falls_back_to_defaults(self):
        store = MagicMock()
        store.read_policy.side_effect = PersistenceError("db down")

        assert PolicyCache(store).get() == DEFAULT_POLICY

    def test_cached_within_ttl(self, clock):
        store = MagicMock()
        store.read_policy.return_value = PolicyConfig(strict_mode=True)
        cache = PolicyCache(store, ttl=60, clock=clock)

        assert cache.get().strict_mode
        clock.now += 59
        store.read_policy.return_value = PolicyConfig(strict_mode=False)

        assert cache.get().strict_mode
        assert store.read_policy.call_count == 1

    def test_refreshed_after_ttl(self, clock):
        store = MagicMock()
        store.read_policy.return_value = PolicyConfig(strict_mode=True)
        cache = PolicyCache(store, ttl=60, clock=clock)
        cache.get()

        clock.now += 60
        store.read_policy.return_value = PolicyConfig(strict_mode=False)

        assert not cache.get().strict_mode
        assert store.read_policy.call_count == 2

    def test_defaults_are_not_cached(self, clock):
        store = MagicMock()
        store.read_policy.return_value = None
        cache = PolicyCache(store, clock=clock)
        cache.get()

        store.read_policy.return_value = PolicyConfig(enabled=False)

        assert not cache.get().enabled

    def test_update_merges_thresholds(self, store, clock):
        cache = PolicyCache(store, clock=clock)
        cache.update({"thresholds": {"spam": 0.8}})

        policy = cache.update({"thresholds": {"profanity": 0.3}}, updated_by="admin")

        assert policy.thresholds["spam"] == 0.8
        assert policy.thresholds["profanity"] == 0.3
        assert store.read_policy() == policy

    def test_update_is_visible_immediately(self, store, clock):
        cache = PolicyCache(store, clock=clock)
        assert cache.get().enabled

        cache.update({"enabled": False})

        assert not cache.get().enabled

    def test_update_refuses_when_current_row_unreadable(self):
        store = MagicMock()
        store.read_policy.side_effect = PersistenceError("db down")

        with pytest.raises(PersistenceError):
            PolicyCache(store).update({"auto_reject": False})

        store.write_policy.assert_not_called()

    def test_update_rejects_unknown_field(self, store):
        with pytest.raises(KeyError):
            PolicyCache(store).update({"nonsense": True})
