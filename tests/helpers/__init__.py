"""Test helpers for FleetDeck."""

from tests.helpers.fake_apis import TEST_KEY, FakeBotApi, FakeControlPlane, make_identity

__all__ = ["TEST_KEY", "FakeBotApi", "FakeControlPlane", "make_identity"]
