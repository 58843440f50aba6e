from tests.fakes.clock import FakeClock
from tests.fakes.cluster import FakeConditionClient, FakeResourceClient, injected_status

__all__ = ["FakeClock", "FakeConditionClient", "FakeResourceClient", "injected_status"]
