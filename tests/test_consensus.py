"""Unit tests for the consensus rule (`compute_consensus`)."""

from __future__ import annotations

from core.domain.family import IpFamily
from core.domain.models import Address, DetectionSample
from core.services.ip_detector import compute_consensus


def _ok(source: str, text: str, family: IpFamily = IpFamily.V4) -> DetectionSample:
    return DetectionSample(source=source, family=family, address=Address.parse(text), ok=True)


def _failed(source: str, family: IpFamily = IpFamily.V4) -> DetectionSample:
    return DetectionSample(source=source, family=family, error="timed out")


class TestComputeConsensus:
    def test_majority_wins(self):
        samples = [_ok("a", "1.2.3.4"), _ok("b", "1.2.3.4"), _ok("c", "5.6.7.8")]

        assert compute_consensus(samples, 2, IpFamily.V4) == Address.parse("1.2.3.4")

    def test_majority_wins_regardless_of_minority_spread(self):
        samples = [
            _ok("a", "9.9.9.9"),
            _ok("b", "1.2.3.4"),
            _ok("c", "1.2.3.4"),
            _ok("d", "5.6.7.8"),
            _ok("e", "1.2.3.4"),
            _ok("f", "7.7.7.7"),
        ]

        assert compute_consensus(samples, 3, IpFamily.V4) == Address.parse("1.2.3.4")

    def test_below_threshold_is_undetermined(self):
        samples = [_ok("a", "1.2.3.4"), _ok("b", "5.6.7.8"), _ok("c", "9.9.9.9")]

        assert compute_consensus(samples, 2, IpFamily.V4) is None

    def test_failed_samples_do_not_vote(self):
        samples = [_ok("a", "1.2.3.4"), _failed("b"), _failed("c")]

        assert compute_consensus(samples, 2, IpFamily.V4) is None
        assert compute_consensus(samples, 1, IpFamily.V4) == Address.parse("1.2.3.4")

    def test_tie_goes_to_earliest_configured_source(self):
        samples = [
            _ok("late", "5.6.7.8"),
            _ok("first", "1.2.3.4"),
            _ok("second", "5.6.7.8"),
            _ok("third", "1.2.3.4"),
        ]
        order = ["first", "second", "third", "late"]

        assert compute_consensus(samples, 2, IpFamily.V4, order) == Address.parse("1.2.3.4")

    def test_samples_of_other_family_are_ignored(self):
        samples = [
            _ok("a", "2001:db8::1", IpFamily.V6),
            _ok("b", "2001:db8::1", IpFamily.V6),
            _ok("c", "1.2.3.4"),
        ]

        assert compute_consensus(samples, 2, IpFamily.V4) is None
        assert compute_consensus(samples, 2, IpFamily.V6) == Address.parse("2001:db8::1")

    def test_wrong_family_address_counts_as_failure(self):
        mismatched = DetectionSample(
            source="a",
            family=IpFamily.V4,
            address=Address.parse("2001:db8::1"),
            ok=True,
        )

        assert compute_consensus([mismatched, _ok("b", "1.2.3.4")], 2, IpFamily.V4) is None

    def test_mapped_address_is_not_the_v4_address(self):
        assert Address.parse("1.2.3.4") != Address.parse("::ffff:1.2.3.4")
