"""Tests for per-target loss accounting and the sliding window."""

import random

import pytest

from ping_api.core.domain import AggregateBucket, Gap
from ping_api.core.ledger import LedgerSnapshot, TargetLedger, UPDATE_LOSS, UPDATE_PING

from conftest import INTERVAL_MS, T0, TARGET_A, WINDOW_MS


def _gap_tuples(ledger):
    return [(g.from_seq, g.to_seq, g.count) for g in ledger.gaps]


# =============================================================================
# SCENARIOS
# =============================================================================

class TestScenarios:

    def test_success_with_one_missing_sequence(self, ledger):
        ledger.record_success(1, 10.0, T0)
        ledger.record_success(2, 12.0, T0 + 1000)
        update = ledger.record_success(4, 9.0, T0 + 3000)

        assert ledger.received == 3
        assert ledger.lost == 1
        assert _gap_tuples(ledger) == [(3, 3, 1)]
        assert ledger.mean_rtt() == pytest.approx(10.33)
        assert update.kind == UPDATE_PING
        assert update.avg_rtt == pytest.approx(10.33)
        assert update.loss_percent == pytest.approx(25.0)

    def test_unreachable_after_success(self, ledger):
        for seq, rtt in ((1, 10.0), (2, 12.0), (4, 9.0)):
            ledger.record_success(seq, rtt, T0 + seq * 1000)

        update = ledger.record_loss(5, T0 + 5000)

        assert ledger.lost == 2
        assert _gap_tuples(ledger)[-1] == (5, 5, 1)
        assert ledger.last_seq == 5
        assert update.kind == UPDATE_LOSS
        assert update.point.rtt is None
        assert update.point.logical_seq == 5

    def test_consecutive_losses_form_one_gap(self, ledger):
        ledger.record_success(1, 10.0, T0)
        ledger.record_loss(2, T0 + 1000)
        ledger.record_loss(3, T0 + 2000)
        ledger.record_success(4, 10.0, T0 + 3000)

        assert _gap_tuples(ledger) == [(2, 3, 2)]
        assert ledger.lost == 2

    def test_unreachable_after_jump_counts_skipped_range(self, ledger):
        ledger.record_success(1, 10.0, T0)
        ledger.record_loss(5, T0 + 4000)

        assert ledger.lost == 4
        assert _gap_tuples(ledger) == [(2, 5, 4)]


# =============================================================================
# INVARIANTS
# =============================================================================

class TestInvariants:

    def test_loss_percent_is_zero_without_data(self, ledger):
        assert ledger.loss_percent() == 0.0
        assert ledger.mean_rtt() is None

    def test_non_increasing_sequence_is_ignored(self, ledger):
        ledger.record_success(5, 10.0, T0)

        assert ledger.record_success(5, 11.0, T0 + 1000) is None
        assert ledger.record_loss(3, T0 + 1000) is None
        assert ledger.received == 1
        assert ledger.lost == 0
        assert len(ledger.window) == 1

    def test_random_stream_keeps_totals_and_gaps_consistent(self):
        rng = random.Random(1234)
        ledger = TargetLedger(TARGET_A, WINDOW_MS)
        seq = 0
        first = None
        for i in range(500):
            seq += rng.choice((1, 1, 1, 2, 3, 7))
            first = seq if first is None else first
            now = T0 + i * 1000
            if rng.random() < 0.1:
                ledger.record_loss(seq, now)
            else:
                ledger.record_success(seq, rng.uniform(5, 50), now)

        assert ledger.received + ledger.lost == seq - first + 1
        assert sum(g.count for g in ledger.gaps) == ledger.lost

        starts = [g.from_seq for g in ledger.gaps]
        assert starts == sorted(starts)
        for left, right in zip(ledger.gaps, ledger.gaps[1:]):
            # non-overlapping and maximal
            assert left.to_seq + 1 < right.from_seq

    def test_window_never_holds_samples_older_than_span(self):
        ledger = TargetLedger(TARGET_A, 60_000)
        for i in range(300):
            now = T0 + i * 1000
            ledger.record_success(i + 1, 10.0, now)
            assert all(s.observed_at >= now - 60_000 for s in ledger.window)

        assert len(ledger.window) == 61

    def test_mean_counts_each_bucket_once(self, ledger):
        ledger.aggregates = [AggregateBucket(T0 - INTERVAL_MS, 1, 20.0, samples=600)]
        ledger.record_success(2, 10.0, T0)

        assert ledger.mean_rtt() == 15.0

    def test_history_is_sorted_by_time(self, ledger):
        ledger.aggregates = [AggregateBucket(T0 - INTERVAL_MS, 1, 20.0, samples=3)]
        ledger.record_success(7, 10.0, T0 + 5)
        ledger.record_loss(8, T0 + 6)

        history = ledger.history()

        assert [p["timestamp"] for p in history] == [T0 - INTERVAL_MS, T0 + 5, T0 + 6]
        assert history[0]["aggregated"] is True
        assert history[2]["rtt"] is None


# =============================================================================
# RESTORE
# =============================================================================

class TestRestore:

    def test_restore_uses_persisted_last_seq(self, ledger):
        ledger.restore(LedgerSnapshot(TARGET_A, received=40, lost=10, last_seq=50))

        seq = ledger.reconcile(1)
        ledger.record_success(seq, 10.0, T0)

        assert seq == 51
        assert ledger.received == 41
        assert ledger.gaps == []

    def test_restore_falls_back_to_last_bucket_and_gap(self, ledger):
        ledger.restore(
            LedgerSnapshot(
                TARGET_A,
                aggregates=[
                    AggregateBucket(T0, 30, 11.0),
                    AggregateBucket(T0 - INTERVAL_MS, 10, 12.0),
                ],
                gaps=[Gap(35, 36)],
                received=34,
                lost=2,
            )
        )

        assert [b.bucket_start for b in ledger.aggregates] == [T0 - INTERVAL_MS, T0]
        assert ledger.last_seq == 36
        assert ledger.seq_offset == 36
        assert ledger.last_aggregated_boundary == T0

    def test_restore_after_events_is_rejected(self, ledger):
        ledger.reconcile(1)

        with pytest.raises(RuntimeError):
            ledger.restore(LedgerSnapshot(TARGET_A))

    def test_invalid_window(self):
        with pytest.raises(ValueError):
            TargetLedger(TARGET_A, 0)
