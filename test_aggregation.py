"""
Record aggregation: test suite
==============================

Bin-wise merging of event records, binning compatibility checks and
parallel fill-then-merge usage.
"""

import math
import warnings
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from hypothesis import given, settings, strategies as st

from central_multiplicity import (
    EventMultiplicityRecord, EtaAxisSpec, CorrectionFlag,
    BinningMismatchError, OriginMismatchError,
    check_compatible, merge_records,
)

pytestmark = pytest.mark.aggregation

AXIS = EtaAxisSpec(20, -4.0, 6.0)


def synthetic_event(seed, n_tracks=30, simulated=False):
    """Unit-weight tracks inside a seed-dependent eta window."""
    rng = np.random.default_rng(seed)
    low = rng.uniform(-3.5, 0.0)
    high = low + rng.uniform(1.0, 5.0)
    rec = EventMultiplicityRecord(simulated=simulated).initialize(AXIS)
    rec.fill_signal(rng.uniform(low, high, n_tracks), rng.uniform(0.0, 2 * math.pi, n_tracks))
    rec.mark_acceptance(low, high)
    return rec


def cells(rec):
    h = rec.get_histogram()
    return h.values(flow=True).copy(), h.variances(flow=True).copy()


class TestMerge:

    def test_merge_sums_signal_and_acceptance(self):
        a, b = synthetic_event(1), synthetic_event(2)
        expected_signal = a.signal_values() + b.signal_values()
        expected_acceptance = a.acceptance_values() + b.acceptance_values()

        a.merge(b)

        np.testing.assert_array_equal(a.signal_values(), expected_signal)
        np.testing.assert_array_equal(a.acceptance_values(), expected_acceptance)

    def test_iadd_merges(self):
        a, b = synthetic_event(3), synthetic_event(4)
        total = a.signal_sum() + b.signal_sum()
        a += b
        assert a.signal_sum() == total

    def test_merge_records_leaves_inputs_untouched(self):
        events = [synthetic_event(seed) for seed in range(5)]
        before = [cells(rec) for rec in events]

        total = merge_records(events)

        for rec, (values, variances) in zip(events, before):
            np.testing.assert_array_equal(cells(rec)[0], values)
            np.testing.assert_array_equal(cells(rec)[1], variances)
        assert total.signal_sum() == sum(rec.signal_sum() for rec in events)
        assert total.acceptance_sum() == sum(rec.acceptance_sum() for rec in events)
        assert total.binning == events[0].binning

    def test_acceptance_row_counts_accepting_events(self):
        full = EventMultiplicityRecord().initialize(AXIS)
        full.mark_acceptance()
        half = EventMultiplicityRecord().initialize(AXIS)
        half.mark_acceptance(eta_high=1.0)

        total = merge_records([full, half, full])
        acceptance = total.acceptance_values()
        centers = AXIS.centers
        np.testing.assert_array_equal(acceptance[centers <= 1.0], 3.0)
        np.testing.assert_array_equal(acceptance[centers > 1.0], 2.0)

    def test_merge_records_requires_input(self):
        with pytest.raises(ValueError):
            merge_records([])

    def test_merge_keeps_origin(self):
        total = merge_records([synthetic_event(1, simulated=True), synthetic_event(2, simulated=True)])
        assert total.simulated
        assert total.display_name() == "CentralClustersMC"


class TestMergeProperties:
    """Order of combination does not change the result."""

    @given(seeds=st.lists(st.integers(min_value=0, max_value=10_000), min_size=2, max_size=6))
    @settings(max_examples=25)
    def test_commutative(self, seeds):
        events = [synthetic_event(seed) for seed in seeds]
        forward = merge_records(events)
        backward = merge_records(list(reversed(events)))
        np.testing.assert_array_equal(cells(forward)[0], cells(backward)[0])
        np.testing.assert_array_equal(cells(forward)[1], cells(backward)[1])

    @given(seeds=st.tuples(*(st.integers(min_value=0, max_value=10_000),) * 3))
    @settings(max_examples=25)
    def test_associative(self, seeds):
        a, b, c = (synthetic_event(seed) for seed in seeds)
        left = merge_records([merge_records([a, b]), c])
        right = merge_records([a, merge_records([b, c])])
        np.testing.assert_array_equal(cells(left)[0], cells(right)[0])
        np.testing.assert_array_equal(cells(left)[1], cells(right)[1])

    def test_parallel_workers_match_sequential(self):
        seeds = list(range(16))

        def worker(chunk):
            # One record per worker, reused across its events
            local_total = EventMultiplicityRecord().initialize(AXIS)
            for seed in chunk:
                local_total.merge(synthetic_event(seed))
            return local_total

        chunks = [seeds[i::4] for i in range(4)]
        with ThreadPoolExecutor(max_workers=4) as pool:
            partials = list(pool.map(worker, chunks))

        parallel = merge_records(partials)
        sequential = merge_records(synthetic_event(seed) for seed in seeds)
        np.testing.assert_array_equal(cells(parallel)[0], cells(sequential)[0])


class TestCompatibility:

    def test_compatible_records(self):
        check_compatible(synthetic_event(1), synthetic_event(2))

    @pytest.mark.parametrize("other_axis", [
        EtaAxisSpec(10, -4.0, 6.0),
        EtaAxisSpec(20, -3.4, 5.1),
        EtaAxisSpec.from_edges(np.concatenate([np.linspace(-4.0, 5.0, 20), [6.0]])),
    ])
    def test_binning_mismatch_rejected(self, other_axis):
        a = synthetic_event(1)
        b = EventMultiplicityRecord().initialize(other_axis)
        with pytest.raises(BinningMismatchError) as info:
            a.merge(b)
        assert isinstance(info.value, ValueError)
        assert info.value.left is not None and info.value.right is not None
        with pytest.raises(BinningMismatchError):
            check_compatible(a, b)

    def test_uninitialized_rejected(self):
        a = synthetic_event(1)
        with pytest.raises(BinningMismatchError):
            a.merge(EventMultiplicityRecord())
        with pytest.raises(BinningMismatchError):
            check_compatible(EventMultiplicityRecord(), a)
        with pytest.raises(BinningMismatchError):
            merge_records([EventMultiplicityRecord()])

    def test_origin_mismatch_rejected(self):
        with pytest.raises(OriginMismatchError):
            synthetic_event(1).merge(synthetic_event(2, simulated=True))

    def test_failed_merge_leaves_target_untouched(self):
        a = synthetic_event(1)
        before = cells(a)
        with pytest.raises(BinningMismatchError):
            a.merge(EventMultiplicityRecord().initialize((5, 0.0, 1.0)))
        np.testing.assert_array_equal(cells(a)[0], before[0])

    def test_regular_and_variable_axes_with_equal_edges_merge(self):
        a = synthetic_event(1)
        b = EventMultiplicityRecord().initialize(EtaAxisSpec.from_edges(np.linspace(-4.0, 6.0, 21)))
        b.fill_signal([0.1, 0.2], 1.0)
        b.mark_acceptance(0.0, 0.5)
        expected_signal = a.signal_values() + b.signal_values()
        expected_acceptance = a.acceptance_values() + b.acceptance_values()

        assert a.binning.compatible_with(b.binning)
        check_compatible(a, b)
        a.merge(b)

        np.testing.assert_array_equal(a.signal_values(), expected_signal)
        np.testing.assert_array_equal(a.acceptance_values(), expected_acceptance)

    def test_shift_beyond_span_tolerance_rejected(self):
        regular = EventMultiplicityRecord().initialize((20, -4.0, 6.0)).binning
        shifted = EventMultiplicityRecord().initialize(
            EtaAxisSpec.from_edges(np.linspace(-4.0, 6.0, 21) + 1e-9)
        ).binning
        assert not regular.compatible_with(shifted)

class TestMergedFlags:

    def test_common_flags_kept_without_warning(self):
        a, b = synthetic_event(1), synthetic_event(2)
        for rec in (a, b):
            rec.set_corrected(CorrectionFlag.SECONDARY | CorrectionFlag.ACCEPTANCE)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            a.merge(b)
        assert a.is_secondary_corrected()
        assert a.is_acceptance_corrected()

    def test_differing_flags_warn_and_intersect(self):
        a, b = synthetic_event(1), synthetic_event(2)
        a.set_corrected(CorrectionFlag.SECONDARY | CorrectionFlag.EMPIRICAL)
        b.set_corrected(CorrectionFlag.SECONDARY)
        with pytest.warns(RuntimeWarning):
            a.merge(b)
        assert a.correction_flags == CorrectionFlag.SECONDARY

    def test_merge_records_intersects_flags(self):
        a, b = synthetic_event(1), synthetic_event(2)
        a.set_corrected(CorrectionFlag.EMPIRICAL)
        with pytest.warns(RuntimeWarning):
            total = merge_records([a, b])
        assert total.correction_flags == CorrectionFlag.NONE

    def test_flag_warning_raised_before_cells_change(self):
        a, b = synthetic_event(1), synthetic_event(2)
        a.set_corrected(CorrectionFlag.EMPIRICAL)
        before = cells(a)
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            with pytest.raises(RuntimeWarning):
                a.merge(b)
        np.testing.assert_array_equal(cells(a)[0], before[0])
        np.testing.assert_array_equal(cells(a)[1], before[1])
        assert a.correction_flags == CorrectionFlag.EMPIRICAL
