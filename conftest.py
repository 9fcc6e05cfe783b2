import math

import numpy as np
import pytest
from hypothesis import settings

from central_multiplicity import EventMultiplicityRecord, EtaAxisSpec

# Hypothesis profiles
settings.register_profile("ci", max_examples=50, deadline=None)
settings.register_profile("dev", max_examples=10, deadline=None)
settings.register_profile("debug", max_examples=1, deadline=None)
settings.load_profile("ci")


@pytest.fixture
def eta_axis():
    """Central barrel-like axis used throughout the tests."""
    return EtaAxisSpec(nbins=20, low=-4.0, high=6.0)


@pytest.fixture
def record(eta_axis):
    return EventMultiplicityRecord().initialize(eta_axis)


@pytest.fixture
def mc_record(eta_axis):
    return EventMultiplicityRecord(simulated=True).initialize(eta_axis)


@pytest.fixture
def make_event(eta_axis):
    """
    Factory producing a filled record for one synthetic event.

    Tracks are drawn uniformly inside the accepted eta window so that the
    acceptance row and the signal agree.
    """
    def _make(seed, n_tracks=50, eta_window=(-2.0, 2.0), simulated=False):
        rng = np.random.default_rng(seed)
        rec = EventMultiplicityRecord(simulated=simulated).initialize(eta_axis)
        rec.fill_signal(
            rng.uniform(*eta_window, n_tracks),
            rng.uniform(0.0, 2 * math.pi, n_tracks),
        )
        rec.mark_acceptance(*eta_window)
        return rec
    return _make
