"""Tick bitmap index tests"""
import numpy as np
import pytest
from vault_model.src.constants import MIN_TICK, MAX_TICK, COLD_TICK
from vault_model.src.errors import TickOutOfRange
from vault_model.src.state.tick_has_debt import (
    TickHasDebt,
    get_array_index,
    get_first_tick_for_array,
    get_first_tick_for_map_in_array,
    get_tick_indices,
)


def test_array_index():
    assert get_array_index(MIN_TICK) == 0
    assert get_array_index(-14336) == 0
    assert get_array_index(-14335) == 1
    assert get_array_index(0) == 7
    assert get_array_index(MAX_TICK) == 15


def test_first_tick_for_array():
    assert get_first_tick_for_array(0) == -16383
    assert get_first_tick_for_array(1) == -14335
    assert get_first_tick_for_array(8) == 1
    assert get_first_tick_for_array(15) == 14337
    assert get_first_tick_for_map_in_array(0, 1) == -16383 + 256


def test_tick_indices():
    assert get_tick_indices(MIN_TICK) == (0, 0, 0, 0)
    assert get_tick_indices(MIN_TICK + 9) == (0, 0, 1, 1)
    assert get_tick_indices(MIN_TICK + 256) == (0, 1, 0, 0)
    assert get_tick_indices(MIN_TICK + 2048) == (1, 0, 0, 0)
    assert get_tick_indices(MAX_TICK) == (15, 7, 31, 6)
    with pytest.raises(TickOutOfRange):
        get_tick_indices(COLD_TICK)


def test_set_and_clear_are_idempotent():
    bitmap = TickHasDebt()
    bitmap.set_bit(-611)
    bitmap.set_bit(-611)
    assert bitmap.is_set(-611)
    assert not bitmap.is_set(-610)
    assert not bitmap.is_set(-612)

    bitmap.clear_bit(-611)
    bitmap.clear_bit(-611)
    assert not bitmap.is_set(-611)
    assert bitmap.highest_tick() == COLD_TICK


def test_find_next_tick_with_debt_walks_down():
    """Highest tick first, each call strictly below the last"""
    ticks = [MAX_TICK, 5000, 17, 16, 0, -1, -255, -611, -2049, -16000, MIN_TICK]
    bitmap = TickHasDebt()
    for tick in ticks:
        bitmap.set_bit(tick)

    found = list(bitmap.set_ticks())
    print(f"Found ticks: {found}")
    assert found == sorted(ticks, reverse=True)

    assert bitmap.find_next_tick_with_debt(17) == 16
    assert bitmap.find_next_tick_with_debt(16) == 0
    assert bitmap.find_next_tick_with_debt(4000) == 17
    assert bitmap.find_next_tick_with_debt(MIN_TICK) == COLD_TICK


def test_find_does_not_mutate_bitmap():
    bitmap = TickHasDebt()
    bitmap.set_bit(100)
    bitmap.set_bit(90)
    before = bitmap.segments()
    assert bitmap.find_next_tick_with_debt(95) == 90
    assert bitmap.find_next_tick_with_debt(95) == 90
    assert bitmap.segments() == before
    assert bitmap.is_set(100)


def test_only_first_array_populated():
    """Search from high up ends in COLD_TICK once array 0 is used up"""
    populated = [MIN_TICK, MIN_TICK + 5, MIN_TICK + 300, MIN_TICK + 2047]
    bitmap = TickHasDebt()
    for tick in populated:
        bitmap.set_bit(tick)

    tick = MAX_TICK + 1
    seen = []
    for _ in range(len(populated) + 1):
        tick = bitmap.find_next_tick_with_debt(tick)
        if tick == COLD_TICK:
            break
        seen.append(tick)

    assert seen == sorted(populated, reverse=True)
    assert tick == COLD_TICK
    assert bitmap.find_next_tick_with_debt(MIN_TICK + 1) == MIN_TICK
    assert bitmap.find_next_tick_with_debt(MIN_TICK) == COLD_TICK
    assert bitmap.find_next_tick_with_debt(COLD_TICK) == COLD_TICK


def test_fetch_next_tick_liquidate_stops_at_bound():
    bitmap = TickHasDebt()
    for tick in (-100, -150, -900):
        bitmap.set_bit(tick)

    assert bitmap.fetch_next_tick_liquidate(-99, -155) == -100
    assert bitmap.fetch_next_tick_liquidate(-100, -155) == -150
    assert bitmap.fetch_next_tick_liquidate(-150, -155) == COLD_TICK
    # unbounded search still sees it
    assert bitmap.find_next_tick_with_debt(-150) == -900


def test_random_ticks_against_sorted_reference():
    rng = np.random.default_rng(11)
    ticks = sorted({int(t) for t in rng.integers(MIN_TICK, MAX_TICK + 1, size=400)}, reverse=True)
    bitmap = TickHasDebt()
    for tick in ticks:
        bitmap.set_bit(tick)

    for start in rng.integers(MIN_TICK, MAX_TICK + 2, size=200):
        start = int(start)
        below = [t for t in ticks if t < start]
        expected = below[0] if below else COLD_TICK
        assert bitmap.find_next_tick_with_debt(start) == expected


def test_segments_round_trip():
    bitmap = TickHasDebt()
    for tick in (MIN_TICK, -611, 0, MAX_TICK):
        bitmap.set_bit(tick)
    segments = bitmap.segments()
    assert len(segments) == 4

    restored = TickHasDebt()
    for (array_index, map_index), map_bits in segments.items():
        restored.load_segment(array_index, map_index, map_bits)
    assert list(restored.set_ticks()) == [MAX_TICK, 0, -611, MIN_TICK]
