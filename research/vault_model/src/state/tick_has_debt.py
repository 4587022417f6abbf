"""Hierarchical bitmap of ticks holding debt

Three levels over the full tick range: 16 arrays of 2048 ticks, each
split into 8 maps of 256 ticks, each map a 32 byte bitmap with one bit per
tick. Tick MIN_TICK is array 0, map 0, byte 0, bit 0.

Everything lives in one flat bytearray: global byte index is
array * 256 + map * 32 + byte.
"""
from typing import Dict, Optional, Tuple
from ..constants import (
    MIN_TICK,
    MAX_TICK,
    COLD_TICK,
    TOTAL_ARRAYS,
    MAPS_PER_ARRAY,
    BYTES_PER_MAP,
    TICKS_PER_MAP,
    TICKS_PER_ARRAY,
)
from ..errors import TickOutOfRange

BYTES_PER_ARRAY = BYTES_PER_MAP * MAPS_PER_ARRAY


def get_array_index(tick: int) -> int:
    return (tick - MIN_TICK) // TICKS_PER_ARRAY


def get_first_tick_for_array(array_index: int) -> int:
    return MIN_TICK + array_index * TICKS_PER_ARRAY


def get_first_tick_for_map_in_array(array_index: int, map_index: int) -> int:
    return get_first_tick_for_array(array_index) + map_index * TICKS_PER_MAP


def get_tick_indices(tick: int) -> Tuple[int, int, int, int]:
    """Split a tick into (array, map, byte, bit)"""
    if tick < MIN_TICK or tick > MAX_TICK:
        raise TickOutOfRange(f"Tick {tick} outside [{MIN_TICK}, {MAX_TICK}]")
    offset = tick - MIN_TICK
    array_index = offset // TICKS_PER_ARRAY
    offset_in_array = offset % TICKS_PER_ARRAY
    map_index = offset_in_array // TICKS_PER_MAP
    byte_index = (offset_in_array % TICKS_PER_MAP) // 8
    bit_index = offset % 8
    return array_index, map_index, byte_index, bit_index


def _global_byte(array_index: int, map_index: int, byte_index: int) -> int:
    return array_index * BYTES_PER_ARRAY + map_index * BYTES_PER_MAP + byte_index


def _highest_set_bit(value: int) -> int:
    return value.bit_length() - 1


class TickHasDebt:
    """One bit per tick, set iff the tick has raw debt"""

    def __init__(self, data: Optional[bytes] = None):
        size = TOTAL_ARRAYS * BYTES_PER_ARRAY
        if data is None:
            self._bits = bytearray(size)
        else:
            if len(data) != size:
                raise ValueError(f"Bitmap must be {size} bytes, got {len(data)}")
            self._bits = bytearray(data)

    def set_bit(self, tick: int) -> None:
        array_index, map_index, byte_index, bit_index = get_tick_indices(tick)
        self._bits[_global_byte(array_index, map_index, byte_index)] |= 1 << bit_index

    def clear_bit(self, tick: int) -> None:
        array_index, map_index, byte_index, bit_index = get_tick_indices(tick)
        self._bits[_global_byte(array_index, map_index, byte_index)] &= ~(1 << bit_index) & 0xFF

    def is_set(self, tick: int) -> bool:
        array_index, map_index, byte_index, bit_index = get_tick_indices(tick)
        return bool(self._bits[_global_byte(array_index, map_index, byte_index)] >> bit_index & 1)

    def map_bytes(self, array_index: int, map_index: int) -> bytes:
        """Copy of one 32 byte map"""
        start = _global_byte(array_index, map_index, 0)
        return bytes(self._bits[start:start + BYTES_PER_MAP])

    def array_has_debt(self, array_index: int) -> bool:
        start = array_index * BYTES_PER_ARRAY
        return any(self._bits[start:start + BYTES_PER_ARRAY])

    def _scan_map(self, array_index: int, map_index: int, map_bits: bytes) -> int:
        # highest byte first, highest bit in that byte wins
        for byte_index in range(BYTES_PER_MAP - 1, -1, -1):
            value = map_bits[byte_index]
            if value:
                return (get_first_tick_for_map_in_array(array_index, map_index)
                        + byte_index * 8 + _highest_set_bit(value))
        return COLD_TICK

    def find_next_tick_with_debt(self, from_tick_exclusive: int,
                                 lower_bound: Optional[int] = None) -> int:
        """Highest tick strictly below from_tick_exclusive with debt

        Returns COLD_TICK when there is none. With lower_bound, the search
        gives up (COLD_TICK) instead of returning a tick <= lower_bound, and
        maps entirely at or below it are never scanned.
        """
        start = min(from_tick_exclusive - 1, MAX_TICK)
        if start < MIN_TICK:
            return COLD_TICK

        array_index, map_index, byte_index, bit_index = get_tick_indices(start)

        # local copy of the current map with every bit above start cleared
        map_bits = bytearray(self.map_bytes(array_index, map_index))
        map_bits[byte_index] &= (1 << (bit_index + 1)) - 1
        for higher in range(byte_index + 1, BYTES_PER_MAP):
            map_bits[higher] = 0

        while True:
            if lower_bound is not None:
                map_top = get_first_tick_for_map_in_array(array_index, map_index) + TICKS_PER_MAP - 1
                if map_top <= lower_bound:
                    return COLD_TICK

            tick = self._scan_map(array_index, map_index, map_bits)
            if tick != COLD_TICK:
                if lower_bound is not None and tick <= lower_bound:
                    return COLD_TICK
                return tick

            # previous map, then previous array
            if map_index > 0:
                map_index -= 1
            else:
                array_index -= 1
                while array_index >= 0 and not self.array_has_debt(array_index):
                    array_index -= 1
                if array_index < 0:
                    return COLD_TICK
                map_index = MAPS_PER_ARRAY - 1
            map_bits = self.map_bytes(array_index, map_index)

    def fetch_next_tick_liquidate(self, current_tick: int, liquidation_tick: int) -> int:
        """Next tick below current_tick that is still above liquidation_tick"""
        return self.find_next_tick_with_debt(current_tick, lower_bound=liquidation_tick)

    def highest_tick(self) -> int:
        return self.find_next_tick_with_debt(MAX_TICK + 1)

    def set_ticks(self):
        """Yield every tick with its bit set, highest first"""
        tick = self.highest_tick()
        while tick != COLD_TICK:
            yield tick
            tick = self.find_next_tick_with_debt(tick)

    def segments(self) -> Dict[Tuple[int, int], bytes]:
        """Non empty maps keyed by (array, map)"""
        result = {}
        for array_index in range(TOTAL_ARRAYS):
            if not self.array_has_debt(array_index):
                continue
            for map_index in range(MAPS_PER_ARRAY):
                map_bits = self.map_bytes(array_index, map_index)
                if any(map_bits):
                    result[(array_index, map_index)] = map_bits
        return result

    def load_segment(self, array_index: int, map_index: int, map_bits: bytes) -> None:
        if len(map_bits) != BYTES_PER_MAP:
            raise ValueError(f"Map segment must be {BYTES_PER_MAP} bytes")
        start = _global_byte(array_index, map_index, 0)
        self._bits[start:start + BYTES_PER_MAP] = map_bits
