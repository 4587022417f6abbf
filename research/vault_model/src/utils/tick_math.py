"""Ratio <-> tick conversion

Ticks are powers of 1.0015: ratio_x48 = 1.0015^tick * 2^48, where
ratio = debt / collateral. Everything is integer math so results are
identical on every run.
"""
from typing import Tuple
from ..constants import (
    MIN_TICK,
    MAX_TICK,
    MIN_RATIOX48,
    MAX_RATIOX48,
    TICK_SPACING,
    X48,
    U128_MAX,
)
from ..errors import TickOutOfRange

ZERO_TICK_SCALED_RATIO = X48
_1E13 = 10_000_000_000_000

# 2^64 / 1.0015^(2^i)
FACTOR00 = 0x10000000000000000
FACTOR01 = 0xff9dd7de423466c2
FACTOR02 = 0xff3bd55f4488ad27
FACTOR03 = 0xfe78410fd6498b74
FACTOR04 = 0xfcf2d9987c9be179
FACTOR05 = 0xf9ef02c4529258b0
FACTOR06 = 0xf402d288133a85a1
FACTOR07 = 0xe895615b5beb6386
FACTOR08 = 0xd34f17a00ffa00a8
FACTOR09 = 0xae6b7961714e2055
FACTOR10 = 0x76d6461f27082d75
FACTOR11 = 0x372a3bfe0745d8b7
FACTOR12 = 0xbe32cbee4897976
FACTOR13 = 0x8d4f70c9ff4925
FACTOR14 = 0x4e009ae55194

_RATIO_FACTORS = (
    (0x2, FACTOR02),
    (0x4, FACTOR03),
    (0x8, FACTOR04),
    (0x10, FACTOR05),
    (0x20, FACTOR06),
    (0x40, FACTOR07),
    (0x80, FACTOR08),
    (0x100, FACTOR09),
    (0x200, FACTOR10),
    (0x400, FACTOR11),
    (0x800, FACTOR12),
    (0x1000, FACTOR13),
    (0x2000, FACTOR14),
)

# 1.0015^(2^i) * 1e13, highest bit first
_TICK_THRESHOLDS = (
    (0x2000, 2150859953785115391),
    (0x1000, 4637736467054931),
    (0x800, 215354044936586),
    (0x400, 46406254420777),
    (0x200, 21542110950596),
    (0x100, 14677230989051),
    (0x80, 12114962232319),
    (0x40, 11006798913544),
    (0x20, 10491329235871),
    (0x10, 10242718992470),
    (0x8, 10120631893548),
    (0x4, 10060135135051),
    (0x2, 10030022500000),
    (0x1, 10015000000000),
)


def get_ratio_at_tick(tick: int) -> int:
    """Return 1.0015^tick * 2^48"""
    if tick < MIN_TICK or tick > MAX_TICK:
        raise TickOutOfRange(f"Tick {tick} outside [{MIN_TICK}, {MAX_TICK}]")

    abs_tick = abs(tick)
    factor = FACTOR01 if abs_tick & 0x1 else FACTOR00
    for bit, bit_factor in _RATIO_FACTORS:
        if abs_tick & bit:
            factor = (factor * bit_factor) >> 64

    # factor is 1.0015^-|tick| in 64.64, flip it for positive ticks
    precision = 0
    if tick > 0:
        factor = U128_MAX // factor
        precision = 1 if factor % 0x10000 else 0

    return (factor >> 16) + precision


def get_tick_at_ratio(ratio_x48: int) -> Tuple[int, int]:
    """Return (floor tick, ratio of that tick) for a ratio_x48

    The returned perfect ratio is always <= ratio_x48.
    """
    if ratio_x48 < MIN_RATIOX48 or ratio_x48 > MAX_RATIOX48:
        raise TickOutOfRange(f"Ratio {ratio_x48} outside [{MIN_RATIOX48}, {MAX_RATIOX48}]")

    is_negative = ratio_x48 < ZERO_TICK_SCALED_RATIO
    if is_negative:
        factor = ZERO_TICK_SCALED_RATIO * _1E13 // ratio_x48
    else:
        factor = ratio_x48 * _1E13 // ZERO_TICK_SCALED_RATIO

    tick = 0
    for bit, threshold in _TICK_THRESHOLDS:
        if factor >= threshold:
            tick |= bit
            factor = factor * _1E13 // threshold

    # factor is now the leftover 1.0015^x with x in [0, 1), scaled by 1e13
    if is_negative:
        tick = ~tick
        perfect_ratio_x48 = ratio_x48 * factor // (TICK_SPACING * 1_000_000_000)
    else:
        perfect_ratio_x48 = ratio_x48 * _1E13 // factor

    if perfect_ratio_x48 > ratio_x48:
        raise TickOutOfRange("Perfect ratio above input ratio")
    return tick, perfect_ratio_x48


def tick_for_ratio(ratio_x48: int) -> int:
    """Floor tick of a ratio, never below MIN_TICK"""
    # MIN_RATIOX48 itself floors to one below the range
    return max(get_tick_at_ratio(ratio_x48)[0], MIN_TICK)


def ratio_for_tick(tick: int) -> int:
    return get_ratio_at_tick(tick)


def clamped_tick_for_ratio(ratio_x48: int) -> int:
    """Floor tick, clamped to [MIN_TICK, MAX_TICK] instead of raising"""
    if ratio_x48 < MIN_RATIOX48:
        return MIN_TICK
    if ratio_x48 > MAX_RATIOX48:
        return MAX_TICK
    return tick_for_ratio(ratio_x48)


def position_tick(debt: int, collateral: int) -> Tuple[int, int]:
    """Tick a position with this raw debt and collateral lands on

    Returns (tick, tick_debt). The tick is one above the floor tick so the
    tick ratio is never below the position ratio, and tick_debt is the
    position debt rounded up to that ratio. tick_debt - debt is dust.
    """
    ratio_x48 = debt * X48 // collateral
    if ratio_x48 < MIN_RATIOX48:
        ratio_x48 = MIN_RATIOX48
    if ratio_x48 > MAX_RATIOX48:
        raise TickOutOfRange(f"Position ratio {ratio_x48} above maximum")

    tick, perfect_ratio_x48 = get_tick_at_ratio(ratio_x48)
    tick += 1
    if tick > MAX_TICK:
        raise TickOutOfRange(f"Position tick {tick} above maximum")

    # one tick up
    ratio_new = perfect_ratio_x48 * TICK_SPACING // 10_000
    tick_debt = (ratio_new * collateral) >> 48
    return tick, max(tick_debt, debt)
