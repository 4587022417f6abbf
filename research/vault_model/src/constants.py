# Fixed point scale factors
EXCHANGE_PRICES_PRECISION = 1_000_000_000_000  # 1e12 for liquidity exchange prices
RATE_PRECISION = 1_000_000_000_000_000  # 1e15 for oracle rates (debt per collateral)
BPS_SCALE = 10_000  # Basis points (100% = 10000)
THREE_DECIMALS = 1_000  # Risk ratios (80% = 800)
DEBT_FACTOR_SCALE = 10**27  # Shared tick debt factor, 1.0 scaled
X48 = 1 << 48  # Ratios are stored as ratio * 2^48
U128_MAX = 2**128 - 1

# Tick constants
MIN_TICK = -16383
MAX_TICK = 16383
COLD_TICK = -2**31  # i32 min, position / vault holds no debt
TICK_SPACING = 10015  # each tick is 1.0015x the previous one
MIN_RATIOX48 = 6093  # ratio at MIN_TICK
MAX_RATIOX48 = 13002088133096036565414295  # ratio at MAX_TICK

# Bitmap layout
TOTAL_ARRAYS = 16
MAPS_PER_ARRAY = 8
BYTES_PER_MAP = 32
TICKS_PER_MAP = BYTES_PER_MAP * 8  # 256
TICKS_PER_ARRAY = TICKS_PER_MAP * MAPS_PER_ARRAY  # 2048

# Amount limits (token units)
MIN_OPERATE = 1_000
MAX_OPERATE = 2**63 - 1
MAX_WITHDRAW = -2**127  # sentinel, withdraw everything
MAX_PAYBACK = -2**127   # sentinel, payback everything

# Raw debt limits
MIN_DEBT = 1_000
MINIMUM_TICK_DEBT = 100

# Oracle sanity bounds
MIN_ORACLE_RATE = 10**6
MAX_ORACLE_RATE = 10**24

# Risk defaults
DEFAULT_COLLATERAL_FACTOR = 800        # 80%
DEFAULT_LIQUIDATION_THRESHOLD = 900    # 90%
DEFAULT_LIQUIDATION_MAX_LIMIT = 950    # 95%
DEFAULT_BORROW_FEE = 0                 # 0% in bps
