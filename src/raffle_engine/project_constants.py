"""
Project-wide immutable parameters for the recurring raffle.

These values define the public rules of every draw cycle.
Changing them changes payouts and MUST be publicly announced.
"""

# Native value and reward token both use 6 decimals
UNIT_DECIMALS = 6

# Default entrance fee (raw units)
DEFAULT_ENTRANCE_FEE = 1 * (10**UNIT_DECIMALS)  # 1 token

# Default seconds that must elapse between draws
DEFAULT_DRAW_INTERVAL = 30

# Reward token credit minted to every winner (raw units)
DEFAULT_REWARD_AMOUNT = 100 * (10**UNIT_DECIMALS)

# Referrers earn value // REFERRAL_DIVISOR on a referee's first entry
REFERRAL_DIVISOR = 10

# Randomness request parameters
DEFAULT_KEY_HASH = "raffle-engine/v1"
REQUEST_CONFIRMATIONS = 3
NUM_WORDS = 1

# Reward token metadata
REWARD_TOKEN_NAME = "Raffle Reward"
REWARD_TOKEN_SYMBOL = "RFL"

# Address namespaces used by derive_address()
RAFFLE_NAMESPACE = "raffle"
PROVIDER_NAMESPACE = "randomness-provider"
OWNER_NAMESPACE = "owner"

# Events kept in memory by an EventBus; older ones are dropped
EVENT_LOG_LIMIT = 10_000
