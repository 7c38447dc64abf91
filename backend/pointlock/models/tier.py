"""Pick tiers, ordered so that a plain comparison answers "may this user pick it"."""

from enum import IntEnum


class PickTier(IntEnum):
    FREE = 0
    STANDARD = 1
    PREMIUM = 2
    ELITE = 3
