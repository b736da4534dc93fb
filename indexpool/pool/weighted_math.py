"""Weighted product pool math.

Spot prices and trade amounts for a pool whose invariant is
prod(balance_i ^ (weight_i / total_weight)). All arguments and results are
18-decimal fixed-point integers. Exit fees are charged in pool shares by the
pool itself, so none of these formulas apply one.
"""

from indexpool.constants import BONE
from indexpool.math.bnum import badd, bdiv, bmul, bpow, bsub


def calc_spot_price(
    balance_in: int,
    weight_in: int,
    balance_out: int,
    weight_out: int,
    swap_fee: int,
) -> int:
    """Price of the output token in input tokens, including the swap fee.

    Formula:
        spot = (balance_in / weight_in) / (balance_out / weight_out) / (1 - fee)
    """
    numer = bdiv(balance_in, weight_in)
    denom = bdiv(balance_out, weight_out)
    ratio = bdiv(numer, denom)
    scale = bdiv(BONE, bsub(BONE, swap_fee))
    return bmul(ratio, scale)


def calc_out_given_in(
    balance_in: int,
    weight_in: int,
    balance_out: int,
    weight_out: int,
    amount_in: int,
    swap_fee: int,
) -> int:
    """Output amount for an exact input.

    Formula:
        amount_out = balance_out * (1 - (balance_in / (balance_in + amount_in * (1 - fee)))^(weight_in / weight_out))
    """
    weight_ratio = bdiv(weight_in, weight_out)
    adjusted_in = bmul(amount_in, bsub(BONE, swap_fee))
    y = bdiv(balance_in, badd(balance_in, adjusted_in))
    foo = bpow(y, weight_ratio)
    bar = bsub(BONE, foo)
    return bmul(balance_out, bar)


def calc_in_given_out(
    balance_in: int,
    weight_in: int,
    balance_out: int,
    weight_out: int,
    amount_out: int,
    swap_fee: int,
) -> int:
    """Input amount for an exact output.

    Formula:
        amount_in = balance_in * ((balance_out / (balance_out - amount_out))^(weight_out / weight_in) - 1) / (1 - fee)
    """
    weight_ratio = bdiv(weight_out, weight_in)
    diff = bsub(balance_out, amount_out)
    y = bdiv(balance_out, diff)
    foo = bsub(bpow(y, weight_ratio), BONE)
    return bdiv(bmul(balance_in, foo), bsub(BONE, swap_fee))


def calc_pool_out_given_single_in(
    balance_in: int,
    weight_in: int,
    pool_supply: int,
    total_weight: int,
    amount_in: int,
    swap_fee: int,
) -> int:
    """Pool shares minted for depositing a single token.

    The swap fee applies to the part of the deposit that is implicitly
    traded for the other tokens, (1 - normalized_weight) of it.
    """
    normalized_weight = bdiv(weight_in, total_weight)
    zaz = bmul(bsub(BONE, normalized_weight), swap_fee)
    amount_in_after_fee = bmul(amount_in, bsub(BONE, zaz))

    new_balance_in = badd(balance_in, amount_in_after_fee)
    token_in_ratio = bdiv(new_balance_in, balance_in)

    pool_ratio = bpow(token_in_ratio, normalized_weight)
    new_pool_supply = bmul(pool_ratio, pool_supply)
    return bsub(new_pool_supply, pool_supply)


def calc_single_in_given_pool_out(
    balance_in: int,
    weight_in: int,
    pool_supply: int,
    total_weight: int,
    pool_amount_out: int,
    swap_fee: int,
) -> int:
    """Single token deposit required to mint an exact number of pool shares."""
    normalized_weight = bdiv(weight_in, total_weight)
    new_pool_supply = badd(pool_supply, pool_amount_out)
    pool_ratio = bdiv(new_pool_supply, pool_supply)

    boo = bdiv(BONE, normalized_weight)
    token_in_ratio = bpow(pool_ratio, boo)
    new_balance_in = bmul(token_in_ratio, balance_in)
    amount_in_after_fee = bsub(new_balance_in, balance_in)

    zar = bmul(bsub(BONE, normalized_weight), swap_fee)
    return bdiv(amount_in_after_fee, bsub(BONE, zar))


def calc_single_out_given_pool_in(
    balance_out: int,
    weight_out: int,
    pool_supply: int,
    total_weight: int,
    pool_amount_in: int,
    swap_fee: int,
) -> int:
    """Single token withdrawn for redeeming an exact number of pool shares."""
    normalized_weight = bdiv(weight_out, total_weight)
    new_pool_supply = bsub(pool_supply, pool_amount_in)
    pool_ratio = bdiv(new_pool_supply, pool_supply)

    token_out_ratio = bpow(pool_ratio, bdiv(BONE, normalized_weight))
    new_balance_out = bmul(token_out_ratio, balance_out)
    amount_out_before_fee = bsub(balance_out, new_balance_out)

    zaz = bmul(bsub(BONE, normalized_weight), swap_fee)
    return bmul(amount_out_before_fee, bsub(BONE, zaz))


def calc_pool_in_given_single_out(
    balance_out: int,
    weight_out: int,
    pool_supply: int,
    total_weight: int,
    amount_out: int,
    swap_fee: int,
) -> int:
    """Pool shares redeemed to withdraw an exact amount of a single token."""
    normalized_weight = bdiv(weight_out, total_weight)
    zar = bmul(bsub(BONE, normalized_weight), swap_fee)
    amount_out_before_fee = bdiv(amount_out, bsub(BONE, zar))

    new_balance_out = bsub(balance_out, amount_out_before_fee)
    token_out_ratio = bdiv(new_balance_out, balance_out)

    pool_ratio = bpow(token_out_ratio, normalized_weight)
    new_pool_supply = bmul(pool_ratio, pool_supply)
    return bsub(pool_supply, new_pool_supply)
