"""Index pool error classes.

Every failure raised by the package derives from IndexPoolError. A raised
error aborts the whole operation: state changes made before the error are
rolled back by the ledger.
"""


class IndexPoolError(Exception):
    """Base error for index pool operations."""

    pass


# =============================================================================
# Token ledger
# =============================================================================


class TokenError(IndexPoolError):
    """Base error for token balance operations."""

    pass


class InsufficientBalance(TokenError):
    """Account or record balance is lower than the requested amount."""

    pass


class UnknownToken(TokenError):
    """Token address is not registered with the ledger."""

    pass


class ReentrantCall(IndexPoolError):
    """A pool entry point was called while another one was in progress."""

    pass


# =============================================================================
# Pool
# =============================================================================


class PoolError(IndexPoolError):
    """Base error for pool operations."""

    pass


class NotController(PoolError):
    """Caller is not the pool controller."""

    pass


class NotInitialized(PoolError):
    """Pool has not been initialized yet."""

    pass


class DuplicateInitialization(PoolError):
    """Pool was already initialized."""

    pass


class NullAddress(PoolError):
    """Address argument is empty."""

    pass


class InvalidFee(PoolError):
    """Swap fee is outside [MIN_FEE, MAX_FEE]."""

    pass


class ArrayLengthMismatch(PoolError):
    """Parallel argument lists have different lengths."""

    pass


class MinTokens(PoolError):
    """Fewer than MIN_BOUND_TOKENS tokens."""

    pass


class MaxTokens(PoolError):
    """More than MAX_BOUND_TOKENS tokens."""

    pass


class NotBound(PoolError):
    """Token is not bound to the pool."""

    pass


class AlreadyBound(PoolError):
    """Token is already bound to the pool."""

    pass


class TokenNotReady(PoolError):
    """Token has not reached its minimum balance and cannot leave the pool."""

    pass


class TokenReady(PoolError):
    """Operation only applies to tokens that are not ready."""

    pass


class BelowMinWeight(PoolError):
    """Weight is below MIN_WEIGHT."""

    pass


class AboveMaxWeight(PoolError):
    """Weight is above MAX_WEIGHT."""

    pass


class AboveMaxTotalWeight(PoolError):
    """Total weight would exceed MAX_TOTAL_WEIGHT."""

    pass


class MinBalance(PoolError):
    """Balance is below MIN_BALANCE."""

    pass


class MaxInRatio(PoolError):
    """Input amount exceeds MAX_IN_RATIO of the input balance."""

    pass


class MaxOutRatio(PoolError):
    """Output amount exceeds MAX_OUT_RATIO of the output balance."""

    pass


class LimitIn(PoolError):
    """Required input is above the caller's maximum."""

    pass


class LimitOut(PoolError):
    """Output is below the caller's minimum."""

    pass


class BadLimitPrice(PoolError):
    """Spot price before the operation is already above the caller's maximum."""

    pass


class LimitPrice(PoolError):
    """Spot price after the operation is above the caller's maximum."""

    pass


class MathApprox(PoolError):
    """Rounding produced a zero or inconsistent amount."""

    pass


class SameToken(PoolError):
    """Swap input and output are the same token."""

    pass


class ZeroIn(PoolError):
    """Input amount is zero."""

    pass


class InsufficientPayment(PoolError):
    """Flash loan was not repaid with its fee."""

    pass


class RateLimited(IndexPoolError):
    """Operation was repeated before its minimum delay elapsed."""

    pass


# =============================================================================
# Oracle
# =============================================================================


class OracleError(IndexPoolError):
    """Base error for price oracle operations."""

    pass


class StalePrice(OracleError):
    """Latest observation is older than the allowed window."""

    pass


class InsufficientHistory(OracleError):
    """No observation pair spans an acceptable time window."""

    pass


class UnknownPair(OracleError):
    """Venue has no pair for the token."""

    pass


# =============================================================================
# Categories
# =============================================================================


class CategoryError(IndexPoolError):
    """Base error for token category operations."""

    pass


class CategoryNotFound(CategoryError):
    """Category id does not exist."""

    pass


class AlreadyCategorized(CategoryError):
    """Token already belongs to a category."""

    pass


class MaxCategoryTokens(CategoryError):
    """Category already holds the maximum number of tokens."""

    pass


class EmptyCategory(CategoryError):
    """Category has no tokens."""

    pass


class TokenNotInCategory(CategoryError):
    """Token is not a member of the category."""

    pass


class InvalidOrder(CategoryError):
    """Proposed order is not a strictly descending permutation by market cap."""

    pass


class NotSorted(CategoryError):
    """Category was not sorted within the sort delay."""

    pass


class CategorySize(CategoryError):
    """Requested more tokens than the category holds."""

    pass


# =============================================================================
# Controller
# =============================================================================


class ControllerError(IndexPoolError):
    """Base error for controller operations."""

    pass


class PoolNotFound(ControllerError):
    """Pool is not managed by the controller."""

    pass


class InvalidIndexSize(ControllerError):
    """Index size is outside [MIN_BOUND_TOKENS, MAX_BOUND_TOKENS]."""

    pass
