from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from app.errors import PartialWriteInconsistency, PharmacyError
from app.services.data_store import DataStore

logger = logging.getLogger(__name__)

T = TypeVar('T')


def run_two_step(
    store: DataStore,
    operation: str,
    *,
    first: Callable[[], T],
    second: Callable[[T], None],
    compensate: Callable[[T], None],
) -> T:
    """Run two dependent writes so that they land together or not at all.

    With a transactional store both writes share one transaction. Otherwise
    the first write is committed on its own and undone by ``compensate`` when
    the second one fails. A ``PharmacyError`` raised by either step is passed
    on unchanged once nothing is left behind; any other failure surfaces as
    ``PartialWriteInconsistency``.
    """
    if store.supports_transactions:
        try:
            with store.transaction():
                result = first()
                second(result)
        except PharmacyError as exc:
            logger.warning('%s rejected; both writes rolled back: %s', operation, exc)
            raise
        except Exception as exc:
            logger.error('%s failed; both writes rolled back: %s', operation, exc)
            raise PartialWriteInconsistency(operation, compensated=True, cause=exc) from exc
        return result

    result = first()
    try:
        second(result)
    except Exception as exc:
        logger.error('%s: second write failed after the first succeeded: %s', operation, exc)
        try:
            compensate(result)
        except Exception:
            logger.exception('%s: compensation failed, records are now inconsistent', operation)
            raise PartialWriteInconsistency(operation, compensated=False, cause=exc) from exc
        logger.info('%s: first write compensated', operation)
        if isinstance(exc, PharmacyError):
            raise
        raise PartialWriteInconsistency(operation, compensated=True, cause=exc) from exc
    return result
