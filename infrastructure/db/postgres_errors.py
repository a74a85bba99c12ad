from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import psycopg2
import psycopg2.errors

from domain.errors import ConflictError, MisconfiguredError, UnavailableError


@contextmanager
def translate_postgres_errors(action: str) -> Iterator[None]:
    """
    Map driver exceptions raised while performing `action` onto the
    session error taxonomy.
    """

    try:
        yield
    except psycopg2.errors.UniqueViolation as exc:
        raise ConflictError(f"{action} failed: record already exists.") from exc
    except (psycopg2.InterfaceError, psycopg2.ProgrammingError) as exc:
        # Bad DSN, missing database objects, closed connections.
        raise MisconfiguredError(f"{action} failed: {exc}") from exc
    except psycopg2.OperationalError as exc:
        raise UnavailableError(f"{action} failed: {exc}") from exc
